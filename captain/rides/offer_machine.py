from __future__ import annotations

import enum
from typing import Callable, Optional

from captain.core.constants import DEFAULT_DECISION_WINDOW
from captain.core.logger import get_logger
from captain.rides.models import (
    OfferDecisionWindow,
    OfferIntent,
    RideOffer,
    intent_kind,
    intent_reason,
)

logger = get_logger("offers")


class offer_state(enum.Enum):
    IDLE = "idle"
    PRESENTING = "presenting"


class OfferStateMachine:
    """
    Time-boxed accept/reject window for the most recent ride offer.

    Only one window exists at a time: a new offer replaces the current one and
    restarts the countdown, and the replaced offer gets no intent. The caller
    drives `tick()` once per second; reaching zero rejects the offer.
    """

    def __init__(
        self,
        *,
        window_seconds: int = DEFAULT_DECISION_WINDOW,
        on_intent: Optional[Callable[[OfferIntent], None]] = None,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = int(window_seconds)
        self._on_intent = on_intent
        self._window: Optional[OfferDecisionWindow] = None

    @property
    def state(self) -> offer_state:
        return offer_state.PRESENTING if self._window else offer_state.IDLE

    @property
    def window(self) -> Optional[OfferDecisionWindow]:
        return self._window

    @property
    def current_offer(self) -> Optional[RideOffer]:
        return self._window.offer if self._window else None

    @property
    def remaining_seconds(self) -> Optional[int]:
        return self._window.remaining_seconds if self._window else None

    def present(self, offer: RideOffer) -> None:
        if self._window is not None:
            logger.info(
                "Offer %s superseded by %s", self._window.offer.ride_id, offer.ride_id
            )
        self._window = OfferDecisionWindow(
            offer=offer, remaining_seconds=self.window_seconds
        )

    def tick(self) -> Optional[OfferIntent]:
        window = self._window
        if window is None:
            return None
        window.remaining_seconds -= 1
        if not window.expired:
            return None
        logger.info("Offer %s timed out; rejecting", window.offer.ride_id)
        return self._close(window.deadline_action, intent_reason.TIMEOUT)

    def accept(self) -> Optional[OfferIntent]:
        return self._close(intent_kind.ACCEPT, intent_reason.DRIVER)

    def reject(self) -> Optional[OfferIntent]:
        return self._close(intent_kind.REJECT, intent_reason.DRIVER)

    def dismiss(self) -> Optional[RideOffer]:
        """Drop the current window without telling the backend anything."""
        window, self._window = self._window, None
        return window.offer if window else None

    def _close(self, kind: intent_kind, reason: intent_reason) -> Optional[OfferIntent]:
        window, self._window = self._window, None
        if window is None:
            return None
        intent = OfferIntent(kind=kind, ride_id=window.offer.ride_id, reason=reason)
        if self._on_intent is not None:
            self._on_intent(intent)
        return intent


__all__ = ["OfferStateMachine", "offer_state"]
