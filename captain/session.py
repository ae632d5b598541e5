from __future__ import annotations

import threading
from typing import Any, Callable, List, Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from captain.api.captain_api import CaptainAPI, CaptainAPIError
from captain.core.constants import DEFAULT_DECISION_WINDOW
from captain.core.logger import get_logger
from captain.network.channel import ReconnectingChannel
from captain.network.protocol import ConnectionState, outbound_event
from captain.rides.models import Coordinate, DriverSessionState, RideOffer
from captain.rides.normalizer import EventNormalizer
from captain.rides.offer_machine import OfferStateMachine

logger = get_logger("session")

BackgroundRunner = Callable[[Callable[[], None]], None]


def _run_in_thread(work: Callable[[], None]) -> None:
    threading.Thread(target=work, name="CaptainAcceptRide", daemon=True).start()


def _clean_identity(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class CaptainSession(QObject):
    """
    The one object the UI talks to.

    Holds the captain's identity and `DriverSessionState`, listens to a
    `ReconnectingChannel`, and turns UI intents (online toggle, accept,
    reject) into socket frames or HTTP calls. Frames and connectivity changes
    arrive on channel threads and are re-emitted through private signals, so
    every state mutation happens on the thread that owns this object. The UI
    connects to `state_changed` / `connection_changed` and always receives
    the latest snapshot, in mutation order.
    """

    state_changed = pyqtSignal(object)
    connection_changed = pyqtSignal(object)
    offer_expired = pyqtSignal(object)

    _frame_arrived = pyqtSignal(object)
    _connection_arrived = pyqtSignal(object)

    def __init__(
        self,
        api: Optional[CaptainAPI] = None,
        *,
        normalizer: Optional[EventNormalizer] = None,
        window_seconds: int = DEFAULT_DECISION_WINDOW,
        background: Optional[BackgroundRunner] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._api = api
        self._normalizer = normalizer or EventNormalizer()
        self._offers = OfferStateMachine(window_seconds=window_seconds)
        self._background = background or _run_in_thread
        self._channel: Optional[ReconnectingChannel] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._driver_id: Optional[str] = None
        self._auth_token: Optional[str] = None
        self._state = DriverSessionState()
        self._connection_state = ConnectionState.DISCONNECTED

        self._frame_arrived.connect(self._on_frame)
        self._connection_arrived.connect(self._on_connection_state)

        self._countdown = QTimer(self)
        self._countdown.setInterval(1000)
        self._countdown.setSingleShot(False)
        self._countdown.timeout.connect(self.tick)

    # Read-only views ---------------------------------------------------------
    @property
    def state(self) -> DriverSessionState:
        return self._state

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def channel(self) -> Optional[ReconnectingChannel]:
        return self._channel

    @property
    def driver_id(self) -> Optional[str]:
        return self._driver_id

    @property
    def countdown_active(self) -> bool:
        return self._countdown.isActive()

    # Lifecycle ---------------------------------------------------------------
    def set_identity(self, *, driver_id: Any = None, auth_token: Optional[str] = None) -> None:
        self._driver_id = _clean_identity(driver_id)
        self._auth_token = _clean_identity(auth_token)

    def start(
        self,
        *,
        driver_id: Any = None,
        auth_token: Optional[str] = None,
        channel: Optional[ReconnectingChannel] = None,
    ) -> None:
        self.set_identity(driver_id=driver_id, auth_token=auth_token)
        if channel is not None:
            self.bind_channel(channel)
        if self._channel is None:
            logger.warning("No channel bound; realtime updates disabled")
            return
        if not self._auth_token:
            logger.warning("Missing auth token; websocket connection skipped")
            return
        self._channel.connect_if_needed(self._auth_token)

    def stop(self) -> None:
        self._countdown.stop()
        if self._channel is not None:
            self._channel.disconnect()

    def bind_channel(self, channel: ReconnectingChannel) -> None:
        if channel is self._channel and self._unsubscribers:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._channel = channel
        self._unsubscribers = [
            channel.subscribe_frames(self._frame_arrived.emit),
            channel.subscribe_state(self._connection_arrived.emit),
        ]
        self._on_connection_state(channel.state)

    # Online status -----------------------------------------------------------
    def toggle_online(self) -> None:
        self._set_online(not self._state.is_online)

    def go_online(self) -> None:
        self._set_online(True)

    def go_offline(self) -> None:
        self._set_online(False)

    def _set_online(self, online: bool) -> None:
        self._publish(is_online=online)
        event = outbound_event.GO_ONLINE if online else outbound_event.GO_OFFLINE
        if self._driver_id is None:
            logger.warning("Driver id missing; skipping %s event", event.value)
            return
        self._send(event, {"driver_id": self._driver_id})

    def update_position(self, latitude: float, longitude: float) -> bool:
        coordinate = Coordinate(lat=float(latitude), lng=float(longitude))
        if not coordinate.is_usable():
            logger.debug("Ignoring unusable position %s", coordinate)
            return False
        self._publish(current_position=coordinate)
        return True

    # Offer decisions ---------------------------------------------------------
    def accept_offer(
        self, ride_id: Optional[str] = None, auth_token: Optional[str] = None
    ) -> Optional[str]:
        target = self._close_window(ride_id, accept=True)
        if target is None:
            logger.info("accept_offer: no ride to accept")
            return None
        token = _clean_identity(auth_token) or self._auth_token
        self._background(lambda: self._accept_over_http(target, token))
        return target

    def reject_offer(self, ride_id: Optional[str] = None) -> Optional[str]:
        target = self._close_window(ride_id, accept=False)
        if target is None:
            logger.info("reject_offer: no ride to reject")
            return None
        self._send(outbound_event.REJECT_RIDE, {"ride_id": target})
        return target

    def dismiss_offer(self) -> None:
        if self._offers.dismiss() is not None:
            self._countdown.stop()
            self._publish(pending_offer=None, remaining_seconds=None)

    def tick(self) -> None:
        offer = self._offers.current_offer
        if offer is None:
            self._countdown.stop()
            return
        intent = self._offers.tick()
        if intent is None:
            self._publish(remaining_seconds=self._offers.remaining_seconds)
            return
        self._countdown.stop()
        self._send(outbound_event.REJECT_RIDE, {"ride_id": intent.ride_id})
        self._publish(pending_offer=None, remaining_seconds=None)
        self.offer_expired.emit(offer)

    def _close_window(self, ride_id: Optional[str], *, accept: bool) -> Optional[str]:
        explicit = _clean_identity(ride_id)
        current = self._offers.current_offer
        if current is None or (explicit is not None and explicit != current.ride_id):
            return explicit
        intent = self._offers.accept() if accept else self._offers.reject()
        self._countdown.stop()
        self._publish(pending_offer=None, remaining_seconds=None)
        return intent.ride_id if intent else explicit

    def _accept_over_http(self, ride_id: str, token: Optional[str]) -> None:
        if self._api is None:
            logger.warning("No HTTP client configured; accepting %s over websocket", ride_id)
            self._send(outbound_event.ACCEPT_RIDE, {"ride_id": ride_id})
            return
        try:
            self._api.accept_ride(ride_id, auth_token=token)
        except CaptainAPIError as exc:
            if exc.status_code is not None and 200 <= exc.status_code < 300:
                # The backend took the accept; only the reply body was unreadable.
                logger.info(
                    "Ride accepted via HTTP: %s (ignoring reply body: %s)", ride_id, exc
                )
                return
            logger.warning(
                "Ride accept HTTP failed for %s: %s. Falling back to websocket.", ride_id, exc
            )
            self._send(outbound_event.ACCEPT_RIDE, {"ride_id": ride_id})
            return
        logger.info("Ride accepted via HTTP: %s", ride_id)

    # Channel callbacks (session thread) --------------------------------------
    def _on_frame(self, raw: Any) -> None:
        offer = self._normalizer.normalize(raw)
        if offer is None:
            return
        self._present(offer)

    def _present(self, offer: RideOffer) -> None:
        self._offers.present(offer)
        self._countdown.start()
        self._publish(pending_offer=offer, remaining_seconds=self._offers.remaining_seconds)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is self._connection_state:
            return
        self._connection_state = state
        self.connection_changed.emit(state)

    # Helpers -----------------------------------------------------------------
    def _send(self, event: outbound_event, data: dict) -> bool:
        if self._channel is None:
            logger.warning("No channel bound; dropping %s", event.value)
            return False
        return self._channel.send(event, data)

    def _publish(self, **changes: Any) -> None:
        self._state = self._state.evolve(**changes)
        self.state_changed.emit(self._state)


__all__ = ["CaptainSession"]
