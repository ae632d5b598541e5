from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
from uuid import uuid4

from captain.core.constants import (
    DEFAULT_DECISION_WINDOW,
    DEFAULT_DROPOFF_ADDRESS,
    DEFAULT_PICKUP_ADDRESS,
)


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0

    def is_usable(self) -> bool:
        """Valid and not the (0, 0) origin that broken GPS fixes report."""
        if not self.is_valid():
            return False
        return not (abs(self.lat) < 0.0001 and abs(self.lng) < 0.0001)

    def as_payload(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class RideOffer:
    ride_id: str
    pickup_address: str = DEFAULT_PICKUP_ADDRESS
    dropoff_address: str = DEFAULT_DROPOFF_ADDRESS
    fare: float = 0.0
    customer_name: Optional[str] = None
    customer_rating: Optional[float] = None
    distance_km: Optional[float] = None
    pickup_location: Optional[Coordinate] = None
    # Local list/sheet identity only; never sent to the backend.
    identity: str = field(default_factory=lambda: uuid4().hex, compare=False)

    def __post_init__(self) -> None:
        if not self.ride_id:
            raise ValueError("RideOffer requires a non-empty ride_id")

    def as_payload(self) -> Dict[str, Any]:
        return {
            "ride_id": self.ride_id,
            "pickup_address": self.pickup_address,
            "dropoff_address": self.dropoff_address,
            "estimated_fare": self.fare,
            "customer_name": self.customer_name,
            "customer_rating": self.customer_rating,
            "distance_km": self.distance_km,
            "pickup_location": (
                self.pickup_location.as_payload() if self.pickup_location else None
            ),
        }


class intent_kind(enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class intent_reason(enum.Enum):
    DRIVER = "driver"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class OfferIntent:
    kind: intent_kind
    ride_id: str
    reason: intent_reason = intent_reason.DRIVER


@dataclass
class OfferDecisionWindow:
    offer: RideOffer
    remaining_seconds: int = DEFAULT_DECISION_WINDOW
    deadline_action: intent_kind = intent_kind.REJECT

    @property
    def expired(self) -> bool:
        return self.remaining_seconds <= 0


@dataclass(frozen=True)
class DriverSessionState:
    is_online: bool = False
    current_position: Optional[Coordinate] = None
    pending_offer: Optional[RideOffer] = None
    remaining_seconds: Optional[int] = None

    def evolve(self, **changes: Any) -> "DriverSessionState":
        return replace(self, **changes)


__all__ = [
    "Coordinate",
    "DriverSessionState",
    "OfferDecisionWindow",
    "OfferIntent",
    "RideOffer",
    "intent_kind",
    "intent_reason",
]
