import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

# JSON-like payload alias
JSONPayload = Dict[str, Any]


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# ==== CAPTAIN → SERVER ====


class outbound_event(str, enum.Enum):
    GO_ONLINE = "go_online"
    GO_OFFLINE = "go_offline"
    ACCEPT_RIDE = "accept_ride"
    REJECT_RIDE = "reject_ride"


# ==== SERVER → CAPTAIN ====


class inbound_event(str, enum.Enum):
    NEW_RIDE_REQUEST = "new_ride_request"


# Some backend builds tag the event under "@event" instead of "event", and a
# few emit the tag text itself as the value.
EVENT_NAME_KEYS = ("event", "@event")
NEW_RIDE_REQUEST_ALIASES = frozenset(
    {
        inbound_event.NEW_RIDE_REQUEST.value,
        "@event: new_ride_request",
    }
)


@dataclass(frozen=True)
class Frame:
    event: str
    data: Optional[JSONPayload] = None
