from __future__ import annotations

from typing import Tuple

# Backend locations
DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_WS_PATH = "/ws"

# Auth endpoints
LOGIN_PATH = "/api/auth/login"
REGISTER_CAPTAIN_PATH = "/api/auth/register/captain"

# Location endpoints
UPDATE_LOCATION_PATH = "/api/location/update"


def captain_profile_path(captain_id: int | str) -> str:
    return f"/api/captains/{captain_id}"


def captain_ride_history_path(captain_id: int | str) -> str:
    return f"/api/trips/captain/{captain_id}"


def ride_details_path(ride_id: str) -> str:
    return f"/api/trips/{ride_id}"


def accept_ride_path(ride_id: str) -> str:
    return f"/api/trips/driver/rides/{ride_id}/accept"


def reject_ride_path(ride_id: str) -> str:
    return f"/api/trips/driver/rides/{ride_id}/reject"


def update_ride_status_path(ride_id: str) -> str:
    return f"/api/trips/driver/rides/{ride_id}/status"


# Headers
AUTH_HEADER = "Authorization"
CONTENT_TYPE_HEADER = "Content-Type"
APPLICATION_JSON = "application/json"

# Timing defaults (seconds)
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_HEARTBEAT_INTERVAL = 20.0
DEFAULT_PING_TIMEOUT = 10.0
DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 20.0
DEFAULT_DECISION_WINDOW = 30

# Offer payload defaults
DEFAULT_PICKUP_ADDRESS = "Pickup"
DEFAULT_DROPOFF_ADDRESS = "Dropoff"

# Values masked before payloads reach the log
SENSITIVE_KEYS: Tuple[str, ...] = ("password", "token", "auth_token", "session_token")
