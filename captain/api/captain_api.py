"""
HTTP helpers for the captain client.

`CaptainAPI` wraps the backend's REST endpoints (auth, profile, trip history,
ride decisions, location updates). Every call goes through `_request`, which
attaches the bearer token, applies the configured timeout, logs a scrubbed
copy of the payload and turns transport failures, non-2xx replies and
undecodable bodies into `CaptainAPIError`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from captain.core import constants as api_constants
from captain.core.config import CaptainConfig
from captain.core.logger import get_logger
from captain.core.utils import scrub_sensitive

logger = get_logger("api")


class CaptainAPIError(RuntimeError):
    """Raised when the backend reports an error or the request fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CaptainAPI:
    def __init__(
        self,
        base_url: str = api_constants.DEFAULT_BASE_URL,
        *,
        timeout: float = api_constants.DEFAULT_HTTP_TIMEOUT,
        auth_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout
        self.auth_token = (auth_token or "").strip() or None
        self._session = session

    @classmethod
    def from_config(cls, config: CaptainConfig, **kwargs: Any) -> "CaptainAPI":
        return cls(config.base_url, timeout=config.http_timeout, **kwargs)

    # Auth ------------------------------------------------------------------------
    def login(self, *, email: str, password: str) -> Dict[str, Any]:
        output = self._request(
            "POST",
            api_constants.LOGIN_PATH,
            payload={"email": (email or "").strip(), "password": password},
            authenticated=False,
        )
        if not isinstance(output, dict):
            raise CaptainAPIError("Backend returned an empty login response.")
        if not output.get("success"):
            raise CaptainAPIError(str(output.get("message") or "Login failed."))
        token = (output.get("token") or "").strip()
        if token:
            self.auth_token = token
        user = output.get("user")
        if not isinstance(user, dict):
            raise CaptainAPIError("Backend did not include user profile details.")
        return {**user, "token": token or None}

    def register_captain(self, **fields: Any) -> Dict[str, Any]:
        required = ("first_name", "family_name", "email", "password", "phone_number")
        missing = [name for name in required if not str(fields.get(name) or "").strip()]
        if missing:
            raise CaptainAPIError(f"Missing registration fields: {', '.join(missing)}")
        # Dates go out as ISO-8601 like the mobile client sends them.
        payload = {
            _camel(key): value.isoformat() if hasattr(value, "isoformat") else value
            for key, value in fields.items()
        }
        output = self._request(
            "POST", api_constants.REGISTER_CAPTAIN_PATH, payload=payload, authenticated=False
        )
        return output if isinstance(output, dict) else {}

    # Profile & history -----------------------------------------------------------
    def fetch_profile(self, *, captain_id: int) -> Dict[str, Any]:
        output = self._request("GET", api_constants.captain_profile_path(captain_id))
        if not isinstance(output, dict):
            raise CaptainAPIError("Unexpected response for captain profile.")
        return output

    def fetch_ride_history(self, *, captain_id: int) -> List[Dict[str, Any]]:
        output = self._request("GET", api_constants.captain_ride_history_path(captain_id))
        if isinstance(output, dict):
            trips = output.get("trips")
            if trips is None:
                trips = output.get("data")
            output = trips
        if not isinstance(output, list):
            return []
        return [entry for entry in output if isinstance(entry, dict)]

    def fetch_ride_details(self, ride_id: str) -> Dict[str, Any]:
        output = self._request("GET", api_constants.ride_details_path(_ride_key(ride_id)))
        if not isinstance(output, dict):
            raise CaptainAPIError("Unexpected response for ride details.")
        return output

    # Ride decisions --------------------------------------------------------------
    def accept_ride(self, ride_id: str, *, auth_token: Optional[str] = None) -> Any:
        return self._request(
            "POST",
            api_constants.accept_ride_path(_ride_key(ride_id)),
            auth_token=auth_token,
        )

    def reject_ride(self, ride_id: str) -> Any:
        return self._request("POST", api_constants.reject_ride_path(_ride_key(ride_id)))

    def update_ride_status(self, ride_id: str, status: str) -> Any:
        cleaned = (status or "").strip()
        if not cleaned:
            raise CaptainAPIError("status is required.")
        return self._request(
            "POST",
            api_constants.update_ride_status_path(_ride_key(ride_id)),
            payload={"status": cleaned},
        )

    def update_location(self, *, latitude: float, longitude: float) -> Any:
        return self._request(
            "POST",
            api_constants.UPDATE_LOCATION_PATH,
            payload={"latitude": float(latitude), "longitude": float(longitude)},
        )

    # Internal helpers ------------------------------------------------------------
    def _headers(
        self, authenticated: bool, auth_token: Optional[str] = None
    ) -> Dict[str, str]:
        headers = {api_constants.CONTENT_TYPE_HEADER: api_constants.APPLICATION_JSON}
        token = (auth_token or "").strip() or self.auth_token
        if authenticated and token:
            headers[api_constants.AUTH_HEADER] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        auth_token: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        session = self._session or requests
        logger.info(
            "[Captain->Server] %s %s payload=%s", method, path, scrub_sensitive(payload or {})
        )
        try:
            response = session.request(
                method,
                url,
                json=payload,
                headers=self._headers(authenticated, auth_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("HTTP error while calling %s %s: %s", method, url, exc)
            raise CaptainAPIError(f"Unable to reach backend at {self.base_url}: {exc}") from exc

        if response is None:
            raise CaptainAPIError(f"No HTTP response for {method} {path}")
        status = response.status_code
        logger.info("[Captain<-Server] %s %s status=%s", method, path, status)
        if not 200 <= status < 300:
            raise CaptainAPIError(
                _error_message(response) or f"Backend returned HTTP {status}",
                status_code=status,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise CaptainAPIError(
                "Malformed response from server", status_code=status
            ) from exc


def _ride_key(ride_id: Any) -> str:
    key = str(ride_id or "").strip()
    if not key:
        raise CaptainAPIError("ride_id is required.")
    return key


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _error_message(response: Any) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or "")
    return ""


__all__ = ["CaptainAPI", "CaptainAPIError"]
