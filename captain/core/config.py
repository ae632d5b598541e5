"""Runtime configuration for the captain client core.

Values come from the process environment, optionally seeded from a ``.env``
file next to the package or at the repository root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_DECISION_WINDOW,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_WS_PATH,
)
from .logger import get_logger

logger = get_logger("config")

_ENV_CANDIDATES = [
    Path(__file__).resolve().parents[1] / ".env",
    Path(__file__).resolve().parents[2] / ".env",
]


@dataclass(frozen=True)
class CaptainConfig:
    base_url: str = DEFAULT_BASE_URL
    socket_url: str = DEFAULT_BASE_URL
    ws_path: str = DEFAULT_WS_PATH
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    ping_timeout: float = DEFAULT_PING_TIMEOUT
    reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY
    reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY
    decision_window: int = DEFAULT_DECISION_WINDOW

    def with_base_url(self, base_url: str) -> "CaptainConfig":
        """Point both HTTP and socket traffic at ``base_url``."""
        cleaned = base_url.strip().rstrip("/")
        return replace(self, base_url=cleaned, socket_url=cleaned)


def _positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number (using %s)", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive (using %s)", name, raw, default)
        return default
    return value


def _positive_int(name: str, default: int) -> int:
    value = _positive_float(name, float(default))
    if not value.is_integer():
        logger.warning("Ignoring %s=%r: must be a whole number (using %s)", name, value, default)
        return default
    return int(value)


def _url(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    return raw.rstrip("/") if raw else default


def load_config(*, load_env_files: bool = True) -> CaptainConfig:
    if load_env_files:
        for env_path in _ENV_CANDIDATES:
            if env_path.exists():
                load_dotenv(env_path, override=False)

    base_url = _url("CAPTAIN_BASE_URL", DEFAULT_BASE_URL)
    ws_path = (os.getenv("CAPTAIN_WS_PATH") or "").strip() or DEFAULT_WS_PATH
    if not ws_path.startswith("/"):
        ws_path = f"/{ws_path}"
    base_delay = _positive_float("CAPTAIN_RECONNECT_BASE_DELAY", DEFAULT_RECONNECT_BASE_DELAY)
    max_delay = _positive_float("CAPTAIN_RECONNECT_MAX_DELAY", DEFAULT_RECONNECT_MAX_DELAY)
    if max_delay < base_delay:
        logger.warning(
            "CAPTAIN_RECONNECT_MAX_DELAY (%s) is below the base delay (%s); raising it",
            max_delay,
            base_delay,
        )
        max_delay = base_delay
    return CaptainConfig(
        base_url=base_url,
        socket_url=_url("CAPTAIN_SOCKET_URL", base_url),
        ws_path=ws_path,
        http_timeout=_positive_float("CAPTAIN_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        heartbeat_interval=_positive_float(
            "CAPTAIN_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL
        ),
        ping_timeout=_positive_float("CAPTAIN_PING_TIMEOUT", DEFAULT_PING_TIMEOUT),
        reconnect_base_delay=base_delay,
        reconnect_max_delay=max_delay,
        decision_window=_positive_int("CAPTAIN_DECISION_WINDOW", DEFAULT_DECISION_WINDOW),
    )


def optional_env(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


__all__ = ["CaptainConfig", "load_config", "optional_env"]
