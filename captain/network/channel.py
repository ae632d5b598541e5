"""
Persistent WebSocket channel between the captain client and the backend.

`ReconnectingChannel` owns at most one live connection. `connect` never blocks
its caller: the handshake runs on a worker thread. A dedicated daemon
thread blocks on `recv()` for each connection and hands every text frame to
the frame subscribers before receiving again; heartbeat pings and reconnect
attempts run on timer threads, and `send` may be called from any thread.
Transport failures never reach callers: they flip the published
`ConnectionState` and schedule a reconnect with exponential backoff.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, List, Mapping, Optional
from urllib.parse import quote

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from captain.core.config import CaptainConfig
from captain.core.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_WS_PATH,
)
from captain.core.logger import get_logger
from captain.core.utils import scrub_sensitive
from captain.network.json_codec import encode_frame
from captain.network.protocol import ConnectionState, Frame

logger = get_logger("channel")

_TRANSPORT_ERRORS = (OSError, WebSocketException)
# Past this exponent every realistic base delay is already above the cap.
_MAX_BACKOFF_EXPONENT = 64

StateListener = Callable[[ConnectionState], None]
FrameListener = Callable[[Any], None]
Connector = Callable[[str], Any]
TimerFactory = Callable[[float, Callable[[], None]], Any]
ThreadFactory = Callable[[Callable[[], None], str], Any]


class ChannelError(RuntimeError):
    """Raised inside the channel when a connection cannot be established."""


def _default_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


def _default_thread(target: Callable[[], None], name: str) -> threading.Thread:
    return threading.Thread(target=target, name=name, daemon=True)


def to_socket_base(url: str) -> str:
    cleaned = url.strip().rstrip("/")
    if cleaned.startswith("http://"):
        return "ws://" + cleaned[len("http://"):]
    if cleaned.startswith("https://"):
        return "wss://" + cleaned[len("https://"):]
    return cleaned


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    if attempt >= _MAX_BACKOFF_EXPONENT:
        return max_delay
    return min(max_delay, base_delay * (2 ** max(0, attempt)))


class ReconnectingChannel:
    def __init__(
        self,
        socket_url: str = DEFAULT_BASE_URL,
        *,
        ws_path: str = DEFAULT_WS_PATH,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        ping_timeout: float = DEFAULT_PING_TIMEOUT,
        base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        open_timeout: float = 10.0,
        connector: Optional[Connector] = None,
        timer_factory: Optional[TimerFactory] = None,
        thread_factory: Optional[ThreadFactory] = None,
    ) -> None:
        self.socket_url = socket_url
        self.ws_path = ws_path if ws_path.startswith("/") else f"/{ws_path}"
        self.heartbeat_interval = heartbeat_interval
        self.ping_timeout = ping_timeout
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.open_timeout = open_timeout
        self._connector = connector or self._open_websocket
        self._timer_factory = timer_factory or _default_timer
        self._thread_factory = thread_factory or _default_thread

        self._lock = threading.RLock()
        self._connection: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._token: Optional[str] = None
        self._manually_disconnected = False
        self._attempt = 0
        self._heartbeat_timer: Optional[Any] = None
        self._reconnect_timer: Optional[Any] = None
        self._reconnect_generation = 0
        self._state_listeners: List[StateListener] = []
        self._frame_listeners: List[FrameListener] = []

    @classmethod
    def from_config(cls, config: CaptainConfig, **overrides: Any) -> "ReconnectingChannel":
        return cls(
            config.socket_url,
            ws_path=config.ws_path,
            heartbeat_interval=config.heartbeat_interval,
            ping_timeout=config.ping_timeout,
            base_delay=config.reconnect_base_delay,
            max_delay=config.reconnect_max_delay,
            **overrides,
        )

    # Observers ---------------------------------------------------------------
    def subscribe_state(self, listener: StateListener) -> Callable[[], None]:
        """Register a connectivity observer; returns an unsubscribe callable.

        State listeners run while the channel lock is held so that every
        observer sees transitions in the order they happened. They must not
        block.
        """
        with self._lock:
            self._state_listeners.append(listener)
        return lambda: self._unsubscribe(self._state_listeners, listener)

    def subscribe_frames(self, listener: FrameListener) -> Callable[[], None]:
        """Register a raw inbound-frame observer (called on the receive thread)."""
        with self._lock:
            self._frame_listeners.append(listener)
        return lambda: self._unsubscribe(self._frame_listeners, listener)

    def _unsubscribe(self, listeners: List[Any], listener: Any) -> None:
        with self._lock:
            if listener in listeners:
                listeners.remove(listener)

    # Public state ------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempt(self) -> int:
        return self._attempt

    @property
    def manually_disconnected(self) -> bool:
        return self._manually_disconnected

    def build_url(self, token: str) -> str:
        return f"{to_socket_base(self.socket_url)}{self.ws_path}?token={quote(token, safe='')}"

    def backoff_delay(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay, self.max_delay)

    # Public API --------------------------------------------------------------
    def connect(self, auth_token: Optional[str]) -> None:
        """Start connecting in the background and return immediately.

        The previous connection (if any) is closed and CONNECTING is published
        before this returns; the handshake itself runs on a worker thread.
        """
        token = (auth_token or "").strip()
        if not token:
            logger.warning("Empty auth token; websocket connection skipped")
            return
        with self._lock:
            self._manually_disconnected = False
            self._token = token
            self._cancel_reconnect_locked()
            self._stop_heartbeat_locked()
            previous, self._connection = self._connection, None
            self._set_state_locked(ConnectionState.CONNECTING)
        if previous is not None:
            self._close_quietly(previous)
        self._thread_factory(self._open, "CaptainChannelConnect").start()

    def connect_if_needed(self, auth_token: Optional[str]) -> None:
        # An attempt already in flight counts as connected.
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug("connect_if_needed: channel is %s", self._state.value)
            return
        self.connect(auth_token)

    def disconnect(self) -> None:
        with self._lock:
            self._manually_disconnected = True
            self._token = None
            self._attempt = 0
            self._cancel_reconnect_locked()
            self._stop_heartbeat_locked()
            connection, self._connection = self._connection, None
            self._set_state_locked(ConnectionState.DISCONNECTED)
        if connection is not None:
            self._close_quietly(connection)
        logger.info("WebSocket disconnected")

    def send(self, event: Any, data: Mapping[str, Any]) -> bool:
        """Fire-and-forget one frame; returns False when it was dropped."""
        frame = Frame(event=getattr(event, "value", event), data=dict(data))
        with self._lock:
            connection = self._connection if self.is_connected else None
        if connection is None:
            logger.warning("Dropping %s: websocket not connected", frame.event)
            return False
        try:
            connection.send(encode_frame(frame))
        except _TRANSPORT_ERRORS as exc:
            logger.warning("WebSocket send of %s failed: %s", frame.event, exc)
            return False
        logger.info(
            "[Captain->Server] event=%s data=%s", frame.event, scrub_sensitive(frame.data)
        )
        return True

    # Connection lifecycle ----------------------------------------------------
    def _open_websocket(self, url: str) -> Any:
        return ws_connect(url, open_timeout=self.open_timeout)

    def _open(self) -> bool:
        with self._lock:
            token = self._token
            if token is None or self._manually_disconnected:
                return False
            previous, self._connection = self._connection, None
            self._stop_heartbeat_locked()
            url = self.build_url(token)
            self._set_state_locked(ConnectionState.CONNECTING)
        if previous is not None:
            self._close_quietly(previous)

        try:
            connection = self._establish(url)
        except ChannelError as exc:
            logger.warning("%s", exc)
            with self._lock:
                if self._token == token and self._connection is None:
                    self._set_state_locked(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()
            return False

        superseded = None
        with self._lock:
            stale = self._manually_disconnected or self._token != token
            if not stale:
                superseded, self._connection = self._connection, connection
                self._attempt = 0
                self._start_heartbeat_locked()
                self._set_state_locked(ConnectionState.CONNECTED)
        if stale:
            logger.info("Discarding websocket opened for a cancelled session")
            self._close_quietly(connection)
            return False
        if superseded is not None:
            self._close_quietly(superseded)

        logger.info("WebSocket connected to %s", self._redacted(url))
        self._thread_factory(
            lambda: self._receive_loop(connection), "CaptainChannelReceiver"
        ).start()
        return True

    def _establish(self, url: str) -> Any:
        try:
            return self._connector(url)
        except _TRANSPORT_ERRORS as exc:
            raise ChannelError(
                f"Unable to open websocket at {self._redacted(url)}: {exc}"
            ) from exc

    def _receive_loop(self, connection: Any) -> None:
        while True:
            try:
                raw = connection.recv()
            except _TRANSPORT_ERRORS as exc:
                self._handle_transport_failure(connection, f"receive failed: {exc}")
                return
            if not self._is_live(connection):
                return
            self._dispatch_frame(raw)

    def _dispatch_frame(self, raw: Any) -> None:
        with self._lock:
            listeners = list(self._frame_listeners)
        for listener in listeners:
            try:
                listener(raw)
            except Exception:  # noqa: BLE001 - one bad observer must not kill the loop
                logger.exception("Frame listener %r failed", listener)

    def _handle_transport_failure(self, connection: Any, reason: str) -> None:
        with self._lock:
            if connection is not self._connection:
                # Superseded or closed on purpose; nothing to recover.
                return
            self._connection = None
            self._stop_heartbeat_locked()
            self._set_state_locked(ConnectionState.DISCONNECTED)
        logger.warning("WebSocket %s", reason)
        self._close_quietly(connection)
        self._schedule_reconnect()

    def _is_live(self, connection: Any) -> bool:
        with self._lock:
            return connection is self._connection

    # Heartbeat ---------------------------------------------------------------
    def _start_heartbeat_locked(self) -> None:
        self._stop_heartbeat_locked()
        connection = self._connection
        timer = self._timer_factory(
            self.heartbeat_interval, lambda: self._heartbeat(connection)
        )
        self._heartbeat_timer = timer
        timer.start()

    def _stop_heartbeat_locked(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _heartbeat(self, connection: Any) -> None:
        if not self._is_live(connection):
            return
        try:
            pong = connection.ping()
            answered = pong.wait(self.ping_timeout)
        except _TRANSPORT_ERRORS as exc:
            self._handle_transport_failure(connection, f"heartbeat failed: {exc}")
            return
        if not answered:
            self._handle_transport_failure(
                connection, f"heartbeat got no pong within {self.ping_timeout}s"
            )
            return
        with self._lock:
            if connection is self._connection:
                self._start_heartbeat_locked()

    # Reconnect ---------------------------------------------------------------
    def _schedule_reconnect(self) -> Optional[float]:
        with self._lock:
            if self._manually_disconnected or not self._token:
                return None
            delay = self.backoff_delay(self._attempt)
            self._attempt += 1
            self._cancel_reconnect_locked()
            generation = self._reconnect_generation
            timer = self._timer_factory(delay, lambda: self._reconnect_fired(generation))
            self._reconnect_timer = timer
            timer.start()
        logger.info("Reconnecting in %.1fs (attempt %s)", delay, self._attempt)
        return delay

    def _cancel_reconnect_locked(self) -> None:
        self._reconnect_generation += 1
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _reconnect_fired(self, generation: int) -> None:
        with self._lock:
            if generation != self._reconnect_generation:
                return
            self._reconnect_timer = None
            if self._manually_disconnected:
                logger.debug("Reconnect skipped: manually disconnected")
                return
            if self._state is not ConnectionState.DISCONNECTED:
                logger.debug("Reconnect skipped: channel is %s", self._state.value)
                return
            if not self._token:
                return
        self._open()

    # Helpers -----------------------------------------------------------------
    def _set_state_locked(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.debug("Connection state -> %s", state.value)
        for listener in list(self._state_listeners):
            listener(state)

    def _close_quietly(self, connection: Any) -> None:
        try:
            connection.close()
        except _TRANSPORT_ERRORS as exc:
            logger.debug("Ignoring error while closing websocket: %s", exc)

    def _redacted(self, url: str) -> str:
        head, _, _ = url.partition("?token=")
        return f"{head}?token=***"


__all__ = [
    "ChannelError",
    "ReconnectingChannel",
    "backoff_delay",
    "to_socket_base",
]
