"""
Tests for the `CaptainSession` facade.

A fake channel records outgoing frames and lets the tests push raw frames and
connection states as if they came from the socket threads. Everything runs on
the test thread, so Qt delivers the session's internal signals synchronously.

Run with:
    python -m unittest tests.test_session
"""

from __future__ import annotations

import json
import os
import sys
import threading
import time
import unittest
from typing import Any, Callable, Dict, List, Optional, Tuple

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import requests  # noqa: E402
from PyQt6.QtCore import QCoreApplication  # noqa: E402

from captain.api.captain_api import CaptainAPI  # noqa: E402
from captain.network.protocol import ConnectionState  # noqa: E402
from captain.rides.models import Coordinate, DriverSessionState, RideOffer  # noqa: E402
from captain.session import CaptainSession  # noqa: E402

APP = QCoreApplication.instance() or QCoreApplication([])


def _offer_frame(ride_id: str, **extra: Any) -> str:
    data: Dict[str, Any] = {
        "ride_id": ride_id,
        "pickup_address": "Hamra",
        "dropoff_address": "Verdun",
        "estimated_fare": 9.0,
    }
    data.update(extra)
    return json.dumps({"event": "new_ride_request", "data": data})


class FakeChannel:
    def __init__(self, state: ConnectionState = ConnectionState.CONNECTED) -> None:
        self.state = state
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.connect_calls: List[Optional[str]] = []
        self.disconnect_calls = 0
        self.frame_listeners: List[Callable[[Any], None]] = []
        self.state_listeners: List[Callable[[ConnectionState], None]] = []

    def subscribe_frames(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        self.frame_listeners.append(listener)
        return lambda: self.frame_listeners.remove(listener)

    def subscribe_state(
        self, listener: Callable[[ConnectionState], None]
    ) -> Callable[[], None]:
        self.state_listeners.append(listener)
        return lambda: self.state_listeners.remove(listener)

    def connect_if_needed(self, auth_token: Optional[str]) -> None:
        self.connect_calls.append(auth_token)

    def disconnect(self) -> None:
        self.disconnect_calls += 1

    def send(self, event: Any, data: Dict[str, Any]) -> bool:
        self.sent.append((getattr(event, "value", event), dict(data)))
        return True

    def push_frame(self, raw: Any) -> None:
        for listener in list(self.frame_listeners):
            listener(raw)

    def push_state(self, state: ConnectionState) -> None:
        self.state = state
        for listener in list(self.state_listeners):
            listener(state)


class FakeResponse:
    def __init__(self, status_code: int, body: Any = None, raw: bytes = b"") -> None:
        self.status_code = status_code
        self._body = body
        self.content = raw if body is None else json.dumps(body).encode("utf-8")

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeHTTP:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class SessionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.channel = FakeChannel()
        self.http = FakeHTTP(FakeResponse(200, {"success": True}))
        self.api = CaptainAPI("http://backend.test", session=self.http)
        self.session = CaptainSession(self.api, background=lambda work: work())
        self.states: List[DriverSessionState] = []
        self.expired: List[RideOffer] = []
        self.session.state_changed.connect(self.states.append)
        self.session.offer_expired.connect(self.expired.append)
        self.session.start(driver_id=7, auth_token="tok", channel=self.channel)

    def tearDown(self) -> None:
        self.session.stop()


class LifecycleTest(SessionTestCase):
    def test_start_connects_with_token(self) -> None:
        self.assertEqual(self.channel.connect_calls, ["tok"])
        self.assertEqual(self.session.driver_id, "7")

    def test_start_without_token_does_not_connect(self) -> None:
        channel = FakeChannel(ConnectionState.DISCONNECTED)
        session = CaptainSession(background=lambda work: work())
        session.start(driver_id="7", auth_token="  ", channel=channel)
        self.assertEqual(channel.connect_calls, [])

    def test_stop_disconnects_channel(self) -> None:
        self.session.stop()
        self.assertEqual(self.channel.disconnect_calls, 1)

    def test_binding_same_channel_twice_keeps_one_subscription(self) -> None:
        self.session.bind_channel(self.channel)
        self.assertEqual(len(self.channel.frame_listeners), 1)
        self.assertEqual(len(self.channel.state_listeners), 1)

    def test_rebinding_moves_subscriptions(self) -> None:
        replacement = FakeChannel(ConnectionState.DISCONNECTED)
        self.session.bind_channel(replacement)
        self.assertEqual(self.channel.frame_listeners, [])
        self.assertEqual(len(replacement.frame_listeners), 1)
        self.assertIs(self.session.channel, replacement)
        self.assertIs(self.session.connection_state, ConnectionState.DISCONNECTED)

    def test_connection_changes_are_forwarded(self) -> None:
        seen: List[ConnectionState] = []
        self.session.connection_changed.connect(seen.append)
        self.channel.push_state(ConnectionState.DISCONNECTED)
        self.channel.push_state(ConnectionState.CONNECTING)
        self.assertEqual(
            seen, [ConnectionState.DISCONNECTED, ConnectionState.CONNECTING]
        )
        self.assertIs(self.session.connection_state, ConnectionState.CONNECTING)


class OnlineStatusTest(SessionTestCase):
    def test_go_online_sends_driver_id(self) -> None:
        self.session.go_online()
        self.assertTrue(self.session.state.is_online)
        self.assertEqual(self.channel.sent, [("go_online", {"driver_id": "7"})])

    def test_toggle_flips_and_sends(self) -> None:
        self.session.toggle_online()
        self.session.toggle_online()
        self.assertFalse(self.session.state.is_online)
        self.assertEqual(
            [event for event, _ in self.channel.sent], ["go_online", "go_offline"]
        )

    def test_unknown_driver_updates_state_without_sending(self) -> None:
        session = CaptainSession(background=lambda work: work())
        channel = FakeChannel()
        session.start(driver_id=None, auth_token="tok", channel=channel)
        session.go_online()
        self.assertTrue(session.state.is_online)
        self.assertEqual(channel.sent, [])


class OfferFlowTest(SessionTestCase):
    def test_offer_frame_presents_offer_with_countdown(self) -> None:
        self.channel.push_frame(_offer_frame("r1"))
        state = self.session.state
        self.assertIsNotNone(state.pending_offer)
        assert state.pending_offer is not None
        self.assertEqual(state.pending_offer.ride_id, "r1")
        self.assertEqual(state.remaining_seconds, 30)
        self.assertTrue(self.session.countdown_active)

    def test_ignored_frames_leave_state_alone(self) -> None:
        self.channel.push_frame(json.dumps({"event": "chat", "data": {}}))
        self.channel.push_frame("garbage")
        self.assertIsNone(self.session.state.pending_offer)
        self.assertEqual(self.states, [])

    def test_newer_offer_replaces_pending_one(self) -> None:
        self.channel.push_frame(_offer_frame("A"))
        for _ in range(5):
            self.session.tick()
        self.assertEqual(self.session.state.remaining_seconds, 25)

        self.channel.push_frame(_offer_frame("B"))

        state = self.session.state
        assert state.pending_offer is not None
        self.assertEqual(state.pending_offer.ride_id, "B")
        self.assertEqual(state.remaining_seconds, 30)
        self.assertEqual(self.channel.sent, [])

    def test_countdown_expiry_rejects_and_notifies(self) -> None:
        self.channel.push_frame(_offer_frame("r1"))
        for _ in range(29):
            self.session.tick()
        self.assertEqual(self.session.state.remaining_seconds, 1)

        self.session.tick()

        self.assertEqual(self.channel.sent, [("reject_ride", {"ride_id": "r1"})])
        self.assertIsNone(self.session.state.pending_offer)
        self.assertIsNone(self.session.state.remaining_seconds)
        self.assertEqual([offer.ride_id for offer in self.expired], ["r1"])
        self.assertFalse(self.session.countdown_active)

    def test_tick_without_offer_is_a_no_op(self) -> None:
        self.session.tick()
        self.assertEqual(self.states, [])
        self.assertEqual(self.channel.sent, [])

    def test_reject_sends_frame_and_clears(self) -> None:
        self.channel.push_frame(_offer_frame("r1"))
        self.assertEqual(self.session.reject_offer(), "r1")
        self.assertEqual(self.channel.sent, [("reject_ride", {"ride_id": "r1"})])
        self.assertIsNone(self.session.state.pending_offer)
        self.assertFalse(self.session.countdown_active)

    def test_decisions_without_offer_do_nothing(self) -> None:
        self.assertIsNone(self.session.accept_offer())
        self.assertIsNone(self.session.reject_offer())
        self.assertEqual(self.channel.sent, [])
        self.assertEqual(self.http.calls, [])

    def test_explicit_id_for_other_ride_keeps_window_open(self) -> None:
        self.channel.push_frame(_offer_frame("r1"))
        self.assertEqual(self.session.reject_offer("r9"), "r9")
        self.assertEqual(self.channel.sent, [("reject_ride", {"ride_id": "r9"})])
        state = self.session.state
        assert state.pending_offer is not None
        self.assertEqual(state.pending_offer.ride_id, "r1")

    def test_dismiss_clears_without_sending(self) -> None:
        self.channel.push_frame(_offer_frame("r1"))
        self.session.dismiss_offer()
        self.assertIsNone(self.session.state.pending_offer)
        self.assertEqual(self.channel.sent, [])
        self.assertFalse(self.session.countdown_active)

    def test_states_are_published_in_mutation_order(self) -> None:
        self.session.go_online()
        self.channel.push_frame(_offer_frame("r1"))
        self.session.tick()
        self.session.reject_offer()
        self.assertEqual(
            [(s.is_online, s.remaining_seconds) for s in self.states],
            [(True, None), (True, 30), (True, 29), (True, None)],
        )


class AcceptOfferTest(SessionTestCase):
    def test_http_success_sends_no_frame(self) -> None:
        self.channel.push_frame(_offer_frame("r1"))
        self.assertEqual(self.session.accept_offer(), "r1")
        self.assertEqual(self.channel.sent, [])
        self.assertEqual(len(self.http.calls), 1)
        call = self.http.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(
            call["url"], "http://backend.test/api/trips/driver/rides/r1/accept"
        )
        self.assertEqual(call["headers"]["Authorization"], "Bearer tok")
        self.assertIsNone(self.session.state.pending_offer)

    def test_http_error_falls_back_to_socket(self) -> None:
        self.http.outcome = FakeResponse(500, {"message": "boom"})
        self.session.accept_offer("r1", "tok")
        self.assertEqual(self.channel.sent, [("accept_ride", {"ride_id": "r1"})])
        call = self.http.calls[0]
        self.assertEqual(call["headers"]["Authorization"], "Bearer tok")
        self.assertEqual(call["timeout"], 30.0)

    def test_explicit_token_overrides_session_token(self) -> None:
        self.session.accept_offer("r1", "fresh")
        self.assertEqual(
            self.http.calls[0]["headers"]["Authorization"], "Bearer fresh"
        )

    def test_success_with_unreadable_body_sends_no_frame(self) -> None:
        self.http.outcome = FakeResponse(200, raw=b"OK")
        self.channel.push_frame(_offer_frame("r1"))
        with self.assertLogs("captain.session", level="INFO"):
            self.assertEqual(self.session.accept_offer("r1", "tok"), "r1")
        self.assertEqual(self.channel.sent, [])
        self.assertEqual(len(self.http.calls), 1)

    def test_transport_error_falls_back_to_socket(self) -> None:
        self.http.outcome = requests.ConnectionError("refused")
        self.channel.push_frame(_offer_frame("r1"))
        self.session.accept_offer()
        self.assertEqual(self.channel.sent, [("accept_ride", {"ride_id": "r1"})])

    def test_without_http_client_accepts_over_socket(self) -> None:
        session = CaptainSession(background=lambda work: work())
        channel = FakeChannel()
        session.start(driver_id="7", auth_token="tok", channel=channel)
        channel.push_frame(_offer_frame("r1"))
        session.accept_offer()
        self.assertEqual(channel.sent, [("accept_ride", {"ride_id": "r1"})])


class ChannelThreadDeliveryTest(SessionTestCase):
    def _from_worker_thread(self, work: Callable[[], None]) -> None:
        worker = threading.Thread(target=work, name="FakeChannelReceiver")
        worker.start()
        worker.join(5.0)
        self.assertFalse(worker.is_alive())

    def _drain_events(self, done: Callable[[], bool]) -> None:
        deadline = time.monotonic() + 2.0
        while not done() and time.monotonic() < deadline:
            APP.processEvents()
            time.sleep(0.01)

    def test_frame_from_channel_thread_is_handled_on_session_thread(self) -> None:
        handled_on: List[threading.Thread] = []
        self.session.state_changed.connect(
            lambda _: handled_on.append(threading.current_thread())
        )

        self._from_worker_thread(lambda: self.channel.push_frame(_offer_frame("r1")))
        # Queued for the session's thread; nothing applied yet.
        self.assertIsNone(self.session.state.pending_offer)

        self._drain_events(lambda: self.session.state.pending_offer is not None)

        offer = self.session.state.pending_offer
        assert offer is not None
        self.assertEqual(offer.ride_id, "r1")
        self.assertEqual(handled_on, [threading.main_thread()])
        self.assertTrue(self.session.countdown_active)

    def test_connection_state_from_channel_thread_is_queued(self) -> None:
        seen_on: List[threading.Thread] = []
        self.session.connection_changed.connect(
            lambda _: seen_on.append(threading.current_thread())
        )

        self._from_worker_thread(
            lambda: self.channel.push_state(ConnectionState.DISCONNECTED)
        )
        self.assertIs(self.session.connection_state, ConnectionState.CONNECTED)

        self._drain_events(
            lambda: self.session.connection_state is ConnectionState.DISCONNECTED
        )

        self.assertIs(self.session.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(seen_on, [threading.main_thread()])


class PositionTest(SessionTestCase):
    def test_usable_position_is_published(self) -> None:
        self.assertTrue(self.session.update_position(33.89, 35.50))
        self.assertEqual(
            self.session.state.current_position, Coordinate(lat=33.89, lng=35.50)
        )

    def test_null_island_and_out_of_range_are_ignored(self) -> None:
        self.assertFalse(self.session.update_position(0.0, 0.0))
        self.assertFalse(self.session.update_position(95.0, 35.5))
        self.assertIsNone(self.session.state.current_position)
        self.assertEqual(self.states, [])


if __name__ == "__main__":
    unittest.main()
