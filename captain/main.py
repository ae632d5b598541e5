"""Headless entry point: keep a captain session online and log what arrives."""

from __future__ import annotations

import argparse
import signal
import sys
from typing import List, Optional

from PyQt6.QtCore import QCoreApplication, QTimer

from captain.api.captain_api import CaptainAPI
from captain.core.config import load_config, optional_env
from captain.core.logger import get_logger
from captain.network.channel import ReconnectingChannel
from captain.network.protocol import ConnectionState
from captain.rides.models import DriverSessionState, RideOffer
from captain.session import CaptainSession

logger = get_logger("main")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a headless captain session against the ride backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Backend base URL; overrides CAPTAIN_BASE_URL (default: from env).",
    )
    parser.add_argument(
        "--token",
        default=optional_env("CAPTAIN_AUTH_TOKEN"),
        help="Bearer token used for the socket and HTTP calls.",
    )
    parser.add_argument(
        "--driver-id",
        default=optional_env("CAPTAIN_DRIVER_ID"),
        help="Captain id sent with go_online/go_offline events.",
    )
    parser.add_argument(
        "--online",
        action="store_true",
        help="Go online as soon as the session starts.",
    )
    return parser.parse_args(argv)


def _log_state(state: DriverSessionState) -> None:
    offer = state.pending_offer
    logger.info(
        "online=%s position=%s offer=%s remaining=%s",
        state.is_online,
        state.current_position,
        offer.ride_id if offer else None,
        state.remaining_seconds,
    )


def _log_connection(state: ConnectionState) -> None:
    logger.info("Connection: %s", state.value)


def _log_expired(offer: RideOffer) -> None:
    logger.info("Offer %s expired without a decision", offer.ride_id)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    config = load_config()
    if args.base_url:
        config = config.with_base_url(args.base_url)

    app = QCoreApplication(sys.argv[:1])
    api = CaptainAPI.from_config(config, auth_token=args.token)
    channel = ReconnectingChannel.from_config(config)
    session = CaptainSession(api, window_seconds=config.decision_window)
    session.state_changed.connect(_log_state)
    session.connection_changed.connect(_log_connection)
    session.offer_expired.connect(_log_expired)

    session.start(driver_id=args.driver_id, auth_token=args.token, channel=channel)
    if args.online:
        session.go_online()

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Python signal handlers only run when the interpreter regains control.
    keepalive = QTimer()
    keepalive.timeout.connect(lambda: None)
    keepalive.start(250)

    logger.info("Captain session running against %s", config.base_url)
    try:
        return app.exec()
    finally:
        session.stop()


if __name__ == "__main__":
    sys.exit(main())
