"""
Alert service entry point for the audio encoder.

Subcommands:

* ``run``: start the alerting service and block until SIGINT/SIGTERM.
* ``test-email``: validate the mail settings and send a test message.
* ``secret-expiry``: run one client-secret expiry check and print it.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading

import structlog

from encoder_common.config import Settings, get_settings
from encoder_common.logging import configure_logging

from .errors import AlertsError
from .expiry_monitor import SecretExpiryMonitor
from .mail_client import send_test_email
from .service import AlertService

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="encoder-alerts",
        description="Silence alerting and client-secret monitoring for the audio encoder",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override ENCODER_LOG_LEVEL",
    )
    parser.add_argument(
        "--console",
        action="store_true",
        help="Human-readable logs instead of JSON",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the alerting service until interrupted")
    sub.add_parser("test-email", help="Send a test email and exit")
    sub.add_parser("secret-expiry", help="Check the client-secret expiry and exit")
    return parser


def _run(settings: Settings) -> int:
    shutdown = threading.Event()

    def handler(signum, frame):  # type: ignore[no-untyped-def]
        logger.info("shutdown_signal", signal=signal.Signals(signum).name)
        shutdown.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)

    service = AlertService(settings)
    service.start()
    try:
        shutdown.wait()
    finally:
        service.stop()
    return 0


def _test_email(settings: Settings) -> int:
    try:
        send_test_email(settings.mail_config(), settings.station_name)
    except AlertsError as exc:
        print(f"Test email failed: {exc}", file=sys.stderr)
        return 1
    print("Test email sent successfully.")
    return 0


def _secret_expiry(settings: Settings) -> int:
    monitor = SecretExpiryMonitor(
        settings.mail_config(),
        base_url=settings.graph_base_url,
        warning_days=settings.expiry_warning_days,
    )
    try:
        info = monitor.check_now()
    finally:
        monitor.close()
    print(info.model_dump_json(indent=2))
    return 0 if info.error is None else 1


def main(argv: list[str] | None = None) -> int:
    """Parse *argv* and run the chosen subcommand."""
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(
        "alerts",
        args.log_level or settings.log_level,
        json_output=not args.console,
    )

    if args.command == "test-email":
        return _test_email(settings)
    if args.command == "secret-expiry":
        return _secret_expiry(settings)
    return _run(settings)


if __name__ == "__main__":
    sys.exit(main())
