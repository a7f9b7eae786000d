"""
Email notification channel for the encoder alerting service.

Sends silence and recovery mails through Microsoft Graph using a cached
:class:`~alerts.mail_client.MailClient`.  The client is built lazily and
dropped by :meth:`EmailChannel.invalidate` whenever the mail settings
change, so the next send picks up the new credentials.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from encoder_common.models import ConfigSnapshot, MailConfig
from encoder_common.utils import human_time

from ..errors import ConfigError, NotConfiguredError
from ..mail_client import MailClient
from .base import NotificationChannel

logger = structlog.get_logger()

MailClientFactory = Callable[[MailConfig], MailClient]


def format_silence_mail(station_name: str, duration_ms: int, threshold_db: float) -> tuple[str, str]:
    """Return ``(subject, body)`` for a silence alert."""
    subject = f"[ALERT] Silence Detected - {station_name}"
    body = (
        "Silence detected on the audio encoder.\n\n"
        f"Duration:  {duration_ms / 1000.0:.1f} seconds\n"
        f"Threshold: {threshold_db:.1f} dB\n"
        f"Time:      {human_time()}\n\n"
        "Please check the audio source."
    )
    return subject, body


def format_recovery_mail(station_name: str, total_duration_ms: int) -> tuple[str, str]:
    """Return ``(subject, body)`` for a recovery notice."""
    subject = f"[OK] Audio Recovered - {station_name}"
    body = (
        "Audio recovered on the encoder.\n\n"
        f"Silence lasted: {total_duration_ms / 1000.0:.1f} seconds\n"
        f"Time:           {human_time()}"
    )
    return subject, body


class EmailChannel(NotificationChannel):
    """Deliver silence notifications by email.

    Args:
        client_factory: Builds a :class:`MailClient` from a
                        :class:`MailConfig` (tests inject fakes here).
    """

    name: str = "email"

    def __init__(self, client_factory: MailClientFactory = MailClient) -> None:
        self._client_factory = client_factory
        self._client: MailClient | None = None
        self._in_use: dict[MailClient, int] = {}
        self._lock = threading.Lock()

    def is_enabled(self, snapshot: ConfigSnapshot) -> bool:
        return snapshot.has_mail()

    def invalidate(self) -> None:
        """Drop the cached mail client.

        An idle client is closed now; one still used by a detached send is
        closed when that send finishes.
        """
        with self._lock:
            client, self._client = self._client, None
            idle = client is not None and client not in self._in_use
        if idle:
            client.close()
        logger.debug("mail_client_invalidated", closed=idle)

    def _acquire(self, cfg: MailConfig) -> MailClient:
        """Return the cached mail client, creating it if needed, and pin it."""
        with self._lock:
            if self._client is None:
                self._client = self._client_factory(cfg)
            client = self._client
            self._in_use[client] = self._in_use.get(client, 0) + 1
            return client

    def _release(self, client: MailClient) -> None:
        """Unpin *client*; close it if it was replaced while in use."""
        with self._lock:
            remaining = self._in_use[client] - 1
            if remaining:
                self._in_use[client] = remaining
            else:
                del self._in_use[client]
            retired = not remaining and client is not self._client
        if retired:
            client.close()

    def _send(self, snapshot: ConfigSnapshot, subject: str, body: str) -> None:
        cfg = snapshot.mail
        if not cfg.is_configured():
            raise NotConfiguredError("mail channel is not configured")
        recipients = cfg.recipient_list()
        if not recipients:
            raise ConfigError("no valid recipients")
        client = self._acquire(cfg)
        try:
            client.send_mail(recipients, subject, body)
        finally:
            self._release(client)

    def send_start(self, snapshot: ConfigSnapshot, duration_ms: int) -> None:
        subject, body = format_silence_mail(
            snapshot.station_name, duration_ms, snapshot.silence_threshold_db,
        )
        self._send(snapshot, subject, body)

    def send_recovery(self, snapshot: ConfigSnapshot, total_duration_ms: int) -> None:
        subject, body = format_recovery_mail(snapshot.station_name, total_duration_ms)
        self._send(snapshot, subject, body)

    def close(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            idle = client is not None and client not in self._in_use
        if idle:
            client.close()
