"""
Webhook notification channel for the encoder alerting service.

Sends HTTP POST requests with a JSON silence/recovery payload to the
configured webhook URL, retrying transport errors and 5xx responses
(3 attempts, exponential backoff).
"""

from __future__ import annotations

import threading
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from encoder_common.models import ConfigSnapshot
from encoder_common.utils import iso_utc

from .base import NotificationChannel

logger = structlog.get_logger()

# Defaults, overridable via the constructor.
_DEFAULT_MAX_ATTEMPTS = 3
_DEFAULT_TIMEOUT_S = 10.0


class _RetryableStatus(Exception):
    """A 5xx webhook response worth another attempt."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"webhook returned {response.status_code}")
        self.response = response


def build_webhook_payload(
    event: str,
    snapshot: ConfigSnapshot,
    duration_ms: int,
    *,
    include_threshold: bool = True,
) -> dict[str, Any]:
    """Build the JSON body posted for a silence or recovery event."""
    payload: dict[str, Any] = {
        "event": event,
        "station": snapshot.station_name,
        "duration_ms": duration_ms,
        "duration_seconds": round(duration_ms / 1000.0, 1),
        "timestamp": iso_utc(),
    }
    if include_threshold:
        payload["threshold_db"] = snapshot.silence_threshold_db
    return payload


class WebhookChannel(NotificationChannel):
    """Deliver silence notifications as HTTP POST JSON payloads.

    Uses :mod:`httpx` for HTTP and :mod:`tenacity` for retry with
    exponential back-off.  The URL is read from each snapshot, so a
    reconfigured webhook takes effect on the next event.

    Args:
        max_attempts: Number of delivery attempts (default 3).
        timeout: Per-request timeout in seconds (default 10).
        backoff: Base delay in seconds for the exponential back-off.
        headers: Optional extra headers to include on every request.
        http_client: ``httpx.Client`` to use instead of a private one.
    """

    name: str = "webhook"

    def __init__(
        self,
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        timeout: float = _DEFAULT_TIMEOUT_S,
        backoff: float = 1.0,
        headers: dict[str, str] | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff = backoff
        self.headers = headers or {}
        self._client = http_client
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Return (and lazily create) the shared ``httpx.Client``."""
        with self._lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(timeout=self.timeout)
            return self._client

    def is_enabled(self, snapshot: ConfigSnapshot) -> bool:
        return snapshot.has_webhook()

    # ── delivery ──

    def _post_with_retry(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        """POST *payload* to *url* with retry.

        The retry decorator is built per call so ``max_attempts`` can be
        set at construction time rather than module-import time.
        """

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, min=self.backoff, max=10),
            retry=retry_if_exception_type((_RetryableStatus, httpx.TransportError)),
            reraise=True,
        )
        def _inner() -> httpx.Response:
            resp = self._get_client().post(
                url,
                json=payload,
                headers={"Content-Type": "application/json", **self.headers},
            )
            if resp.status_code >= 500:
                raise _RetryableStatus(resp)
            resp.raise_for_status()
            return resp

        try:
            return _inner()
        except _RetryableStatus as exc:
            exc.response.raise_for_status()
            raise

    def _send(self, url: str, payload: dict[str, Any]) -> None:
        log = logger.bind(channel=self.name, webhook_event=payload["event"])
        resp = self._post_with_retry(url, payload)
        log.info("webhook_delivered", status=resp.status_code)

    def send_start(self, snapshot: ConfigSnapshot, duration_ms: int) -> None:
        payload = build_webhook_payload("silence_detected", snapshot, duration_ms)
        self._send(snapshot.webhook_url, payload)

    def send_recovery(self, snapshot: ConfigSnapshot, total_duration_ms: int) -> None:
        payload = build_webhook_payload(
            "audio_recovered", snapshot, total_duration_ms, include_threshold=False,
        )
        self._send(snapshot.webhook_url, payload)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None and not client.is_closed:
            client.close()
