"""
Microsoft Graph mail delivery client for the encoder alerting service.

Sends plain-text messages through ``POST /users/{from}/sendMail`` with a
bearer token from :class:`~alerts.token_source.TokenSource`.

Retry policy
------------
* 200/202/204: delivered.
* 429/503 and transport errors (timeouts, refused connections): transient;
  retried up to ``MAX_RETRIES`` times (4 attempts in total), sleeping
  1 s, 2 s, 4 s … capped at 30 s between attempts.
* Any other status: terminal; raised immediately with status and body.
* Token endpoint rejections raise :class:`AuthError` and are not retried;
  failing to reach the token endpoint is transient like any transport error.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from encoder_common.metrics import mail_send_attempts_total
from encoder_common.models import MailConfig, parse_recipients
from encoder_common.utils import human_time

from .errors import (
    AuthError,
    ConfigError,
    DeliveryError,
    TerminalDeliveryError,
    TransientDeliveryError,
)
from .token_source import TokenSource, build_token_source

logger = structlog.get_logger()

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

MAX_RETRIES: int = 3
INITIAL_RETRY_WAIT_S: float = 1.0
MAX_RETRY_WAIT_S: float = 30.0
DEFAULT_TIMEOUT_S: float = 10.0

_SUCCESS_STATUSES = frozenset({200, 202, 204})
_TRANSIENT_STATUSES = frozenset({429, 503})


def backoff_delay(
    attempt: int,
    *,
    initial: float = INITIAL_RETRY_WAIT_S,
    maximum: float = MAX_RETRY_WAIT_S,
) -> float:
    """Seconds to wait after failed attempt number *attempt* (1-based).

    Starts at *initial*, doubles per attempt and never exceeds *maximum*.
    """
    if attempt < 1:
        return 0.0
    return min(initial * (2 ** (attempt - 1)), maximum)


def validate_mail_config(cfg: MailConfig) -> None:
    """Check that *cfg* has every field needed to send mail.

    Raises:
        ConfigError: Naming the first missing field, or when the
                     recipients parse to an empty list.
    """
    if not cfg.tenant_id:
        raise ConfigError("tenant ID is required")
    if not cfg.client_id:
        raise ConfigError("client ID is required")
    if not cfg.client_secret:
        raise ConfigError("client secret is required")
    if not cfg.from_address:
        raise ConfigError("from address (shared mailbox) is required")
    if not cfg.recipients:
        raise ConfigError("recipients are required")
    if not cfg.recipient_list():
        raise ConfigError("no valid recipients")


def build_mail_payload(recipients: list[str], subject: str, body: str) -> dict[str, Any]:
    """Build the Graph ``sendMail`` request body."""
    return {
        "message": {
            "subject": subject,
            "body": {"contentType": "Text", "content": body},
            "toRecipients": [
                {"emailAddress": {"address": address}} for address in recipients
            ],
        },
    }


class MailClient:
    """Send mail through Microsoft Graph with bounded retry.

    Args:
        cfg: Mail configuration; tenant, client, secret and from-address
             are required.
        token_source: Bearer-token provider.  Built from *cfg* if omitted.
        http_client: ``httpx.Client`` to use (tests pass one wrapping an
                     ``httpx.MockTransport``).
        base_url: Graph API base URL.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt.
        sleep: Callable used for backoff sleeps.

    Raises:
        ConfigError: If a required field is missing.
    """

    def __init__(
        self,
        cfg: MailConfig,
        *,
        token_source: TokenSource | None = None,
        http_client: httpx.Client | None = None,
        base_url: str = GRAPH_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not cfg.has_credentials():
            raise ConfigError("Graph API requires tenant_id, client_id, and client_secret")
        if not cfg.from_address:
            raise ConfigError("Graph API requires from_address (shared mailbox)")

        self.from_address = cfg.from_address
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._owns_token_source = token_source is None
        self._token_source = token_source or build_token_source(cfg)
        self._client = http_client or httpx.Client(timeout=timeout)
        self._sleep = sleep

    @property
    def _mailbox_url(self) -> str:
        return f"{self.base_url}/users/{quote(self.from_address, safe='@')}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token_source.token()}"}

    # ── delivery ──

    def send_mail(self, recipients: list[str], subject: str, body: str) -> None:
        """Deliver a plain-text message to *recipients*.

        Raises:
            ConfigError: If no recipient remains after dropping blanks.
            AuthError: If the token endpoint rejected the credentials.
            TerminalDeliveryError: On a non-retryable HTTP status.
            DeliveryError: When every retry failed; ``last_error`` holds
                           the last transient error.
        """
        addresses = [r.strip() for r in recipients if r and r.strip()]
        if not addresses:
            raise ConfigError("no valid recipients after filtering")

        payload = build_mail_payload(addresses, subject, body)
        url = f"{self._mailbox_url}/sendMail"
        log = logger.bind(from_address=self.from_address, recipients=len(addresses))

        retryer = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=lambda state: backoff_delay(state.attempt_number),
            retry=retry_if_exception_type(TransientDeliveryError),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            retryer(self._post_once, url, payload)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            log.error("mail_retries_exhausted", attempts=self.max_retries + 1, error=str(last))
            raise DeliveryError(
                f"max retries exceeded: {last}",
                last_error=last if isinstance(last, Exception) else None,
            ) from last
        log.info("mail_sent", subject=subject)

    def _post_once(self, url: str, payload: dict[str, Any]) -> None:
        """Make a single delivery attempt and classify the outcome."""
        try:
            headers = {"Content-Type": "application/json", **self._auth_headers()}
            resp = self._client.post(url, json=payload, headers=headers)
        except httpx.TransportError as exc:
            mail_send_attempts_total.labels(outcome="transport_error").inc()
            raise TransientDeliveryError(f"send request: {exc}") from exc

        if resp.status_code in _SUCCESS_STATUSES:
            mail_send_attempts_total.labels(outcome="delivered").inc()
            return
        if resp.status_code in _TRANSIENT_STATUSES:
            mail_send_attempts_total.labels(outcome="transient").inc()
            raise TransientDeliveryError(
                f"graph API returned {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        mail_send_attempts_total.labels(outcome="terminal").inc()
        raise TerminalDeliveryError(
            f"graph API error {resp.status_code}: {resp.text}",
            status_code=resp.status_code,
            body=resp.text,
        )

    @staticmethod
    def _log_retry(state: RetryCallState) -> None:
        outcome = state.outcome
        logger.warning(
            "mail_send_retry",
            attempt=state.attempt_number,
            delay_s=state.next_action.sleep if state.next_action else None,
            error=str(outcome.exception()) if outcome is not None else None,
        )

    # ── validation ──

    def validate_auth(self) -> None:
        """Confirm the credentials can mint a usable token.

        Requests ``GET /users/{from}``.  200 and 403 mean the token is
        valid (403 only lacks ``User.Read``, which mail sending does not
        need).

        Raises:
            AuthError: On token failure or a 401 response.
            ConfigError: On 404 (the mailbox does not exist).
            DeliveryError: On transport errors or any other status.
        """
        try:
            headers = self._auth_headers()
            resp = self._client.get(self._mailbox_url, headers=headers)
        except AuthError as exc:
            raise AuthError(f"authentication failed: {exc}") from exc
        except httpx.TransportError as exc:
            raise DeliveryError(f"validation request failed: {exc}") from exc

        if resp.status_code in (200, 403):
            return
        if resp.status_code == 404:
            raise ConfigError(f"mailbox {self.from_address} not found")
        if resp.status_code == 401:
            raise AuthError("authentication failed: invalid credentials")
        raise TerminalDeliveryError(
            f"validation failed with status {resp.status_code}: {resp.text}",
            status_code=resp.status_code,
            body=resp.text,
        )

    def close(self) -> None:
        """Close the underlying HTTP clients."""
        self._client.close()
        if self._owns_token_source:
            self._token_source.close()


def send_test_email(
    cfg: MailConfig,
    station_name: str,
    *,
    client_factory: Callable[[MailConfig], MailClient] = MailClient,
) -> None:
    """Validate *cfg*, check authentication and send a test message.

    Raises:
        ConfigError: If the configuration is incomplete or the mailbox
                     does not exist.
        AuthError: If the credentials are rejected.
        DeliveryError: If the message could not be delivered.
    """
    validate_mail_config(cfg)
    client = client_factory(cfg)
    try:
        client.validate_auth()
        subject = f"[TEST] {station_name}"
        body = (
            "Test email from the audio encoder.\n\n"
            f"Time: {human_time()}\n\n"
            "Microsoft Graph configuration is working correctly."
        )
        client.send_mail(parse_recipients(cfg.recipients), subject, body)
    finally:
        client.close()
    logger.info("test_email_sent", station=station_name)
