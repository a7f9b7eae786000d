"""
Client-secret expiry monitor for the encoder alerting service.

Periodically asks Microsoft Graph for the mail application's password
credentials and caches how soon the earliest one expires, so the web
interface can warn operators before mail alerts stop working.

Lifecycle
---------
``start()`` runs one check synchronously, then a daemon thread re-checks
every ``interval_s`` seconds.  ``stop()`` signals that thread and blocks
until every check in flight has written its result, so nothing touches
the cache after ``stop()`` returns.  Both transitions are idempotent and
the monitor can be started again after stopping.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from encoder_common.metrics import secret_expiry_days_left
from encoder_common.models import MailConfig, SecretExpiryInfo
from encoder_common.utils import utc_now

from .errors import AlertsError
from .mail_client import DEFAULT_TIMEOUT_S, GRAPH_BASE_URL
from .token_source import TokenSource, build_token_source

logger = structlog.get_logger()

EXPIRY_WARNING_DAYS: int = 30
CHECK_INTERVAL_S: float = 24 * 60 * 60

NOT_CONFIGURED = "Graph API not configured"
NO_CREDENTIALS = "no password credentials found"

# Graph emits up to 7 fractional digits; datetime accepts at most 6.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_end_date(raw: str | None) -> datetime | None:
    """Parse an RFC 3339 ``endDateTime``; ``None`` if absent or malformed."""
    if not raw:
        return None
    text = _FRACTION_RE.sub(r"\1", raw.strip())
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def earliest_expiry(credentials: list[dict[str, Any]]) -> datetime | None:
    """Return the soonest ``endDateTime`` among *credentials*."""
    dates = [
        parse_end_date(cred.get("endDateTime"))
        for cred in credentials
        if isinstance(cred, dict)
    ]
    valid = [d for d in dates if d is not None]
    return min(valid) if valid else None


def compute_expiry_info(
    expires_at: datetime,
    now: datetime,
    *,
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> SecretExpiryInfo:
    """Build the :class:`SecretExpiryInfo` for a known expiry time.

    ``days_left`` is the whole number of days remaining, clamped at 0 so an
    expired secret reads as "0 days left".
    """
    days_left = max(0, int((expires_at - now).total_seconds() // 86400))
    return SecretExpiryInfo(
        expires_at=expires_at,
        expires_soon=days_left <= warning_days,
        days_left=days_left,
    )


class SecretExpiryMonitor:
    """Keep a fresh, thread-safe view of the mail client secret's expiry.

    Args:
        cfg: Mail configuration whose application is inspected.
        base_url: Graph API base URL.
        http_client: ``httpx.Client`` for the Graph request.
        token_source_factory: Builds a :class:`TokenSource` from *cfg*.
        interval_s: Seconds between background checks.
        warning_days: Days before expiry that count as "expires soon".
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        cfg: MailConfig,
        *,
        base_url: str = GRAPH_BASE_URL,
        http_client: httpx.Client | None = None,
        token_source_factory: Callable[[MailConfig], TokenSource] = build_token_source,
        interval_s: float = CHECK_INTERVAL_S,
        warning_days: int = EXPIRY_WARNING_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.interval_s = interval_s
        self.warning_days = warning_days
        self._client = http_client or httpx.Client(timeout=DEFAULT_TIMEOUT_S)
        self._token_source_factory = token_source_factory
        self._clock = clock

        self._cond = threading.Condition()
        self._cfg = cfg
        self._token_source: TokenSource | None = None
        # Replaced token sources, closed once no check is using them.
        self._retired: list[TokenSource] = []
        self._info = SecretExpiryInfo()
        self._last_check: datetime | None = None
        self._running = False
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._checks_in_flight = 0

    # ── lifecycle ──

    @property
    def running(self) -> bool:
        with self._cond:
            return self._running

    def start(self) -> None:
        """Check once, then keep checking in the background.  No-op if running."""
        with self._cond:
            if self._running:
                return
            self._running = True
            stop_event = threading.Event()
            self._stop_event = stop_event
            thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name="secret-expiry-monitor",
                daemon=True,
            )
            self._thread = thread

        self._check(stop_event)
        thread.start()
        logger.info("secret_expiry_monitor_started", interval_s=self.interval_s)

    def stop(self) -> None:
        """Stop background checks and wait for any check in flight.  No-op if stopped."""
        with self._cond:
            if not self._running:
                return
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
            self._cond.wait_for(lambda: self._checks_in_flight == 0)

        if thread is not None and thread.ident is not None and thread is not threading.current_thread():
            thread.join()
        logger.info("secret_expiry_monitor_stopped")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_s):
            self._check(stop_event)

    # ── cached state ──

    def get_info(self) -> SecretExpiryInfo:
        """Return the last cached expiry info.  Never blocks on network I/O."""
        with self._cond:
            return self._info

    @property
    def last_check(self) -> datetime | None:
        """When the cache was last written."""
        with self._cond:
            return self._last_check

    def update_config(self, cfg: MailConfig) -> None:
        """Swap the mail configuration and, if running, re-check immediately.

        A stopped monitor only records the new configuration; the next
        :meth:`start` checks it synchronously.
        """
        with self._cond:
            self._cfg = cfg
            if self._token_source is not None:
                self._retired.append(self._token_source)
                self._token_source = None
            idle = self._take_retired_if_idle()
            running = self._running
        _close_all(idle)

        if running:
            self._check(require_running=True)
        else:
            logger.debug("secret_expiry_config_updated", checked=False)

    def check_now(self) -> SecretExpiryInfo:
        """Run one check on the calling thread and return the result."""
        self._check()
        return self.get_info()

    # ── checking ──

    def _check(
        self,
        stop_event: threading.Event | None = None,
        *,
        require_running: bool = False,
    ) -> None:
        """Run one check and overwrite the cache with its result.

        Background checks pass their run's *stop_event* and are skipped once
        it is set; with *require_running* the check is skipped once the
        monitor is stopped.  Either way no check starts after ``stop()`` has
        begun waiting.
        """
        with self._cond:
            if stop_event is not None and stop_event.is_set():
                return
            if require_running and not self._running:
                return
            self._checks_in_flight += 1
            cfg = self._cfg

        try:
            info = self._fetch_info(cfg)
            with self._cond:
                self._info = info
                self._last_check = self._clock()
            secret_expiry_days_left.set(info.days_left if info.error is None else -1)
            if info.error is not None:
                logger.warning("secret_expiry_check_failed", error=info.error)
            elif info.expires_soon:
                logger.warning("client_secret_expires_soon", days_left=info.days_left)
            else:
                logger.info("secret_expiry_checked", days_left=info.days_left)
        finally:
            with self._cond:
                self._checks_in_flight -= 1
                idle = self._take_retired_if_idle()
                self._cond.notify_all()
            _close_all(idle)

    def _take_retired_if_idle(self) -> list[TokenSource]:
        """Return retired token sources once no check is in flight.

        Caller holds ``_cond``.
        """
        if self._checks_in_flight or not self._retired:
            return []
        retired, self._retired = self._retired, []
        return retired

    def _fetch_info(self, cfg: MailConfig) -> SecretExpiryInfo:
        """Query Graph for *cfg*'s credentials; errors become ``info.error``."""
        if not cfg.has_credentials():
            return SecretExpiryInfo(error=NOT_CONFIGURED)
        try:
            expires_at = self._fetch_earliest_expiry(cfg)
        except (AlertsError, httpx.HTTPError, ValueError) as exc:
            return SecretExpiryInfo(error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("secret_expiry_check_crashed")
            return SecretExpiryInfo(error=f"unexpected error: {exc}")

        if expires_at is None:
            return SecretExpiryInfo(error=NO_CREDENTIALS)
        return compute_expiry_info(expires_at, self._clock(), warning_days=self.warning_days)

    def _get_token_source(self, cfg: MailConfig) -> TokenSource:
        """Return the cached token source, creating it if needed.

        A check still running against a replaced *cfg* gets a source of its
        own, retired straight away so it never becomes the cached one.
        """
        with self._cond:
            if cfg is not self._cfg:
                source = self._token_source_factory(cfg)
                self._retired.append(source)
                return source
            if self._token_source is None:
                self._token_source = self._token_source_factory(cfg)
            return self._token_source

    def _fetch_earliest_expiry(self, cfg: MailConfig) -> datetime | None:
        token = self._get_token_source(cfg).token()
        url = f"{self.base_url}/applications(appId='{quote(cfg.client_id, safe='')}')"
        resp = self._client.get(url, headers={"Authorization": f"Bearer {token}"})
        if resp.status_code != 200:
            raise AlertsError(f"API returned {resp.status_code}: {resp.text}")
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("parse response: expected a JSON object")
        return earliest_expiry(data.get("passwordCredentials") or [])

    def close(self) -> None:
        """Stop the monitor and close its HTTP clients."""
        self.stop()
        with self._cond:
            sources = self._retired + ([self._token_source] if self._token_source else [])
            self._retired, self._token_source = [], None
        _close_all(sources)
        self._client.close()


def _close_all(sources: list[TokenSource]) -> None:
    for source in sources:
        source.close()
