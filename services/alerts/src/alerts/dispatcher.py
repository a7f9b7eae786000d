"""
Silence-episode notification dispatcher for the encoder alerting service.

Receives silence-episode transitions from the audio monitor and fans them
out to the webhook, email and log channels.

Flow
----
1. ``entered_silence``: take a config snapshot; for each channel that the
   snapshot enables and that has not yet fired this episode, claim its
   sent flag under the lock, then submit ``send_start`` to the worker pool.
2. ``exited_silence``: under the lock, read and clear every sent flag; for
   each channel whose flag was set, submit ``send_recovery``.
3. Workers log and count the outcome.  Failures never reach the caller.

The lock only guards the in-memory flags; sends run on worker threads so a
slow channel cannot delay the audio monitor or the other channels.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, ThreadPoolExecutor

import structlog

from encoder_common.config import ConfigStore
from encoder_common.metrics import notifications_failed_total, notifications_sent_total
from encoder_common.models import ConfigSnapshot, SilenceEvent

from .channels.base import NotificationChannel
from .errors import NotConfiguredError

logger = structlog.get_logger()

_DEFAULT_WORKERS = 4

KIND_START = "start"
KIND_RECOVERY = "recovery"


class SilenceDispatcher:
    """Turn silence episodes into at most one start and one recovery per channel.

    Args:
        config_store: Source of configuration snapshots.
        channels: Notification channels, each with a unique ``name``.
        executor: Runs detached sends.  Defaults to a private
                  ``ThreadPoolExecutor`` that :meth:`shutdown` stops.
        max_workers: Worker count for the default executor.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        channels: Iterable[NotificationChannel],
        *,
        executor: Executor | None = None,
        max_workers: int = _DEFAULT_WORKERS,
    ) -> None:
        self._store = config_store
        self.channels = list(channels)
        names = [ch.name for ch in self.channels]
        if len(set(names)) != len(names):
            raise ValueError(f"channel names must be unique: {names}")

        self._lock = threading.Lock()
        self._sent: dict[str, bool] = dict.fromkeys(names, False)
        self._closed = False
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="silence-notify",
        )

    # ── episode handling ──

    def handle_event(self, event: SilenceEvent) -> None:
        """Process one silence-episode transition.  Never blocks on I/O."""
        if event.entered_silence:
            self._handle_silence_start(event.duration_ms)
        if event.exited_silence:
            self._handle_silence_end(event.total_duration_ms)

    def _handle_silence_start(self, duration_ms: int) -> None:
        snapshot = self._store.snapshot()
        for ch in self.channels:
            if self._try_claim(ch, snapshot):
                self._submit(ch, KIND_START, ch.send_start, snapshot, duration_ms)

    def _try_claim(self, ch: NotificationChannel, snapshot: ConfigSnapshot) -> bool:
        """Mark *ch* as sent for this episode if it is enabled and unsent."""
        enabled = ch.is_enabled(snapshot)
        with self._lock:
            should_send = enabled and not self._closed and not self._sent[ch.name]
            if should_send:
                self._sent[ch.name] = True
        return should_send

    def _handle_silence_end(self, total_duration_ms: int) -> None:
        snapshot = self._store.snapshot()

        # Only channels whose start notification fired get a recovery.
        with self._lock:
            pending = [ch for ch in self.channels if self._sent[ch.name]]
            for name in self._sent:
                self._sent[name] = False

        for ch in pending:
            self._submit(ch, KIND_RECOVERY, ch.send_recovery, snapshot, total_duration_ms)

    def reset(self) -> None:
        """Clear every sent flag, ending the current episode's bookkeeping."""
        with self._lock:
            for name in self._sent:
                self._sent[name] = False
        logger.info("silence_notifier_reset")

    def sent_flags(self) -> dict[str, bool]:
        """Return a copy of the per-channel sent flags."""
        with self._lock:
            return dict(self._sent)

    def invalidate_mail_client(self) -> None:
        """Drop cached mail clients so the next send rebuilds credentials."""
        for ch in self.channels:
            ch.invalidate()

    # ── delivery ──

    def _submit(
        self,
        ch: NotificationChannel,
        kind: str,
        send: Callable[[ConfigSnapshot, int], None],
        snapshot: ConfigSnapshot,
        duration_ms: int,
    ) -> None:
        try:
            self._executor.submit(self._deliver, ch.name, kind, send, snapshot, duration_ms)
        except RuntimeError as exc:
            # Executor already shut down; release the claim so the flag
            # reflects what was actually sent.
            if kind == KIND_START:
                with self._lock:
                    self._sent[ch.name] = False
            logger.warning("notification_dropped", channel=ch.name, kind=kind, error=str(exc))

    @staticmethod
    def _deliver(
        channel: str,
        kind: str,
        send: Callable[[ConfigSnapshot, int], None],
        snapshot: ConfigSnapshot,
        duration_ms: int,
    ) -> None:
        log = logger.bind(channel=channel, kind=kind, duration_ms=duration_ms)
        try:
            send(snapshot, duration_ms)
        except NotConfiguredError as exc:
            log.info("notification_skipped", reason=str(exc))
            return
        except Exception as exc:  # noqa: BLE001
            notifications_failed_total.labels(channel=channel, kind=kind).inc()
            log.error("notification_failed", error=str(exc), error_type=type(exc).__name__)
            return
        notifications_sent_total.labels(channel=channel, kind=kind).inc()
        log.info("notification_sent")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting sends; optionally wait for in-flight ones."""
        with self._lock:
            self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        for ch in self.channels:
            ch.close()
