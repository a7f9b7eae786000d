"""
Tests for the alert service wiring.

Validates that configuration changes reach the dispatcher and the
secret-expiry monitor.
"""

from __future__ import annotations

import threading

from encoder_common.config import ConfigStore, Settings
from encoder_common.models import MailConfig, SecretExpiryInfo, SilenceEvent

from alerts.service import AlertService
from fakes import RecordingChannel


class FakeMonitor:
    """Records lifecycle calls and configuration swaps."""

    def __init__(self) -> None:
        self.started = 0
        self.stopped = 0
        self.configs: list[MailConfig] = []

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def update_config(self, cfg: MailConfig) -> None:
        self.configs.append(cfg)

    def get_info(self) -> SecretExpiryInfo:
        return SecretExpiryInfo(days_left=12, expires_soon=True)


def _service(snapshot) -> tuple[AlertService, list[RecordingChannel], FakeMonitor]:
    channels = [RecordingChannel("webhook"), RecordingChannel("email")]
    monitor = FakeMonitor()
    service = AlertService(
        Settings(),
        store=ConfigStore(snapshot),
        channels=channels,
        monitor=monitor,  # type: ignore[arg-type]
    )
    return service, channels, monitor


def test_mail_change_invalidates_and_rechecks(snapshot) -> None:
    service, channels, monitor = _service(snapshot)
    new = service.store.update(mail={"client_secret": "rotated"})

    assert [ch.invalidated for ch in channels] == [1, 1]
    assert monitor.configs == [new.mail]
    service.stop()


def test_threshold_change_resets_episode(snapshot) -> None:
    service, channels, _ = _service(snapshot)
    service.handle_event(SilenceEvent(entered_silence=True, duration_ms=1_000))
    assert set(service.dispatcher.sent_flags().values()) == {True}

    service.store.update(silence_threshold_db=-50.0)
    assert set(service.dispatcher.sent_flags().values()) == {False}
    service.stop()


def test_unrelated_change_skips_expiry_recheck(snapshot) -> None:
    service, channels, monitor = _service(snapshot)
    service.store.update(station_name="Other FM")
    assert [ch.invalidated for ch in channels] == [1, 1]
    assert monitor.configs == []
    service.stop()


def test_lifecycle_and_expiry(snapshot) -> None:
    service, channels, monitor = _service(snapshot)
    service.start()
    assert monitor.started == 1
    assert service.secret_expiry().days_left == 12
    service.stop()
    assert monitor.stopped == 1
    assert all(ch.closed for ch in channels)


def test_concurrent_mail_updates_leave_monitor_current(snapshot) -> None:
    entered = threading.Event()
    release = threading.Event()

    class SlowMonitor(FakeMonitor):
        def update_config(self, cfg: MailConfig) -> None:
            if cfg.client_secret == "A":
                entered.set()
                release.wait(5)
            super().update_config(cfg)

    monitor = SlowMonitor()
    service = AlertService(
        Settings(),
        store=ConfigStore(snapshot),
        channels=[RecordingChannel("email")],
        monitor=monitor,  # type: ignore[arg-type]
    )

    first = threading.Thread(
        target=service.store.update, kwargs={"mail": {"client_secret": "A"}},
    )
    second = threading.Thread(
        target=service.store.update, kwargs={"mail": {"client_secret": "B"}},
    )
    first.start()
    assert entered.wait(5)
    second.start()
    second.join(0.1)
    release.set()
    first.join(5)
    second.join(5)

    assert service.store.snapshot().mail.client_secret == "B"
    assert monitor.configs[-1] == service.store.snapshot().mail
    service.stop()
