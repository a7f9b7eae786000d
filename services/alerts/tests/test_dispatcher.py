"""
Tests for the silence notification dispatcher.

Validates per-episode deduplication, start/recovery pairing, reset
semantics, concurrent duplicate events, and that channel failures never
reach the caller.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from prometheus_client import REGISTRY

from encoder_common.models import SilenceEvent

from alerts.dispatcher import SilenceDispatcher
from alerts.errors import NotConfiguredError
from fakes import RecordingChannel

ENTERED = SilenceEvent(entered_silence=True, duration_ms=15_000)
RECOVERED = SilenceEvent(exited_silence=True, total_duration_ms=42_000)


def _channels(**enabled: bool) -> list[RecordingChannel]:
    names = ("webhook", "email", "log")
    return [RecordingChannel(name, enabled=enabled.get(name, True)) for name in names]


def _metric(name: str, channel: str, kind: str) -> float:
    value = REGISTRY.get_sample_value(name, {"channel": channel, "kind": kind})
    return value or 0.0


@pytest.fixture()
def channels() -> list[RecordingChannel]:
    return _channels()


@pytest.fixture()
def dispatcher(config_store, channels, immediate_executor) -> SilenceDispatcher:
    return SilenceDispatcher(config_store, channels, executor=immediate_executor)


# ── deduplication ──


class TestDeduplication:
    """Repeated entered events within one episode send once per channel."""

    def test_start_sent_once_per_enabled_channel(self, dispatcher, channels) -> None:
        dispatcher.handle_event(ENTERED)
        for ch in channels:
            assert ch.calls == [("start", 15_000)]

    def test_duplicate_entered_events_are_noops(self, dispatcher, channels) -> None:
        for _ in range(5):
            dispatcher.handle_event(ENTERED)
        for ch in channels:
            assert ch.kinds() == ["start"]

    def test_disabled_channel_is_not_sent(self, config_store, immediate_executor) -> None:
        channels = _channels(webhook=False)
        dispatcher = SilenceDispatcher(config_store, channels, executor=immediate_executor)
        dispatcher.handle_event(ENTERED)
        assert channels[0].calls == []
        assert channels[1].kinds() == ["start"]
        assert dispatcher.sent_flags() == {"webhook": False, "email": True, "log": True}

    def test_flag_claimed_even_when_send_fails(self, config_store, immediate_executor) -> None:
        failing = RecordingChannel("email", fail=True)
        dispatcher = SilenceDispatcher(config_store, [failing], executor=immediate_executor)
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(ENTERED)
        assert failing.kinds() == ["start"]

    def test_duplicate_channel_names_rejected(self, config_store) -> None:
        with pytest.raises(ValueError, match="unique"):
            SilenceDispatcher(
                config_store,
                [RecordingChannel("log"), RecordingChannel("log")],
            )


# ── start/recovery pairing ──


class TestPairing:
    """A recovery fires for a channel iff its start fired this episode."""

    def test_recovery_follows_start(self, dispatcher, channels) -> None:
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(RECOVERED)
        for ch in channels:
            assert ch.calls == [("start", 15_000), ("recovery", 42_000)]

    def test_no_recovery_without_start(self, dispatcher, channels) -> None:
        dispatcher.handle_event(RECOVERED)
        for ch in channels:
            assert ch.calls == []

    def test_channel_enabled_mid_episode_gets_no_recovery(
        self, config_store, immediate_executor
    ) -> None:
        channels = _channels(webhook=False)
        dispatcher = SilenceDispatcher(config_store, channels, executor=immediate_executor)

        dispatcher.handle_event(ENTERED)
        channels[0].enabled = True
        dispatcher.handle_event(RECOVERED)

        assert channels[0].calls == []
        assert channels[1].kinds() == ["start", "recovery"]

    def test_recovery_sent_even_if_channel_disabled_after_start(
        self, dispatcher, channels
    ) -> None:
        dispatcher.handle_event(ENTERED)
        channels[2].enabled = False
        dispatcher.handle_event(RECOVERED)
        assert channels[2].kinds() == ["start", "recovery"]

    def test_recovery_clears_flags(self, dispatcher) -> None:
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(RECOVERED)
        assert dispatcher.sent_flags() == {"webhook": False, "email": False, "log": False}

    def test_second_recovery_is_noop(self, dispatcher, channels) -> None:
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(RECOVERED)
        dispatcher.handle_event(RECOVERED)
        for ch in channels:
            assert ch.kinds() == ["start", "recovery"]

    def test_combined_event_handles_start_then_recovery(self, dispatcher, channels) -> None:
        event = SilenceEvent(
            entered_silence=True,
            duration_ms=10_000,
            exited_silence=True,
            total_duration_ms=12_000,
        )
        dispatcher.handle_event(event)
        for ch in channels:
            assert ch.calls == [("start", 10_000), ("recovery", 12_000)]


# ── reset ──


class TestReset:
    """After reset or a completed recovery, a new episode notifies again."""

    def test_new_episode_after_recovery(self, dispatcher, channels) -> None:
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(RECOVERED)
        dispatcher.handle_event(ENTERED)
        for ch in channels:
            assert ch.kinds() == ["start", "recovery", "start"]

    def test_reset_rearms_start(self, dispatcher, channels) -> None:
        dispatcher.handle_event(ENTERED)
        dispatcher.reset()
        dispatcher.handle_event(ENTERED)
        for ch in channels:
            assert ch.kinds() == ["start", "start"]

    def test_reset_suppresses_recovery(self, dispatcher, channels) -> None:
        dispatcher.handle_event(ENTERED)
        dispatcher.reset()
        dispatcher.handle_event(RECOVERED)
        for ch in channels:
            assert ch.kinds() == ["start"]


# ── failure isolation ──


class TestFailureIsolation:
    """Channel errors are logged and counted, never raised to the caller."""

    def test_failing_channel_does_not_raise_or_block_others(
        self, config_store, immediate_executor
    ) -> None:
        broken = RecordingChannel("webhook", fail=True)
        healthy = RecordingChannel("log")
        dispatcher = SilenceDispatcher(
            config_store, [broken, healthy], executor=immediate_executor,
        )

        before = _metric("encoder_notifications_failed_total", "webhook", "start")
        dispatcher.handle_event(ENTERED)

        assert healthy.kinds() == ["start"]
        after = _metric("encoder_notifications_failed_total", "webhook", "start")
        assert after == before + 1

    def test_successful_send_is_counted(self, dispatcher) -> None:
        before = _metric("encoder_notifications_sent_total", "log", "recovery")
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(RECOVERED)
        assert _metric("encoder_notifications_sent_total", "log", "recovery") == before + 1

    def test_not_configured_is_not_counted_as_failure(
        self, config_store, immediate_executor
    ) -> None:
        class UnconfiguredChannel(RecordingChannel):
            def send_recovery(self, snapshot, total_duration_ms):  # type: ignore[no-untyped-def]
                raise NotConfiguredError("mail channel is not configured")

        ch = UnconfiguredChannel("email")
        dispatcher = SilenceDispatcher(config_store, [ch], executor=immediate_executor)

        before = _metric("encoder_notifications_failed_total", "email", "recovery")
        dispatcher.handle_event(ENTERED)
        dispatcher.handle_event(RECOVERED)
        assert _metric("encoder_notifications_failed_total", "email", "recovery") == before

    def test_sends_do_not_block_the_caller(self, config_store) -> None:
        release = threading.Event()
        started = threading.Event()

        class SlowChannel(RecordingChannel):
            def send_start(self, snapshot, duration_ms):  # type: ignore[no-untyped-def]
                started.set()
                release.wait(5)
                super().send_start(snapshot, duration_ms)

        slow = SlowChannel("webhook")
        dispatcher = SilenceDispatcher(config_store, [slow], max_workers=2)
        try:
            dispatcher.handle_event(ENTERED)
            assert started.wait(5)
            # The caller already returned while the send is still blocked.
            assert dispatcher.sent_flags()["webhook"] is True
            assert slow.calls == []
        finally:
            release.set()
            dispatcher.shutdown(wait=True)
        assert slow.kinds() == ["start"]


# ── concurrency ──


class TestConcurrentEvents:
    """N concurrent entered events claim exactly one send per channel."""

    def test_concurrent_duplicates_send_once(self, config_store, channels) -> None:
        executor = ThreadPoolExecutor(max_workers=8)
        dispatcher = SilenceDispatcher(config_store, channels, executor=executor)
        barrier = threading.Barrier(32)

        def fire() -> None:
            barrier.wait()
            dispatcher.handle_event(ENTERED)

        threads = [threading.Thread(target=fire) for _ in range(32)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        executor.shutdown(wait=True)

        for ch in channels:
            assert ch.kinds() == ["start"]


# ── mail client invalidation / shutdown ──


class TestLifecycle:
    """invalidate_mail_client() and shutdown() reach every channel."""

    def test_invalidate_mail_client(self, dispatcher, channels) -> None:
        dispatcher.invalidate_mail_client()
        assert [ch.invalidated for ch in channels] == [1, 1, 1]

    def test_shutdown_closes_channels(self, dispatcher, channels) -> None:
        dispatcher.shutdown()
        assert all(ch.closed for ch in channels)

    def test_events_after_shutdown_are_dropped(self, config_store, channels) -> None:
        dispatcher = SilenceDispatcher(config_store, channels, max_workers=1)
        dispatcher.shutdown()
        dispatcher.handle_event(ENTERED)
        for ch in channels:
            assert ch.calls == []

    def test_no_flag_claimed_after_shutdown(self, config_store, channels) -> None:
        dispatcher = SilenceDispatcher(config_store, channels, max_workers=1)
        dispatcher.shutdown()
        dispatcher.handle_event(ENTERED)
        assert dispatcher.sent_flags() == {"webhook": False, "email": False, "log": False}

    def test_rejected_submit_releases_claim(self, config_store, channels) -> None:
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        dispatcher = SilenceDispatcher(config_store, channels, executor=executor)

        dispatcher.handle_event(ENTERED)

        assert dispatcher.sent_flags() == {"webhook": False, "email": False, "log": False}
        for ch in channels:
            assert ch.calls == []
