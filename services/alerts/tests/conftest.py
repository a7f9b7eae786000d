"""Shared fixtures for alerts service tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from encoder_common.config import ConfigStore
from encoder_common.models import ConfigSnapshot, MailConfig

from fakes import FakeTokenSource, ImmediateExecutor

# ─── Fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def mail_config() -> MailConfig:
    return MailConfig(
        tenant_id="tenant-1",
        client_id="11111111-2222-3333-4444-555555555555",
        client_secret="s3cret",
        from_address="alerts@example.com",
        recipients="ops@example.com, , engineer@example.com",
    )


@pytest.fixture()
def snapshot(mail_config: MailConfig, tmp_path) -> ConfigSnapshot:
    return ConfigSnapshot(
        station_name="Test FM",
        webhook_url="https://hooks.example.com/silence",
        silence_threshold_db=-40.0,
        log_path=str(tmp_path / "silence.log"),
        mail=mail_config,
    )


@pytest.fixture()
def config_store(snapshot: ConfigSnapshot) -> ConfigStore:
    return ConfigStore(snapshot)


@pytest.fixture()
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()


@pytest.fixture()
def token_source() -> FakeTokenSource:
    return FakeTokenSource()


@pytest.fixture()
def fixed_now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
