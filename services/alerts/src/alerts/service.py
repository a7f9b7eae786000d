"""
Alerting service wiring for the audio encoder.

Builds the configuration store, notification channels, dispatcher and
secret-expiry monitor, and reacts to configuration changes:

* any change: drop the cached mail client so the next send rebuilds it;
* mail settings changed: re-check the secret expiry with the new
  credentials;
* silence threshold changed: reset the episode bookkeeping, since the
  definition of "silence" moved under it.
"""

from __future__ import annotations

import httpx
import structlog

from encoder_common.config import ConfigStore, Settings
from encoder_common.models import ConfigSnapshot, MailConfig, SecretExpiryInfo, SilenceEvent

from .channels import EmailChannel, LogChannel, NotificationChannel, WebhookChannel
from .dispatcher import SilenceDispatcher
from .expiry_monitor import SecretExpiryMonitor
from .mail_client import MailClient

logger = structlog.get_logger()


class AlertService:
    """Own the alerting components for one encoder process.

    Args:
        settings: Loaded settings.
        store: Configuration store; built from *settings* if omitted.
        channels: Channels to fan out to; defaults to webhook, email and log.
        monitor: Secret-expiry monitor; built from *settings* if omitted.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: ConfigStore | None = None,
        channels: list[NotificationChannel] | None = None,
        monitor: SecretExpiryMonitor | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or ConfigStore.from_settings(settings)

        if channels is None:
            channels = [
                WebhookChannel(timeout=settings.http_timeout_s),
                EmailChannel(client_factory=self._build_mail_client),
                LogChannel(),
            ]
        self.dispatcher = SilenceDispatcher(
            self.store, channels, max_workers=settings.dispatch_workers,
        )
        self.monitor = monitor or SecretExpiryMonitor(
            self.store.snapshot().mail,
            base_url=settings.graph_base_url,
            http_client=httpx.Client(timeout=settings.http_timeout_s),
            interval_s=settings.expiry_check_interval_s,
            warning_days=settings.expiry_warning_days,
        )
        self.store.subscribe(self._on_config_change)

    def _build_mail_client(self, cfg: MailConfig) -> MailClient:
        return MailClient(
            cfg,
            base_url=self.settings.graph_base_url,
            timeout=self.settings.http_timeout_s,
        )

    # ── lifecycle ──

    def start(self) -> None:
        """Start background secret-expiry checks."""
        logger.info("alert_service_starting", station=self.store.snapshot().station_name)
        self.monitor.start()

    def stop(self) -> None:
        """Stop the monitor and wait for in-flight notification sends."""
        logger.info("alert_service_stopping")
        self.monitor.stop()
        self.dispatcher.shutdown(wait=True)

    # ── entry points for the rest of the encoder ──

    def handle_event(self, event: SilenceEvent) -> None:
        """Forward a silence-episode transition from the audio monitor."""
        self.dispatcher.handle_event(event)

    def secret_expiry(self) -> SecretExpiryInfo:
        """Return the cached client-secret expiry info."""
        return self.monitor.get_info()

    def _on_config_change(self, old: ConfigSnapshot, new: ConfigSnapshot) -> None:
        self.dispatcher.invalidate_mail_client()
        if old.mail != new.mail:
            self.monitor.update_config(new.mail)
        if old.silence_threshold_db != new.silence_threshold_db:
            self.dispatcher.reset()
