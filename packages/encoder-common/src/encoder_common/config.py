"""
Environment-based configuration management for the audio encoder.

Uses pydantic-settings to load configuration values from environment
variables and .env files, and provides :class:`ConfigStore`, the live
configuration holder that hands out immutable snapshots and notifies
listeners when values change.

All environment variables are prefixed with ``ENCODER_`` to avoid collisions.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from functools import lru_cache
from typing import Any

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from encoder_common.models.config import ConfigSnapshot, MailConfig

logger = structlog.get_logger()

ConfigListener = Callable[[ConfigSnapshot, ConfigSnapshot], None]


class Settings(BaseSettings):
    """Central configuration loaded from ``ENCODER_``-prefixed environment variables.

    Attributes:
        station_name: Station name used in alert subjects and payloads.
        webhook_url: Silence webhook URL (empty disables the channel).
        silence_threshold_db: Loudness threshold below which audio is silent.
        silence_log_path: Append-only silence log file (empty disables it).
        graph_tenant_id: Azure AD tenant ID for mail delivery.
        graph_client_id: Application (client) ID for mail delivery.
        graph_client_secret: Client secret for mail delivery.
        graph_from_address: Mailbox the alerts are sent from.
        graph_recipients: Comma-separated recipient addresses.
        graph_base_url: Microsoft Graph API base URL.
        http_timeout_s: Per-request HTTP timeout in seconds.
        expiry_check_interval_s: Seconds between client-secret expiry checks.
        expiry_warning_days: Days before expiry at which a secret "expires soon".
        dispatch_workers: Worker threads for detached notification sends.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    model_config = SettingsConfigDict(
        env_prefix="ENCODER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Station ──
    station_name: str = Field(default="Encoder", description="Station name.")

    # ── Silence alerting ──
    webhook_url: str = Field(default="", description="Silence webhook URL.")
    silence_threshold_db: float = Field(
        default=-40.0,
        le=0.0,
        description="Silence threshold in dBFS.",
    )
    silence_log_path: str = Field(default="", description="Silence log file path.")

    # ── Mail (Microsoft Graph) ──
    graph_tenant_id: str = Field(default="", description="Azure AD tenant ID.")
    graph_client_id: str = Field(default="", description="Application (client) ID.")
    graph_client_secret: str = Field(default="", description="Client secret.")
    graph_from_address: str = Field(default="", description="Sending mailbox.")
    graph_recipients: str = Field(default="", description="Comma-separated recipients.")
    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Microsoft Graph API base URL.",
    )

    # ── HTTP ──
    http_timeout_s: float = Field(default=10.0, gt=0.0, description="HTTP timeout in seconds.")

    # ── Secret expiry ──
    expiry_check_interval_s: float = Field(
        default=24 * 60 * 60,
        gt=0.0,
        description="Seconds between client-secret expiry checks.",
    )
    expiry_warning_days: int = Field(
        default=30,
        ge=0,
        description="Days before expiry that count as expiring soon.",
    )

    # ── Dispatch ──
    dispatch_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads for detached notification sends.",
    )

    # ── Logging ──
    log_level: str = Field(default="INFO", description="Logging level.")

    def mail_config(self) -> MailConfig:
        """Return the mail-channel settings as a :class:`MailConfig`."""
        return MailConfig(
            tenant_id=self.graph_tenant_id,
            client_id=self.graph_client_id,
            client_secret=self.graph_client_secret,
            from_address=self.graph_from_address,
            recipients=self.graph_recipients,
        )

    def to_snapshot(self) -> ConfigSnapshot:
        """Build the initial :class:`ConfigSnapshot` from these settings."""
        return ConfigSnapshot(
            station_name=self.station_name,
            webhook_url=self.webhook_url,
            silence_threshold_db=self.silence_threshold_db,
            log_path=self.silence_log_path,
            mail=self.mail_config(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    Returns:
        The global ``Settings`` instance.
    """
    return Settings()


class ConfigStore:
    """Thread-safe holder of the live encoder configuration.

    Readers call :meth:`snapshot` and receive a frozen
    :class:`ConfigSnapshot`; writers call :meth:`update`, which validates
    the merged values, swaps the snapshot and then invokes every listener
    with ``(old, new)`` outside the snapshot lock.  Updates are serialised
    end to end, so listeners see them in the order they were applied and
    the last notification always carries the current snapshot.

    Args:
        initial: Starting snapshot.  Defaults to the one built from
                 :func:`get_settings`.
    """

    def __init__(self, initial: ConfigSnapshot | None = None) -> None:
        self._lock = threading.Lock()
        # Held across swap and notify; reentrant so a listener may update.
        self._update_lock = threading.RLock()
        self._snapshot = initial if initial is not None else get_settings().to_snapshot()
        self._listeners: list[ConfigListener] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> ConfigStore:
        """Create a store seeded from *settings*."""
        return cls(settings.to_snapshot())

    def snapshot(self) -> ConfigSnapshot:
        """Return the current immutable configuration snapshot."""
        with self._lock:
            return self._snapshot

    def subscribe(self, listener: ConfigListener) -> None:
        """Register *listener* to be called after every update."""
        with self._lock:
            self._listeners.append(listener)

    def update(self, **changes: Any) -> ConfigSnapshot:
        """Apply *changes* and notify listeners.

        ``mail`` may be given as a :class:`MailConfig` or a mapping of
        mail fields to change.

        Returns:
            The new snapshot.

        Raises:
            pydantic.ValidationError: If the merged values are invalid.
        """
        with self._update_lock:
            with self._lock:
                old = self._snapshot
                data = old.model_dump()
                mail = changes.pop("mail", None)
                if isinstance(mail, MailConfig):
                    data["mail"] = mail.model_dump()
                elif mail is not None:
                    data["mail"].update(mail)
                data.update(changes)
                new = ConfigSnapshot.model_validate(data)
                self._snapshot = new
                listeners = list(self._listeners)

            logger.info("config_updated", changed=sorted(_changed_fields(old, new)))
            for listener in listeners:
                try:
                    listener(old, new)
                except Exception as exc:  # noqa: BLE001
                    logger.error("config_listener_failed", error=str(exc))
        return new


def _changed_fields(old: ConfigSnapshot, new: ConfigSnapshot) -> set[str]:
    """Return the top-level field names that differ between two snapshots."""
    before, after = old.model_dump(), new.model_dump()
    return {key for key in after if before.get(key) != after[key]}
