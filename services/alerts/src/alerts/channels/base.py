"""
Abstract base class for silence notification channels.

Defines the NotificationChannel interface the dispatcher fans out to.
Each channel sends at most one start and one matching recovery
notification per silence episode; the dispatcher enforces that, the
channel only delivers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from encoder_common.models import ConfigSnapshot


class NotificationChannel(ABC):
    """Base class every notification channel must implement.

    Sends run on dispatcher worker threads.  Implementations raise on
    failure; the dispatcher logs and counts the error.

    Attributes:
        name: Channel name used for dedup flags, logs and metrics.
    """

    name: str = "base"

    @abstractmethod
    def is_enabled(self, snapshot: ConfigSnapshot) -> bool:
        """Return ``True`` if *snapshot* enables this channel."""

    @abstractmethod
    def send_start(self, snapshot: ConfigSnapshot, duration_ms: int) -> None:
        """Announce that a silence episode has started.

        Args:
            snapshot: Configuration at the moment silence was detected.
            duration_ms: Silence duration when the episode was flagged.
        """

    @abstractmethod
    def send_recovery(self, snapshot: ConfigSnapshot, total_duration_ms: int) -> None:
        """Announce that audio has recovered.

        Args:
            snapshot: Configuration at the moment audio recovered.
            total_duration_ms: Total length of the silence episode.
        """

    def invalidate(self) -> None:
        """Drop cached clients or credentials (override if needed)."""

    def close(self) -> None:
        """Release any resources held by the channel (override if needed)."""
