"""
Silence-episode and secret-expiry models for the audio encoder.

The audio monitor emits a :class:`SilenceEvent` whenever an episode
starts or ends; the secret-expiry monitor publishes
:class:`SecretExpiryInfo` for display and alerting elsewhere.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SilenceEvent(BaseModel):
    """A silence-episode transition delivered by the audio monitor.

    Attributes:
        entered_silence: The episode has just started.
        duration_ms: How long the input had been silent when it was flagged.
        exited_silence: The episode has just ended.
        total_duration_ms: Total length of the episode that just ended.
    """

    model_config = {"frozen": True}

    entered_silence: bool = Field(default=False, description="Episode just started.")
    duration_ms: int = Field(default=0, ge=0, description="Silence so far, in ms.")
    exited_silence: bool = Field(default=False, description="Episode just ended.")
    total_duration_ms: int = Field(default=0, ge=0, description="Episode length, in ms.")


class SecretExpiryInfo(BaseModel):
    """Cached view of how soon the mail client secret expires.

    ``error`` is set, and the other fields left at their zero values, when
    the mail channel is unconfigured or the lookup failed.

    Attributes:
        expires_at: Expiry of the soonest-expiring password credential.
        expires_soon: ``True`` when ``days_left`` is within the warning window.
        days_left: Whole days until expiry, never negative.
        error: Human-readable reason the expiry is unknown.
    """

    model_config = {"frozen": True}

    expires_at: datetime | None = Field(default=None, description="Soonest credential expiry.")
    expires_soon: bool = Field(default=False, description="Within the warning window.")
    days_left: int = Field(default=0, ge=0, description="Whole days until expiry.")
    error: str | None = Field(default=None, description="Why the expiry is unknown.")
