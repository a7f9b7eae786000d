"""
Shared Pydantic data models for the audio encoder.

This package contains the configuration snapshot, mail-channel settings,
silence-episode events and secret-expiry information.
"""

from encoder_common.models.config import ConfigSnapshot, MailConfig, parse_recipients
from encoder_common.models.silence import SecretExpiryInfo, SilenceEvent

__all__ = [
    "ConfigSnapshot",
    "MailConfig",
    "SecretExpiryInfo",
    "SilenceEvent",
    "parse_recipients",
]
