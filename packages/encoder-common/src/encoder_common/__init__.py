"""
encoder-common: Shared library for the broadcast audio encoder.

Provides configuration management, the immutable configuration snapshot
and alerting data models, structured logging, and Prometheus metrics
helpers used by the encoder's alerting service.
"""

from encoder_common.config import ConfigStore, Settings, get_settings

__all__ = [
    "ConfigStore",
    "Settings",
    "get_settings",
]
