"""
Error taxonomy for the encoder alerting service.

Synchronous callers (the test-email action, direct ``MailClient`` use)
receive these exceptions; background sends and the expiry monitor only
log them.
"""

from __future__ import annotations


class AlertsError(Exception):
    """Base class for every alerting-service error."""


class ConfigError(AlertsError):
    """Missing or invalid credentials or recipients.  Never retried."""


class NotConfiguredError(AlertsError):
    """The channel is simply disabled.  Logged at most, never alarmed."""


class AuthError(AlertsError):
    """Token acquisition failed or the API rejected the credentials (401)."""


class DeliveryError(AlertsError):
    """A message could not be delivered.

    Args:
        message: Human-readable description.
        last_error: The last transient error seen before giving up, if any.
    """

    def __init__(self, message: str, *, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class TransientDeliveryError(DeliveryError):
    """Network failure or a 429/503 response.  Retried up to the bound."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TerminalDeliveryError(DeliveryError):
    """Any other non-success HTTP status.  Not retried."""

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
