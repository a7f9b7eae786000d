"""
Notification channel implementations package for the encoder alerting service.

Contains the abstract NotificationChannel base class and the webhook,
email and log channels.
"""

from .base import NotificationChannel
from .email_channel import EmailChannel
from .log_channel import LogChannel
from .webhook_channel import WebhookChannel

__all__ = [
    "EmailChannel",
    "LogChannel",
    "NotificationChannel",
    "WebhookChannel",
]
