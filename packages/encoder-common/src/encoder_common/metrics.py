"""
Prometheus metrics for the audio encoder's alerting service.

Metrics register on the default ``prometheus_client`` registry; the
hosting process decides how to expose it.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

notifications_sent_total = Counter(
    "encoder_notifications_sent_total",
    "Silence notifications delivered",
    ["channel", "kind"],
)
notifications_failed_total = Counter(
    "encoder_notifications_failed_total",
    "Silence notifications that failed to deliver",
    ["channel", "kind"],
)
mail_send_attempts_total = Counter(
    "encoder_mail_send_attempts_total",
    "Mail API send attempts by outcome",
    ["outcome"],
)
secret_expiry_days_left = Gauge(
    "encoder_secret_expiry_days_left",
    "Whole days until the mail client secret expires (-1 when unknown)",
)
