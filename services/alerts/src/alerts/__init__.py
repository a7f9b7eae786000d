"""
Audio encoder alerting service.

Turns silence-episode events into webhook, email and log notifications
with per-episode deduplication, and monitors the expiry of the client
secret used for email delivery.
"""
