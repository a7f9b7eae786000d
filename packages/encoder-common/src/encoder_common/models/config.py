"""
Configuration snapshot models for the audio encoder.

A :class:`ConfigSnapshot` is an immutable point-in-time copy of the live
configuration.  Notification code takes one snapshot per decision so a
concurrent update can never be observed half-applied.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


def parse_recipients(recipients: str) -> list[str]:
    """Split a comma-separated recipient string, dropping blank entries."""
    return [part.strip() for part in recipients.split(",") if part.strip()]


class MailConfig(BaseModel):
    """Microsoft Graph mail-channel credentials and recipients.

    Attributes:
        tenant_id: Azure AD tenant ID.
        client_id: Application (client) ID.
        client_secret: Client secret used for the client-credentials grant.
        from_address: Mailbox the messages are sent from.
        recipients: Comma-separated recipient addresses.
    """

    model_config = {"frozen": True}

    tenant_id: str = Field(default="", description="Azure AD tenant ID.")
    client_id: str = Field(default="", description="Application (client) ID.")
    client_secret: str = Field(default="", repr=False, description="Client secret.")
    from_address: str = Field(default="", description="Sending mailbox.")
    recipients: str = Field(default="", description="Comma-separated recipients.")

    def has_credentials(self) -> bool:
        """``True`` when tenant, client and secret are all present."""
        return bool(self.tenant_id and self.client_id and self.client_secret)

    def is_configured(self) -> bool:
        """``True`` when every field needed to send mail is non-empty."""
        return bool(self.has_credentials() and self.from_address and self.recipients)

    def recipient_list(self) -> list[str]:
        """Return the parsed, non-blank recipient addresses."""
        return parse_recipients(self.recipients)


class ConfigSnapshot(BaseModel):
    """Immutable copy of the configuration used for one notification decision.

    Attributes:
        station_name: Station name shown in alerts.
        webhook_url: Silence webhook URL (empty disables the channel).
        silence_threshold_db: Silence threshold in dBFS.
        log_path: Silence log file path (empty disables the channel).
        mail: Mail-channel configuration.
    """

    model_config = {"frozen": True}

    station_name: str = Field(default="Encoder", description="Station name.")
    webhook_url: str = Field(default="", description="Silence webhook URL.")
    silence_threshold_db: float = Field(
        default=-40.0,
        le=0.0,
        description="Silence threshold in dBFS.",
    )
    log_path: str = Field(default="", description="Silence log file path.")
    mail: MailConfig = Field(default_factory=MailConfig, description="Mail-channel settings.")

    def has_webhook(self) -> bool:
        """``True`` when a webhook URL is configured."""
        return bool(self.webhook_url)

    def has_mail(self) -> bool:
        """``True`` when the mail channel is fully configured."""
        return self.mail.is_configured()

    def has_log_path(self) -> bool:
        """``True`` when a silence log path is configured."""
        return bool(self.log_path)
