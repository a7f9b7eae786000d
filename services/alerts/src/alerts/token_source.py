"""
OAuth2 client-credentials token source for Microsoft Graph.

Exchanges the application's client ID and secret for a bearer token at
the Azure AD token endpoint and caches it until shortly before it
expires, so callers simply ask for a token before every request.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

import httpx
import structlog

from encoder_common.models import MailConfig
from encoder_common.utils import utc_now

from .errors import AuthError, ConfigError

logger = structlog.get_logger()

TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

# Refresh this long before the reported expiry.
_EXPIRY_SKEW = timedelta(seconds=60)
_DEFAULT_TIMEOUT_S = 10.0


class TokenSource:
    """Yield a currently valid bearer token for the configured application.

    Args:
        tenant_id: Azure AD tenant ID.
        client_id: Application (client) ID.
        client_secret: Client secret.
        scope: OAuth2 scope to request.
        http_client: ``httpx.Client`` for the token request.
        token_url: Token endpoint; derived from *tenant_id* if omitted.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        scope: str = GRAPH_SCOPE,
        http_client: httpx.Client | None = None,
        token_url: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self.token_url = token_url or TOKEN_URL_TEMPLATE.format(tenant_id=tenant_id)
        self._client = http_client or httpx.Client(timeout=_DEFAULT_TIMEOUT_S)
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at: datetime | None = None

    def token(self) -> str:
        """Return an access token, refreshing it when needed.

        Raises:
            AuthError: If the token endpoint rejects the credentials.
            httpx.TransportError: If the token endpoint cannot be reached.
        """
        with self._lock:
            now = self._clock()
            if self._token and self._expires_at and now < self._expires_at - _EXPIRY_SKEW:
                return self._token
            self._token, self._expires_at = self._fetch(now)
            return self._token

    def _fetch(self, now: datetime) -> tuple[str, datetime | None]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": self.scope,
        }
        resp = self._client.post(self.token_url, data=form)

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        token = str(data.get("access_token") or "").strip()
        if resp.status_code != 200 or not token:
            error = data.get("error") or f"status {resp.status_code}"
            description = data.get("error_description", "")
            logger.warning("token_acquisition_failed", client_id=self.client_id, error=error)
            raise AuthError(f"acquire token: {error}: {description}".rstrip(": "))

        expires_in = data.get("expires_in")
        expires_at = None
        if isinstance(expires_in, int) and expires_in > 0:
            expires_at = now + timedelta(seconds=expires_in)
        logger.debug("token_acquired", client_id=self.client_id, expires_at=expires_at)
        return token, expires_at

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()


def build_token_source(cfg: MailConfig) -> TokenSource:
    """Create a :class:`TokenSource` from a mail configuration.

    Raises:
        ConfigError: If tenant, client or secret is missing.
    """
    if not cfg.has_credentials():
        raise ConfigError("Graph API requires tenant_id, client_id, and client_secret")
    return TokenSource(cfg.tenant_id, cfg.client_id, cfg.client_secret)
