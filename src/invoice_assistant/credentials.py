"""Credential provider for the QuickBooks API.

Credentials are read fresh for every request and handed to the gateway as a
read-only snapshot. Absence of credentials is an expected state, not an error.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import unquote

import structlog

logger = structlog.get_logger(__name__)

TOKENS_COOKIE = "quickbooks_tokens"


@dataclass(frozen=True)
class Credentials:
    """Bearer token and tenant (realm) id for one request."""

    access_token: str
    tenant_id: str
    refresh_token: str | None = None
    expiry: datetime | None = None

    @property
    def is_expired(self) -> bool:
        return self.expiry is not None and datetime.now(UTC) >= self.expiry

    @classmethod
    def from_token_data(cls, data: Mapping[str, Any]) -> "Credentials | None":
        """Build from the token payload stored by the OAuth callback.

        The payload is the provider's token response plus ``realmId``. Returns
        None when the access token or realm id is missing.
        """
        access_token = data.get("access_token")
        tenant_id = data.get("realmId") or data.get("realm_id")
        if not access_token or not tenant_id:
            return None

        expiry = None
        expires_at = data.get("expires_at")
        if expires_at:
            try:
                expiry = datetime.fromisoformat(str(expires_at))
            except ValueError:
                expiry = None
            if expiry is not None and expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=UTC)
        elif data.get("expires_in") and data.get("issued_at"):
            try:
                issued = datetime.fromisoformat(str(data["issued_at"]))
                if issued.tzinfo is None:
                    issued = issued.replace(tzinfo=UTC)
                expiry = issued + timedelta(seconds=int(data["expires_in"]))
            except (TypeError, ValueError):
                expiry = None

        return cls(
            access_token=str(access_token),
            tenant_id=str(tenant_id),
            refresh_token=data.get("refresh_token"),
            expiry=expiry,
        )


def parse_token_cookie(value: str | None) -> dict[str, Any] | None:
    """Decode the ``quickbooks_tokens`` cookie value (URL-encoded JSON)."""
    if not value:
        return None
    for candidate in (value, unquote(value)):
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class CredentialProvider:
    """Resolves credentials from a cookie, falling back to client-held tokens.

    The fallback covers browsers that keep the tokens in local storage and send
    them explicitly with the request body.
    """

    def __init__(
        self,
        cookie_value: str | None = None,
        fallback_tokens: Mapping[str, Any] | None = None,
    ):
        self._cookie_value = cookie_value
        self._fallback_tokens = fallback_tokens

    def get_credentials(self) -> Credentials | None:
        """Return a credentials snapshot, or None if not authenticated."""
        sources: list[tuple[str, Mapping[str, Any] | None]] = [
            ("cookie", parse_token_cookie(self._cookie_value)),
            ("client", self._fallback_tokens),
        ]
        for source, data in sources:
            if not data:
                continue
            credentials = Credentials.from_token_data(data)
            if credentials is None:
                logger.info("invalid_token_structure", source=source)
                continue
            if credentials.is_expired:
                logger.info("tokens_expired", source=source)
                continue
            logger.debug("credentials_resolved", source=source, realm_id=credentials.tenant_id)
            return credentials

        logger.debug("credentials_missing")
        return None
