"""
Helpers for retrieving and refreshing a subject's Google OAuth tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

from google.oauth2.credentials import Credentials

from mail_broker.clients.google_auth import GoogleOAuthClient, OAuthTokenNotFoundError
from mail_broker.clients.token_store import TokenStore
from mail_broker.core.config import GoogleSettings
from mail_broker.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class GoogleTokenService:
    """Hands out usable Google credentials, refreshing the access token lazily."""

    _REFRESH_WINDOW = timedelta(minutes=5)

    def __init__(
        self,
        store: TokenStore,
        oauth_client: GoogleOAuthClient,
        google_settings: GoogleSettings,
        token_cipher: TokenCipherService,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._google = google_settings
        self._cipher = token_cipher

    async def get_credentials(self, *, subject: str) -> Credentials:
        """Retrieve credentials for a subject, refreshing the access token when it is stale."""
        record = self._store.get_credentials(subject)
        if record is None:
            raise OAuthTokenNotFoundError(f"No Google account linked for subject {subject}.")

        refresh_token = self._cipher.decrypt(record.refresh_token)
        access_token = record.access_token
        expires_at = datetime.fromtimestamp(record.access_expiry / 1000, tz=timezone.utc)

        now = datetime.now(timezone.utc)
        if expires_at <= now + self._REFRESH_WINDOW:
            access_token, expires_in, rotated = await self._oauth.refresh_token(refresh_token)
            expires_at = now + timedelta(seconds=expires_in)
            encrypted_rotation = None
            if rotated and rotated != refresh_token:
                refresh_token = rotated
                encrypted_rotation = self._cipher.encrypt(rotated)
            self._store.update_access_token(
                subject,
                access_token,
                int(expires_at.timestamp() * 1000),
                encrypted_rotation,
            )
            logger.info("Refreshed Google access token for subject %s", subject)

        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=GoogleOAuthClient.TOKEN_URL,
            client_id=self._google.client_id,
            client_secret=self._google.client_secret,
            scopes=_split_scope(record.granted_scope),
            # google-auth compares against naive UTC datetimes.
            expiry=expires_at.replace(tzinfo=None),
        )


def _split_scope(scope: str) -> Sequence[str]:
    return [item for item in scope.split(" ") if item]


__all__ = ["GoogleTokenService"]
