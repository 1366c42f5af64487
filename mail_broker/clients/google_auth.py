"""
Google OAuth utilities.

These helpers build the consent URL and talk to Google's token, userinfo and
revocation endpoints. Nothing here retries; a failed call surfaces as
``OAuthTokenExchangeError`` and retry policy belongs to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import status

from mail_broker.core.config import GoogleSettings
from mail_broker.utils.pkce import CODE_CHALLENGE_METHOD


class OAuthTokenExchangeError(Exception):
    """Raised when a Google OAuth endpoint returns an error or an incomplete payload."""


class OAuthTokenNotFoundError(Exception):
    """Raised when no persisted OAuth token is available for a subject."""


@dataclass(frozen=True)
class ProviderTokenGrant:
    """Tokens returned by Google's token endpoint."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str]
    scope: str


@dataclass(frozen=True)
class ProviderIdentity:
    """The Google account behind an access token."""

    user_id: str
    email: str


class GoogleOAuthClient:
    """Build Google authorization URLs and exchange authorization codes."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
    REVOKE_URL = "https://oauth2.googleapis.com/revoke"

    def __init__(
        self,
        google_settings: GoogleSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._google = google_settings
        self._timeout = google_settings.http_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _post(self, url: str, data: dict) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.post(url, data=data)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(f"Request to {url} failed: {exc.__class__.__name__}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Google returned a response that is not JSON.") from exc
        if not isinstance(payload, dict):
            raise OAuthTokenExchangeError("Google returned an unexpected JSON payload.")
        return payload

    def build_authorization_url(
        self,
        *,
        state: str,
        code_challenge: str,
        scopes: Iterable[str],
    ) -> str:
        """Construct the Google OAuth consent URL carrying the PKCE challenge."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": str(self._google.redirect_uri),
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": "offline",
            "include_granted_scopes": "true",
            "prompt": "consent",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> ProviderTokenGrant:
        """Exchange an authorization code and its PKCE verifier for tokens."""
        payload = {
            "code": code,
            "code_verifier": code_verifier,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": str(self._google.redirect_uri),
            "grant_type": "authorization_code",
        }
        response = await self._post(self.TOKEN_URL, payload)
        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)

        token_payload = self._json(response)
        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete token payload returned from Google.")

        return ProviderTokenGrant(
            access_token=access_token,
            expires_in=int(expires_in),
            refresh_token=token_payload.get("refresh_token"),
            scope=token_payload.get("scope", ""),
        )

    async def refresh_token(self, refresh_token: str) -> Tuple[str, int, Optional[str]]:
        """
        Refresh the access token using a stored refresh token.

        Returns ``(access_token, expires_in_seconds, rotated_refresh_token)``;
        the last item is ``None`` unless Google issued a new refresh token.
        """
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        response = await self._post(self.TOKEN_URL, payload)
        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)

        token_payload = self._json(response)
        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete refresh payload returned from Google.")

        return access_token, int(expires_in), token_payload.get("refresh_token")

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        """Look up the Google account id and email address for ``access_token``."""
        try:
            async with self._client() as client:
                response = await client.get(
                    self.USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(
                f"Userinfo request failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)

        info = self._json(response)
        user_id = info.get("sub")
        email = info.get("email")
        if not user_id or not email:
            raise OAuthTokenExchangeError("Userinfo response is missing the account id or email.")
        return ProviderIdentity(user_id=user_id, email=email)

    async def revoke_token(self, token: str) -> None:
        """Ask Google to revoke ``token`` (and every grant derived from it)."""
        response = await self._post(self.REVOKE_URL, {"token": token})
        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)


__all__ = [
    "GoogleOAuthClient",
    "OAuthTokenExchangeError",
    "OAuthTokenNotFoundError",
    "ProviderIdentity",
    "ProviderTokenGrant",
]
