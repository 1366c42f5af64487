"""Pytest configuration shared across the suite."""

from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover - rootdir-relative import
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from mail_broker.clients.google_auth import ProviderIdentity, ProviderTokenGrant
from mail_broker.core.config import (
    AppSettings,
    GoogleSettings,
    OAuthSettings,
    SecuritySettings,
    ServerSettings,
    StorageSettings,
)

TEST_ISSUER = "http://localhost:3000"
TEST_JWT_SECRET = "test-jwt-secret-that-is-at-least-32-characters"
TEST_ENCRYPTION_KEY = "test-encryption-key-with-at-least-32-chars"


class FakeGoogleOAuthClient:
    """Records calls instead of talking to Google."""

    TOKEN_URL = "https://oauth.example/token"

    def __init__(self) -> None:
        self.authorization_requests: list[dict] = []
        self.exchanges: list[tuple[str, str]] = []
        self.refreshes: list[str] = []
        self.revoked: list[str] = []
        self.refresh_token_to_issue: str | None = "google-refresh-token"
        self.rotated_refresh_token: str | None = None
        self.fail_exchange = False
        self.fail_revoke = False
        self.identity = ProviderIdentity(user_id="google-user-1", email="person@example.com")

    def build_authorization_url(self, *, state: str, code_challenge: str, scopes) -> str:
        self.authorization_requests.append(
            {"state": state, "code_challenge": code_challenge, "scopes": list(scopes)}
        )
        return f"https://accounts.example.com/auth?state={state}&code_challenge={code_challenge}"

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> ProviderTokenGrant:
        from mail_broker.clients.google_auth import OAuthTokenExchangeError

        self.exchanges.append((code, code_verifier))
        if self.fail_exchange:
            raise OAuthTokenExchangeError("invalid_grant")
        return ProviderTokenGrant(
            access_token=f"google-access-{len(self.exchanges)}",
            expires_in=3599,
            refresh_token=self.refresh_token_to_issue,
            scope="https://www.googleapis.com/auth/gmail.modify openid",
        )

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        return self.identity

    async def refresh_token(self, refresh_token: str) -> tuple[str, int, str | None]:
        self.refreshes.append(refresh_token)
        return "refreshed-google-access", 3600, self.rotated_refresh_token

    async def revoke_token(self, token: str) -> None:
        from mail_broker.clients.google_auth import OAuthTokenExchangeError

        if self.fail_revoke:
            raise OAuthTokenExchangeError("revocation failed")
        self.revoked.append(token)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def fake_google() -> FakeGoogleOAuthClient:
    return FakeGoogleOAuthClient()


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return AppSettings(
        server=ServerSettings(BASE_URL=TEST_ISSUER),
        google=GoogleSettings(
            GOOGLE_CLIENT_ID="client",
            GOOGLE_CLIENT_SECRET="secret",
            OAUTH_REDIRECT_URI=f"{TEST_ISSUER}/oauth/callback",
        ),
        security=SecuritySettings(
            TOKEN_ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
            JWT_SECRET=TEST_JWT_SECRET,
        ),
        oauth=OAuthSettings(),
        storage=StorageSettings(DB_URL=str(tmp_path / "tokens.db")),
    )
