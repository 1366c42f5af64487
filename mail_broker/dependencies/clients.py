"""
Construction of the shared broker components and their FastAPI dependencies.

``build_components`` runs once per application; per-request services are
assembled from those shared pieces so tests can override any one of them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from mail_broker.clients import GoogleOAuthClient, InMemoryTokenStore, SQLiteTokenStore, TokenStore
from mail_broker.core.config import AppSettings
from mail_broker.dependencies.config import get_app_settings
from mail_broker.services import (
    AuthContext,
    BrokerOAuthService,
    GoogleTokenService,
    ProviderLinkService,
    SessionTokenCodec,
    TokenCipherService,
)

IN_MEMORY_DB_URL = ":memory:"


@dataclass
class BrokerComponents:
    """Long-lived objects shared by every request."""

    token_store: TokenStore
    token_cipher: TokenCipherService
    session_codec: SessionTokenCodec
    google_oauth_client: GoogleOAuthClient


def build_token_store(settings: AppSettings) -> TokenStore:
    if settings.storage.db_url == IN_MEMORY_DB_URL:
        return InMemoryTokenStore()
    return SQLiteTokenStore(settings.storage.db_url)


def build_components(settings: AppSettings) -> BrokerComponents:
    """Create the store, cipher, codec and Google client from settings."""
    return BrokerComponents(
        token_store=build_token_store(settings),
        token_cipher=TokenCipherService(secret=settings.security.token_encryption_key),
        session_codec=SessionTokenCodec(
            secret=settings.security.jwt_secret,
            issuer=settings.server.issuer,
        ),
        google_oauth_client=GoogleOAuthClient(settings.google),
    )


def _components(request: Request) -> BrokerComponents:
    return request.app.state.components


def get_token_store(request: Request) -> TokenStore:
    """Provide the shared token store."""
    return _components(request).token_store


def get_token_cipher_service(request: Request) -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    return _components(request).token_cipher


def get_session_token_codec(request: Request) -> SessionTokenCodec:
    return _components(request).session_codec


def get_google_oauth_client(request: Request) -> GoogleOAuthClient:
    """Provide the shared Google OAuth client."""
    return _components(request).google_oauth_client


def get_broker_oauth_service(
    codec: Annotated[SessionTokenCodec, Depends(get_session_token_codec)],
) -> BrokerOAuthService:
    return BrokerOAuthService(codec)


def get_provider_link_service(
    store: Annotated[TokenStore, Depends(get_token_store)],
    oauth_client: Annotated[GoogleOAuthClient, Depends(get_google_oauth_client)],
    token_cipher: Annotated[TokenCipherService, Depends(get_token_cipher_service)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> ProviderLinkService:
    return ProviderLinkService(store, oauth_client, token_cipher, settings.oauth)


def get_google_token_service(
    store: Annotated[TokenStore, Depends(get_token_store)],
    oauth_client: Annotated[GoogleOAuthClient, Depends(get_google_oauth_client)],
    token_cipher: Annotated[TokenCipherService, Depends(get_token_cipher_service)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> GoogleTokenService:
    """Provide helper for managing Google OAuth tokens."""
    return GoogleTokenService(store, oauth_client, settings.google, token_cipher)


def require_auth_context(
    request: Request,
    broker: Annotated[BrokerOAuthService, Depends(get_broker_oauth_service)],
) -> AuthContext:
    """Authenticate the request's bearer token; failures become a 401 challenge."""
    return broker.authenticate(request.headers.get("authorization"))


__all__ = [
    "BrokerComponents",
    "build_components",
    "build_token_store",
    "get_broker_oauth_service",
    "get_google_oauth_client",
    "get_google_token_service",
    "get_provider_link_service",
    "get_session_token_codec",
    "get_token_cipher_service",
    "get_token_store",
    "require_auth_context",
]
