"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    BrokerComponents,
    build_components,
    get_broker_oauth_service,
    get_google_oauth_client,
    get_google_token_service,
    get_provider_link_service,
    get_session_token_codec,
    get_token_cipher_service,
    get_token_store,
    require_auth_context,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "BrokerComponents",
    "SettingsDependency",
    "build_components",
    "get_app_settings",
    "get_broker_oauth_service",
    "get_google_oauth_client",
    "get_google_token_service",
    "get_provider_link_service",
    "get_session_token_codec",
    "get_token_cipher_service",
    "get_token_store",
    "require_auth_context",
]
