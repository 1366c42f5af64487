"""Public schema exports."""

from .auth import (
    AuthorizationCodeResponse,
    HealthResponse,
    LinkageStartResponse,
    LinkageStatusResponse,
    OAuthErrorResponse,
    TokenRequest,
    TokenResponse,
)

__all__ = [
    "AuthorizationCodeResponse",
    "HealthResponse",
    "LinkageStartResponse",
    "LinkageStatusResponse",
    "OAuthErrorResponse",
    "TokenRequest",
    "TokenResponse",
]
