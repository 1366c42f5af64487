"""Service layer exports."""

from .broker_oauth import AuthContext, BrokerOAuthError, BrokerOAuthService
from .google_tokens import GoogleTokenService
from .provider_linkage import ProviderLinkError, ProviderLinkService
from .session_tokens import SessionTokenCodec, TokenKind, TokenValidationError
from .token_cipher import DecryptionError, TokenCipherService

__all__ = [
    "AuthContext",
    "BrokerOAuthError",
    "BrokerOAuthService",
    "DecryptionError",
    "GoogleTokenService",
    "ProviderLinkError",
    "ProviderLinkService",
    "SessionTokenCodec",
    "TokenCipherService",
    "TokenKind",
    "TokenValidationError",
]
