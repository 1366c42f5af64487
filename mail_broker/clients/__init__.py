"""Expose constructed client wrappers."""

from .google_auth import GoogleOAuthClient, OAuthTokenExchangeError, OAuthTokenNotFoundError
from .memory_store import InMemoryTokenStore
from .sqlite_store import SQLiteTokenStore
from .token_store import DuplicateStateError, StoreUnavailableError, TokenStore, TokenStoreError

__all__ = [
    "DuplicateStateError",
    "GoogleOAuthClient",
    "InMemoryTokenStore",
    "OAuthTokenExchangeError",
    "OAuthTokenNotFoundError",
    "SQLiteTokenStore",
    "StoreUnavailableError",
    "TokenStore",
    "TokenStoreError",
]
