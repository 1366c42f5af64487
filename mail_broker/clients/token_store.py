"""Storage contract shared by the credential store backends."""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from mail_broker.models.credentials import PendingAuthorizationState, ProviderCredential


class TokenStoreError(Exception):
    """Base class for token store failures."""


class StoreUnavailableError(TokenStoreError):
    """Raised when the backing store is closed or cannot be reached."""


class DuplicateStateError(TokenStoreError):
    """Raised when saving an OAuth state whose handle already exists."""


@runtime_checkable
class TokenStore(Protocol):
    """Provider credentials keyed by subject and single-use OAuth states keyed by handle."""

    def get_credentials(self, subject: str) -> Optional[ProviderCredential]:
        ...

    def list_credentials(self) -> List[ProviderCredential]:
        """Every stored credential, oldest first."""

    def save_credentials(self, credential: ProviderCredential) -> None:
        """Insert or fully replace the row for ``credential.subject``; ``created_at`` is kept."""

    def delete_credentials(self, subject: str) -> None:
        """Remove the row; absent rows are not an error."""

    def update_access_token(
        self,
        subject: str,
        access_token: str,
        access_expiry: int,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Update only the access token fields, optionally rotating the refresh token."""

    def save_oauth_state(self, state: PendingAuthorizationState) -> None:
        ...

    def consume_oauth_state(self, state: str) -> Optional[PendingAuthorizationState]:
        """Atomically fetch and delete a non-expired state; ``None`` otherwise."""

    def cleanup_expired_states(self) -> int:
        """Delete expired states and return how many were removed."""

    def close(self) -> None:
        ...


__all__ = [
    "DuplicateStateError",
    "StoreUnavailableError",
    "TokenStore",
    "TokenStoreError",
]
