"""In-process token store with the same contract as the SQLite backend."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from mail_broker.clients.token_store import DuplicateStateError, StoreUnavailableError
from mail_broker.models.credentials import PendingAuthorizationState, ProviderCredential


class InMemoryTokenStore:
    """Dictionary-backed store; a single lock serializes every mutation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: Dict[str, ProviderCredential] = {}
        self._states: Dict[str, PendingAuthorizationState] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise StoreUnavailableError("Token store is closed.")

    def get_credentials(self, subject: str) -> Optional[ProviderCredential]:
        with self._lock:
            self._check_open()
            credential = self._credentials.get(subject)
            return credential.model_copy() if credential else None

    def list_credentials(self) -> List[ProviderCredential]:
        with self._lock:
            self._check_open()
            credentials = sorted(self._credentials.values(), key=lambda item: _aware(item.created_at))
            return [credential.model_copy() for credential in credentials]

    def save_credentials(self, credential: ProviderCredential) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._check_open()
            existing = self._credentials.get(credential.subject)
            created_at = existing.created_at if existing else now
            self._credentials[credential.subject] = credential.model_copy(
                update={"created_at": created_at, "updated_at": now}
            )

    def delete_credentials(self, subject: str) -> None:
        with self._lock:
            self._check_open()
            self._credentials.pop(subject, None)

    def update_access_token(
        self,
        subject: str,
        access_token: str,
        access_expiry: int,
        refresh_token: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._check_open()
            existing = self._credentials.get(subject)
            if existing is None:
                return
            changes = {
                "access_token": access_token,
                "access_expiry": access_expiry,
                "updated_at": datetime.now(timezone.utc),
            }
            if refresh_token:
                changes["refresh_token"] = refresh_token
            self._credentials[subject] = existing.model_copy(update=changes)

    def save_oauth_state(self, state: PendingAuthorizationState) -> None:
        with self._lock:
            self._check_open()
            if state.state in self._states:
                raise DuplicateStateError("OAuth state handle already exists.")
            self._states[state.state] = state.model_copy()

    def consume_oauth_state(self, state: str) -> Optional[PendingAuthorizationState]:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._check_open()
            pending = self._states.get(state)
            if pending is None or _aware(pending.expires_at) <= now:
                return None
            return self._states.pop(state)

    def cleanup_expired_states(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            self._check_open()
            expired = [key for key, value in self._states.items() if _aware(value.expires_at) <= now]
            for key in expired:
                del self._states[key]
            return len(expired)

    def close(self) -> None:
        with self._lock:
            self._closed = True


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


__all__ = ["InMemoryTokenStore"]
