"""SQLite-backed token store for provider credentials and OAuth states."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from mail_broker.clients.token_store import DuplicateStateError, StoreUnavailableError
from mail_broker.models.credentials import PendingAuthorizationState, ProviderCredential

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_credential(row: sqlite3.Row) -> ProviderCredential:
    return ProviderCredential(
        subject=row["mcp_user_id"],
        provider_user_id=row["google_user_id"],
        mailbox_address=row["email"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        access_expiry=row["expiry_date"],
        granted_scope=row["scope"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class SQLiteTokenStore:
    """Token store keeping one credential row per subject and one row per OAuth state."""

    def __init__(self, db_path: str, *, busy_timeout: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout
        self._closed = False
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StoreUnavailableError("Token store is closed.")
        try:
            # Autocommit mode: single statements are atomic, multi-statement
            # work opens its own explicit transaction.
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open token store: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Token store operation failed: {exc}") from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS gmail_credentials (
                    mcp_user_id TEXT PRIMARY KEY,
                    google_user_id TEXT NOT NULL,
                    email TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    expiry_date INTEGER NOT NULL,
                    scope TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_states (
                    state TEXT PRIMARY KEY,
                    mcp_user_id TEXT NOT NULL,
                    expires_at INTEGER NOT NULL,
                    scopes TEXT NOT NULL,
                    code_verifier TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_oauth_states_expires_at
                ON oauth_states(expires_at)
                """
            )

    # Provider credentials

    def get_credentials(self, subject: str) -> Optional[ProviderCredential]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM gmail_credentials WHERE mcp_user_id = ?",
                (subject,),
            ).fetchone()
        return _row_to_credential(row) if row else None

    def list_credentials(self) -> List[ProviderCredential]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM gmail_credentials ORDER BY created_at"
            ).fetchall()
        return [_row_to_credential(row) for row in rows]

    def save_credentials(self, credential: ProviderCredential) -> None:
        now = _now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO gmail_credentials (
                    mcp_user_id, google_user_id, email, access_token, refresh_token,
                    expiry_date, scope, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(mcp_user_id) DO UPDATE SET
                    google_user_id = excluded.google_user_id,
                    email = excluded.email,
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expiry_date = excluded.expiry_date,
                    scope = excluded.scope,
                    updated_at = excluded.updated_at
                """,
                (
                    credential.subject,
                    credential.provider_user_id,
                    credential.mailbox_address,
                    credential.access_token,
                    credential.refresh_token,
                    credential.access_expiry,
                    credential.granted_scope,
                    now,
                    now,
                ),
            )

    def delete_credentials(self, subject: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM gmail_credentials WHERE mcp_user_id = ?", (subject,))

    def update_access_token(
        self,
        subject: str,
        access_token: str,
        access_expiry: int,
        refresh_token: Optional[str] = None,
    ) -> None:
        now = _now().isoformat()
        with self._connect() as conn:
            if refresh_token:
                conn.execute(
                    """
                    UPDATE gmail_credentials
                    SET access_token = ?, expiry_date = ?, refresh_token = ?, updated_at = ?
                    WHERE mcp_user_id = ?
                    """,
                    (access_token, access_expiry, refresh_token, now, subject),
                )
            else:
                conn.execute(
                    """
                    UPDATE gmail_credentials
                    SET access_token = ?, expiry_date = ?, updated_at = ?
                    WHERE mcp_user_id = ?
                    """,
                    (access_token, access_expiry, now, subject),
                )

    # OAuth states

    def save_oauth_state(self, state: PendingAuthorizationState) -> None:
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO oauth_states (state, mcp_user_id, expires_at, scopes, code_verifier)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        state.state,
                        state.subject,
                        _to_millis(state.expires_at),
                        json.dumps(state.requested_scopes),
                        state.code_verifier,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateStateError("OAuth state handle already exists.") from exc

    def consume_oauth_state(self, state: str) -> Optional[PendingAuthorizationState]:
        now_ms = _to_millis(_now())
        with self._connect() as conn:
            # IMMEDIATE takes the write lock up front so concurrent consumers serialize.
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT * FROM oauth_states WHERE state = ? AND expires_at > ?",
                    (state, now_ms),
                ).fetchone()
                if row:
                    conn.execute("DELETE FROM oauth_states WHERE state = ?", (state,))
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        if not row:
            return None
        return PendingAuthorizationState(
            state=row["state"],
            subject=row["mcp_user_id"],
            requested_scopes=json.loads(row["scopes"]),
            code_verifier=row["code_verifier"],
            expires_at=_from_millis(row["expires_at"]),
        )

    def cleanup_expired_states(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM oauth_states WHERE expires_at <= ?",
                (_to_millis(_now()),),
            )
            removed = cursor.rowcount
        if removed:
            logger.info("Purged %s expired OAuth states", removed)
        return removed

    def close(self) -> None:
        self._closed = True


__all__ = ["SQLiteTokenStore"]
