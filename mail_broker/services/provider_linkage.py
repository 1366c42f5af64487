"""
Linking a subject to a Google mailbox.

``begin`` persists a single-use CSRF state bound to the subject and a PKCE
verifier; ``complete`` consumes it, exchanges the provider code and stores the
credentials for the subject read from that state, never from the callback.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from mail_broker.clients.google_auth import GoogleOAuthClient, OAuthTokenExchangeError
from mail_broker.clients.token_store import TokenStore
from mail_broker.core.config import OAuthSettings
from mail_broker.models.credentials import PendingAuthorizationState, ProviderCredential
from mail_broker.services.broker_oauth import (
    SUPPORTED_RESPONSE_TYPES,
    BrokerOAuthError,
    InvalidGrantError,
    InvalidRequestError,
    UnsupportedResponseTypeError,
)
from mail_broker.services.token_cipher import DecryptionError, TokenCipherService
from mail_broker.utils.pkce import build_code_challenge, generate_code_verifier, generate_secure_state

logger = logging.getLogger(__name__)


class ProviderLinkError(BrokerOAuthError):
    """Google refused or failed the exchange while completing a linkage."""

    error = "provider_error"
    status_code = 502


@dataclass(frozen=True)
class LinkageStart:
    authorization_url: str
    state: str
    expires_at: datetime


@dataclass(frozen=True)
class LinkageStatus:
    linked: bool
    mailbox_address: Optional[str] = None
    granted_scope: Optional[str] = None
    access_expiry: Optional[int] = None


class ProviderLinkService:
    """Drives the Google authorization-code flow with PKCE on a subject's behalf."""

    def __init__(
        self,
        store: TokenStore,
        oauth_client: GoogleOAuthClient,
        token_cipher: TokenCipherService,
        oauth_settings: OAuthSettings,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._cipher = token_cipher
        self._settings = oauth_settings

    def begin(
        self,
        subject: str,
        *,
        scopes: Optional[Iterable[str]] = None,
        response_type: str = "code",
    ) -> LinkageStart:
        """Persist a pending authorization and return the consent URL."""
        if response_type not in SUPPORTED_RESPONSE_TYPES:
            raise UnsupportedResponseTypeError('Only "code" response type is supported')

        requested = list(scopes) if scopes else list(self._settings.scopes)
        code_verifier = generate_code_verifier()
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self._settings.state_ttl_seconds)
        pending = PendingAuthorizationState(
            state=generate_secure_state(),
            subject=subject,
            requested_scopes=requested,
            code_verifier=code_verifier,
            expires_at=expires_at,
        )
        self._store.save_oauth_state(pending)

        authorization_url = self._oauth.build_authorization_url(
            state=pending.state,
            code_challenge=build_code_challenge(code_verifier),
            scopes=requested,
        )
        logger.info("Started mailbox linkage for subject %s", subject)
        return LinkageStart(
            authorization_url=authorization_url,
            state=pending.state,
            expires_at=expires_at,
        )

    async def complete(
        self,
        *,
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
    ) -> ProviderCredential:
        """Finish the linkage for the subject bound to ``state``."""
        pending = self._store.consume_oauth_state(state) if state else None
        if pending is None:
            raise InvalidGrantError("Invalid or expired OAuth state")

        if error:
            logger.info("Mailbox linkage declined for subject %s: %s", pending.subject, error)
            raise BrokerOAuthError(
                f"Google authorization failed: {error}", error="access_denied"
            )
        if not code:
            raise InvalidRequestError("Missing authorization code")

        try:
            grant = await self._oauth.exchange_authorization_code(code, pending.code_verifier)
            identity = await self._oauth.fetch_identity(grant.access_token)
        except OAuthTokenExchangeError as exc:
            logger.warning("Google code exchange failed for subject %s", pending.subject)
            raise ProviderLinkError("Failed to exchange authorization code.") from exc

        if grant.refresh_token:
            encrypted_refresh = self._cipher.encrypt(grant.refresh_token)
        else:
            existing = self._store.get_credentials(pending.subject)
            if existing is None:
                raise ProviderLinkError("Google did not return a refresh token.")
            encrypted_refresh = existing.refresh_token

        credential = ProviderCredential(
            subject=pending.subject,
            provider_user_id=identity.user_id,
            mailbox_address=identity.email,
            access_token=grant.access_token,
            refresh_token=encrypted_refresh,
            access_expiry=int(time.time() * 1000) + grant.expires_in * 1000,
            granted_scope=grant.scope or " ".join(pending.requested_scopes),
        )
        self._store.save_credentials(credential)
        logger.info("Linked mailbox %s to subject %s", identity.email, pending.subject)
        return credential

    async def revoke(self, subject: str) -> bool:
        """Revoke the subject's Google grant and delete its credentials.

        Returns ``False`` when nothing was linked.
        """
        credential = self._store.get_credentials(subject)
        if credential is None:
            return False

        try:
            await self._oauth.revoke_token(self._cipher.decrypt(credential.refresh_token))
        except (OAuthTokenExchangeError, DecryptionError) as exc:
            # Local deletion still proceeds; the grant expires on Google's side.
            logger.warning(
                "Could not revoke Google grant for subject %s: %s",
                subject,
                exc.__class__.__name__,
            )

        self._store.delete_credentials(subject)
        logger.info("Revoked mailbox linkage for subject %s", subject)
        return True

    def status(self, subject: str) -> LinkageStatus:
        credential = self._store.get_credentials(subject)
        if credential is None:
            return LinkageStatus(linked=False)
        return LinkageStatus(
            linked=True,
            mailbox_address=credential.mailbox_address,
            granted_scope=credential.granted_scope,
            access_expiry=credential.access_expiry,
        )


__all__ = ["LinkageStart", "LinkageStatus", "ProviderLinkError", "ProviderLinkService"]
