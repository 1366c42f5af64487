"""
Domain models for provider credential and OAuth state persistence.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ProviderCredential(BaseModel):
    """Google credentials held on behalf of one internal subject."""

    subject: str = Field(..., description="Internal subject that owns the row.")
    provider_user_id: str = Field(..., description="Google account identifier.")
    mailbox_address: str
    access_token: str
    refresh_token: str = Field(..., description="Encrypted provider refresh token.")
    access_expiry: int = Field(..., description="Access token expiry in epoch milliseconds.")
    granted_scope: str = Field(..., description="Space separated scopes granted by Google.")
    created_at: Optional[datetime] = Field(None, description="Set by the store.")
    updated_at: Optional[datetime] = Field(None, description="Set by the store.")


class PendingAuthorizationState(BaseModel):
    """Single-use CSRF state binding a provider consent to a subject and PKCE verifier."""

    state: str
    subject: str
    requested_scopes: List[str]
    code_verifier: str
    expires_at: datetime


__all__ = ["PendingAuthorizationState", "ProviderCredential"]
