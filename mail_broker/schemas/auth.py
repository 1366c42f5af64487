"""Schemas for the broker's OAuth endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """Body of ``POST /oauth/token`` (form-encoded or JSON)."""

    grant_type: Optional[str] = None
    code: Optional[str] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str
    scope: str


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str


class AuthorizationCodeResponse(BaseModel):
    """Returned by ``/oauth/authorize`` when no redirect URI was supplied."""

    code: str
    state: Optional[str] = None


class LinkageStartResponse(BaseModel):
    authorization_url: str = Field(..., description="Google consent screen URL.")
    state: str = Field(..., description="Opaque state token bound to the caller.")


class LinkageStatusResponse(BaseModel):
    subject: str
    scope: str
    linked: bool
    mailbox_address: Optional[str] = None
    granted_scope: Optional[str] = None
    access_expiry: Optional[int] = Field(None, description="Epoch milliseconds.")


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    issues: Optional[List[str]] = None


__all__ = [
    "AuthorizationCodeResponse",
    "HealthResponse",
    "LinkageStartResponse",
    "LinkageStatusResponse",
    "OAuthErrorResponse",
    "TokenRequest",
    "TokenResponse",
]
