"""
Session tokens minted and verified by the broker itself.

Tokens are HS256 JWTs carrying the subject, issuer, a fixed audience, the
granted scope and a ``type`` claim that separates access from refresh tokens.
"""

from __future__ import annotations

import re
import secrets
import time
from enum import Enum
from typing import Optional

import jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

AUDIENCE = "gmail-mcp"
ALGORITHM = "HS256"
ACCESS_TOKEN_LIFETIME = 3600
REFRESH_TOKEN_LIFETIME = 2_592_000

_SUBJECT_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


_LIFETIMES = {
    TokenKind.ACCESS: ACCESS_TOKEN_LIFETIME,
    TokenKind.REFRESH: REFRESH_TOKEN_LIFETIME,
}


class TokenValidationError(Exception):
    """Raised when a session token fails verification.

    ``reason`` is one of ``invalid_token``, ``invalid_signature``,
    ``wrong_audience``, ``wrong_issuer``, ``expired`` or ``wrong_kind``.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class SessionTokenPayload(BaseModel):
    """Claims carried inside a session token."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    subject: str = Field(..., alias="sub")
    issuer: str = Field(..., alias="iss")
    audience: str = Field(..., alias="aud")
    issued_at: int = Field(..., alias="iat")
    expires_at: int = Field(..., alias="exp")
    scope: str
    kind: TokenKind = Field(..., alias="type")
    token_id: str = Field(..., alias="jti")

    def to_claims(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class TokenPair(BaseModel):
    """Access and refresh tokens issued together, shaped like an OAuth token response."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = ACCESS_TOKEN_LIFETIME
    scope: str


def generate_subject_id() -> str:
    """Generate a new internal subject identifier (32 lowercase hex characters)."""
    return secrets.token_hex(16)


def looks_like_subject_id(value: str) -> bool:
    """Return whether ``value`` has the shape produced by :func:`generate_subject_id`."""
    return bool(_SUBJECT_ID_PATTERN.match(value))


def mint_token(
    subject: str,
    issuer: str,
    scope: str,
    kind: TokenKind,
    secret: str,
    *,
    issued_at: Optional[int] = None,
) -> str:
    """Sign a session token of ``kind``; its lifetime is fixed by the kind."""
    kind = TokenKind(kind)
    now = int(time.time()) if issued_at is None else int(issued_at)
    payload = SessionTokenPayload(
        subject=subject,
        issuer=issuer,
        audience=AUDIENCE,
        issued_at=now,
        expires_at=now + _LIFETIMES[kind],
        scope=scope,
        kind=kind,
        token_id=secrets.token_hex(16),
    )
    return jwt.encode(payload.to_claims(), secret, algorithm=ALGORITHM)


def generate_token_pair(subject: str, issuer: str, scope: str, secret: str) -> TokenPair:
    """Mint a fresh access and refresh token for ``subject``."""
    return TokenPair(
        access_token=mint_token(subject, issuer, scope, TokenKind.ACCESS, secret),
        refresh_token=mint_token(subject, issuer, scope, TokenKind.REFRESH, secret),
        scope=scope,
    )


def verify_token(
    token: str,
    secret: str,
    expected_issuer: str,
    expected_kind: TokenKind = TokenKind.ACCESS,
    *,
    now: Optional[int] = None,
) -> SessionTokenPayload:
    """
    Verify ``token`` and return its payload.

    Checks run in a fixed order (signature, audience, issuer, expiry, kind) and
    the first failure is raised as :class:`TokenValidationError`.
    """
    expected_kind = TokenKind(expected_kind)
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={
                "verify_aud": False,
                "verify_iss": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except jwt.InvalidSignatureError as exc:
        raise TokenValidationError("invalid_signature", "Invalid token signature") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenValidationError("invalid_token", f"Invalid token: {exc}") from exc

    if claims.get("aud") != AUDIENCE:
        raise TokenValidationError("wrong_audience", "Token audience does not match")
    if claims.get("iss") != expected_issuer:
        raise TokenValidationError("wrong_issuer", "Token issuer does not match")

    expires_at = claims.get("exp")
    if not isinstance(expires_at, int):
        raise TokenValidationError("invalid_token", "Invalid token: missing expiry")
    current = int(time.time()) if now is None else now
    if expires_at <= current:
        raise TokenValidationError("expired", "Token expired")

    if claims.get("type") != expected_kind.value:
        raise TokenValidationError(
            "wrong_kind",
            f"Expected {expected_kind.value} token, got {claims.get('type')}",
        )

    try:
        return SessionTokenPayload.model_validate(claims)
    except ValidationError as exc:
        raise TokenValidationError("invalid_token", "Invalid token: malformed claims") from exc


def extract_bearer_token(header_value: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header, else ``None``."""
    if not header_value:
        return None
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


class SessionTokenCodec:
    """Mint and verify session tokens for one issuer and signing secret."""

    def __init__(self, *, secret: str, issuer: str) -> None:
        if not secret:
            raise ValueError("Session token signing secret must be provided.")
        self._secret = secret
        self.issuer = issuer.rstrip("/")

    def mint(self, subject: str, scope: str, kind: TokenKind, *, issued_at: Optional[int] = None) -> str:
        return mint_token(subject, self.issuer, scope, kind, self._secret, issued_at=issued_at)

    def issue_pair(self, subject: str, scope: str) -> TokenPair:
        return generate_token_pair(subject, self.issuer, scope, self._secret)

    def verify(self, token: str, expected_kind: TokenKind = TokenKind.ACCESS) -> SessionTokenPayload:
        return verify_token(token, self._secret, self.issuer, expected_kind)


__all__ = [
    "ACCESS_TOKEN_LIFETIME",
    "AUDIENCE",
    "REFRESH_TOKEN_LIFETIME",
    "SessionTokenCodec",
    "SessionTokenPayload",
    "TokenKind",
    "TokenPair",
    "TokenValidationError",
    "extract_bearer_token",
    "generate_subject_id",
    "generate_token_pair",
    "looks_like_subject_id",
    "mint_token",
    "verify_token",
]
