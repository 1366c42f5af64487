"""
The broker's own OAuth surface.

Issues session token pairs for the authorization-code and refresh-token grants,
hands out authorization codes, and authenticates inbound bearer tokens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mail_broker.services.session_tokens import (
    AUDIENCE,
    SessionTokenCodec,
    TokenKind,
    TokenPair,
    TokenValidationError,
    extract_bearer_token,
    generate_subject_id,
    looks_like_subject_id,
)

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "mcp:tools"
SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
SUPPORTED_RESPONSE_TYPES = ("code",)


class BrokerOAuthError(Exception):
    """An OAuth error reported to the client as ``{error, error_description}``."""

    error = "invalid_request"
    status_code = 400

    def __init__(
        self,
        description: str,
        *,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(description)
        self.description = description
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}

    def to_body(self) -> Dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class InvalidRequestError(BrokerOAuthError):
    error = "invalid_request"


class InvalidGrantError(BrokerOAuthError):
    error = "invalid_grant"


class UnsupportedGrantTypeError(BrokerOAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseTypeError(BrokerOAuthError):
    error = "unsupported_response_type"


class AuthenticationError(BrokerOAuthError):
    error = "unauthorized"
    status_code = 401


@dataclass(frozen=True)
class AuthContext:
    """Identity attached to an authenticated request."""

    subject: str
    scope: str


@dataclass(frozen=True)
class AuthorizationResult:
    code: str
    state: Optional[str]
    redirect_url: Optional[str] = None


def _append_query(url: str, params: Dict[str, str]) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise InvalidRequestError("redirect_uri must be an absolute URL")
    query = parse_qsl(parts.query, keep_blank_values=True)
    query = [(key, value) for key, value in query if key not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _quote_header_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', "'")


class BrokerOAuthService:
    """Protocol logic for the broker-issued session tokens."""

    def __init__(self, codec: SessionTokenCodec) -> None:
        self._codec = codec

    @property
    def issuer(self) -> str:
        return self._codec.issuer

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.issuer}/.well-known/oauth-protected-resource"

    def authorize(
        self,
        *,
        response_type: Optional[str],
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ) -> AuthorizationResult:
        """Hand out an authorization code; the code doubles as a fresh subject identifier."""
        if response_type not in SUPPORTED_RESPONSE_TYPES:
            raise UnsupportedResponseTypeError('Only "code" response type is supported')

        code = generate_subject_id()
        redirect_url = None
        if redirect_uri:
            params = {"code": code}
            if state:
                params["state"] = state
            redirect_url = _append_query(redirect_uri, params)
        return AuthorizationResult(code=code, state=state, redirect_url=redirect_url)

    def exchange(
        self,
        grant_type: Optional[str],
        *,
        code: Optional[str] = None,
        refresh_token: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> TokenPair:
        """Dispatch a token endpoint request on its grant type."""
        if grant_type == "authorization_code":
            if not code:
                raise InvalidRequestError("Missing authorization code")
            return self.issue_from_code(code, DEFAULT_SCOPE if scope is None else scope)
        if grant_type == "refresh_token":
            if not refresh_token:
                raise InvalidRequestError("Missing refresh token")
            return self.refresh(refresh_token)
        raise UnsupportedGrantTypeError(f"Grant type '{grant_type}' is not supported")

    def issue_from_code(self, code: str, scope: str = DEFAULT_SCOPE) -> TokenPair:
        """Mint a token pair for the subject named by ``code`` (or a new subject)."""
        subject = code if looks_like_subject_id(code) else generate_subject_id()
        pair = self._codec.issue_pair(subject, scope)
        logger.info("Issued session tokens for subject %s", subject)
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token into a brand-new token pair for the same subject and scope."""
        try:
            payload = self._codec.verify(refresh_token, TokenKind.REFRESH)
        except TokenValidationError as exc:
            logger.info("Rejected refresh token: %s", exc.reason)
            raise InvalidGrantError(exc.message) from exc

        pair = self._codec.issue_pair(payload.subject, payload.scope)
        logger.info("Refreshed session tokens for subject %s", payload.subject)
        return pair

    def authenticate(self, authorization_header: Optional[str]) -> AuthContext:
        """Validate an inbound ``Authorization`` header as an access token."""
        token = extract_bearer_token(authorization_header)
        if not token:
            raise AuthenticationError(
                "Missing or invalid authorization header",
                headers={
                    "WWW-Authenticate": (
                        f'Bearer realm="{AUDIENCE}", '
                        f'resource_metadata="{self.resource_metadata_url}"'
                    )
                },
            )

        try:
            payload = self._codec.verify(token, TokenKind.ACCESS)
        except TokenValidationError as exc:
            logger.info("Rejected access token: %s", exc.reason)
            raise AuthenticationError(
                exc.message,
                error="invalid_token",
                headers={
                    "WWW-Authenticate": (
                        f'Bearer realm="{AUDIENCE}", error="invalid_token", '
                        f'error_description="{_quote_header_value(exc.message)}"'
                    )
                },
            ) from exc

        return AuthContext(subject=payload.subject, scope=payload.scope)


__all__ = [
    "AuthContext",
    "AuthenticationError",
    "AuthorizationResult",
    "BrokerOAuthError",
    "BrokerOAuthService",
    "DEFAULT_SCOPE",
    "InvalidGrantError",
    "InvalidRequestError",
    "SUPPORTED_GRANT_TYPES",
    "SUPPORTED_RESPONSE_TYPES",
    "UnsupportedGrantTypeError",
    "UnsupportedResponseTypeError",
]
