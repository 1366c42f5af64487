"""Random handles and PKCE (RFC 7636) helpers."""

from __future__ import annotations

import base64
import hashlib
import secrets

CODE_CHALLENGE_METHOD = "S256"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_secure_state() -> str:
    """Return 256 random bits as a 43-character base64url string."""
    return _b64url(secrets.token_bytes(32))


def generate_code_verifier() -> str:
    """Return a PKCE code verifier (43 characters from the unreserved set)."""
    return _b64url(secrets.token_bytes(32))


def build_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge sent to the provider for ``code_verifier``."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_encryption_key() -> str:
    """Return 256 random bits, base64 encoded, for ``TOKEN_ENCRYPTION_KEY``."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


__all__ = [
    "CODE_CHALLENGE_METHOD",
    "build_code_challenge",
    "generate_code_verifier",
    "generate_encryption_key",
    "generate_secure_state",
]
