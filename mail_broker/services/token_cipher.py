"""Symmetric encryption utilities for protecting stored tokens.

Each call derives a fresh AES-256 key from the master secret with scrypt and a
random salt, then seals the plaintext with AES-GCM. The serialized blob is
``base64(salt || iv || tag || ciphertext)``.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SALT_LENGTH = 32
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1

_HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + AUTH_TAG_LENGTH


class DecryptionError(ValueError):
    """Raised when a ciphertext is malformed or fails its integrity check."""


def _derive_key(master_key: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(master_key.encode("utf-8"))


def encrypt(plaintext: str, master_key: str) -> str:
    """Encrypt ``plaintext`` and return the base64-encoded blob."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(master_key, salt)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag; the stored layout puts it before the ciphertext.
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt(blob: str, master_key: str) -> str:
    """Decrypt a blob produced by :func:`encrypt`."""
    try:
        combined = base64.b64decode(blob.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise DecryptionError("Ciphertext is not valid base64.") from exc

    if len(combined) < _HEADER_LENGTH:
        raise DecryptionError("Ciphertext is truncated.")

    salt = combined[:SALT_LENGTH]
    iv = combined[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = combined[SALT_LENGTH + IV_LENGTH : _HEADER_LENGTH]
    ciphertext = combined[_HEADER_LENGTH:]

    key = _derive_key(master_key, salt)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise DecryptionError(
            "Failed to decrypt token; integrity check did not verify."
        ) from exc
    return plaintext.decode("utf-8")


class TokenCipherService:
    """Encrypt and decrypt sensitive strings under one master secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        self._secret = secret

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the ciphertext."""
        return encrypt(plaintext, self._secret)

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext string and return the plaintext."""
        return decrypt(ciphertext, self._secret)


__all__ = ["DecryptionError", "TokenCipherService", "decrypt", "encrypt"]
