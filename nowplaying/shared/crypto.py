"""Encryption of provider tokens at rest.

Stored values look like ``enc:v1:<base64(nonce || ciphertext)>`` (AES-256-GCM,
12-byte random nonce). Values without the prefix are rows written before a
key was configured and are returned as they are.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

PREFIX = "enc:v1:"
NONCE_SIZE = 12


class TokenDecryptError(Exception):
    """A stored token cannot be decrypted with the configured key."""


def token_fingerprint(token: str) -> str:
    """Stable lookup value for a token; compare-and-swap matches on this."""
    return hashlib.sha256(token.encode()).hexdigest()


def _parse_key(key: str) -> bytes:
    raw = key.encode()
    if len(raw) == 32:
        return raw
    try:
        decoded = base64.b64decode(key + "=" * (-len(key) % 4), altchars=b"-_", validate=True)
    except binascii.Error:
        decoded = b""
    if len(decoded) != 32:
        raise ValueError("TOKEN_ENCRYPTION_KEY must be 32 bytes, raw or base64-encoded")
    return decoded


def generate_key() -> str:
    return base64.urlsafe_b64encode(os.urandom(32)).decode()


class TokenCipher:
    """Seal and open stored tokens.

    Built without a key it stores plaintext, so a deployment can turn
    encryption on later; existing rows keep reading.
    """

    def __init__(self, key: str | None = None):
        self._aead = AESGCM(_parse_key(key)) if key else None

    @property
    def enabled(self) -> bool:
        return self._aead is not None

    def encrypt(self, token: str) -> str:
        if self._aead is None or not token:
            return token
        nonce = os.urandom(NONCE_SIZE)
        sealed = nonce + self._aead.encrypt(nonce, token.encode(), None)
        return PREFIX + base64.b64encode(sealed).decode()

    def decrypt(self, stored: str) -> str:
        if not stored.startswith(PREFIX):
            return stored
        if self._aead is None:
            raise TokenDecryptError("Token is encrypted but TOKEN_ENCRYPTION_KEY is not set")
        try:
            sealed = base64.b64decode(stored[len(PREFIX):], validate=True)
        except binascii.Error as e:
            raise TokenDecryptError("Stored token is not valid base64") from e
        if len(sealed) <= NONCE_SIZE:
            raise TokenDecryptError("Stored token is truncated")
        try:
            plain = self._aead.decrypt(sealed[:NONCE_SIZE], sealed[NONCE_SIZE:], None)
        except InvalidTag:
            raise TokenDecryptError("Stored token does not open with this key") from None
        return plain.decode()
