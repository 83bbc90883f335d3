"""Encryption of Shopify access tokens at rest.

Tokens are stored as ``nonce_hex:ciphertext_hex``. The key is the SHA-256 digest
of the owning app's API secret, and the cipher is AES-256-GCM, so a token
encrypted under one app's secret cannot be read back with another's.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_BYTES = 12


class MalformedCiphertext(ValueError):
    pass


class TokenDecryptionError(ValueError):
    """The ciphertext failed authentication: wrong secret or tampered data."""


def derive_key(secret: str) -> bytes:
    if not secret:
        raise ValueError("An encryption secret is required")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_token(plaintext: str, secret: str) -> str:
    nonce = os.urandom(_NONCE_BYTES)
    ciphertext = AESGCM(derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return f"{nonce.hex()}:{ciphertext.hex()}"


def _split(ciphertext: str) -> tuple[bytes, bytes]:
    parts = ciphertext.split(":") if isinstance(ciphertext, str) else []
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedCiphertext("Encrypted token must have the form iv:ciphertext")
    try:
        nonce = bytes.fromhex(parts[0])
        body = bytes.fromhex(parts[1])
    except ValueError as exc:
        raise MalformedCiphertext("Encrypted token segments must be hex encoded") from exc
    if len(nonce) != _NONCE_BYTES:
        raise MalformedCiphertext(f"Encrypted token iv must be {_NONCE_BYTES} bytes")
    return nonce, body


def decrypt_token(ciphertext: str, secret: str) -> str:
    nonce, body = _split(ciphertext)
    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(nonce, body, None)
    except InvalidTag as exc:
        raise TokenDecryptionError("Encrypted token could not be authenticated") from exc
    return plaintext.decode("utf-8")


class TokenCipher:
    """Binds :func:`encrypt_token` / :func:`decrypt_token` to one app secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("TokenCipher requires a non-empty secret")
        self._secret = secret

    def encrypt(self, plaintext: str) -> str:
        return encrypt_token(plaintext, self._secret)

    def decrypt(self, ciphertext: str) -> str:
        return decrypt_token(ciphertext, self._secret)
