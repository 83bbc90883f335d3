from __future__ import annotations

import pytest

from shopbridge.crypto import (
    MalformedCiphertext,
    TokenCipher,
    TokenDecryptionError,
    decrypt_token,
    encrypt_token,
)


def test_encrypted_token_has_hex_nonce_and_ciphertext():
    encrypted = encrypt_token("shpat_abc123", "app_secret")

    nonce_hex, body_hex = encrypted.split(":")
    assert len(bytes.fromhex(nonce_hex)) == 12
    assert bytes.fromhex(body_hex)
    assert "shpat_abc123" not in encrypted


def test_decrypt_returns_original_token():
    encrypted = encrypt_token("shpat_abc123", "app_secret")

    assert decrypt_token(encrypted, "app_secret") == "shpat_abc123"


def test_encrypt_uses_fresh_nonce_each_time():
    assert encrypt_token("shpat_abc123", "app_secret") != encrypt_token("shpat_abc123", "app_secret")


def test_decrypt_with_other_app_secret_is_rejected():
    encrypted = encrypt_token("shpat_abc123", "app1_secret")

    with pytest.raises(TokenDecryptionError):
        decrypt_token(encrypted, "app2_secret")


def test_decrypt_rejects_tampered_ciphertext():
    nonce_hex, body_hex = encrypt_token("shpat_abc123", "app_secret").split(":")
    flipped = f"{int(body_hex[0], 16) ^ 1:x}{body_hex[1:]}"

    with pytest.raises(TokenDecryptionError):
        decrypt_token(f"{nonce_hex}:{flipped}", "app_secret")


@pytest.mark.parametrize(
    "ciphertext",
    ["", "no-separator", "abc:def:012", ":00ff", "zz" * 12 + ":00ff", "00ff:00ff"],
)
def test_decrypt_rejects_malformed_input(ciphertext):
    with pytest.raises(MalformedCiphertext):
        decrypt_token(ciphertext, "app_secret")


def test_token_cipher_requires_secret():
    with pytest.raises(ValueError):
        TokenCipher("")


def test_token_cipher_binds_secret():
    cipher = TokenCipher("app_secret")

    assert cipher.decrypt(cipher.encrypt("shpat_xyz")) == "shpat_xyz"
