from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def encode_state(user_id: str, secret: str) -> str:
    """Build the OAuth ``state`` carrying ``user_id`` through the Shopify redirect."""
    if not user_id:
        raise ValueError("user_id is required to build OAuth state")
    if ":" in user_id:
        raise ValueError("user_id must not contain ':'")
    nonce = secrets.token_hex(16)
    payload = f"{user_id}:{nonce}"
    raw = f"{payload}:{_sign(payload, secret)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_state(state: str, secret: str) -> str | None:
    if not state or not secret:
        return None
    padded = state + "=" * (-len(state) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None

    parts = decoded.split(":")
    if len(parts) != 3:
        return None
    user_id, nonce, signature = parts
    if not user_id or not nonce:
        return None
    expected = _sign(f"{user_id}:{nonce}", secret)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        return None
    return user_id
