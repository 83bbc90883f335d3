from __future__ import annotations

import base64
import hashlib
import hmac
import re
from collections.abc import Sequence

from shopbridge.errors import ValidationError

SHOP_DOMAIN_SUFFIX = ".myshopify.com"
_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*(\.[a-z0-9][a-z0-9-]*)+$")


def normalize_shop_domain(shop: str) -> str:
    normalized = shop.strip().lower()
    for prefix in ("https://", "http://"):
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
    normalized = normalized.split("/", 1)[0]
    if normalized and "." not in normalized:
        normalized = f"{normalized}{SHOP_DOMAIN_SUFFIX}"
    if not _SHOP_DOMAIN_RE.fullmatch(normalized):
        raise ValidationError("shop must be a valid Shopify store domain")
    return normalized


def oauth_hmac_message(query_items: Sequence[tuple[str, str]]) -> str:
    filtered = [(key, value) for key, value in query_items if key not in {"hmac", "signature"}]
    filtered.sort(key=lambda item: item[0])
    return "&".join(f"{key}={value}" for key, value in filtered)


def verify_oauth_hmac(query_items: Sequence[tuple[str, str]], *, secret: str) -> bool:
    supplied_hmac = None
    for key, value in query_items:
        if key == "hmac":
            supplied_hmac = value
    if not supplied_hmac or not secret:
        return False

    digest = hmac.new(
        secret.encode("utf-8"),
        oauth_hmac_message(query_items).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(digest.encode("utf-8"), supplied_hmac.encode("utf-8"))


def webhook_hmac(body: bytes, *, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_hmac(*, body: bytes, supplied_hmac: str | None, secret: str | None) -> bool:
    if not supplied_hmac or not secret:
        return False
    return hmac.compare_digest(
        webhook_hmac(body, secret=secret).encode("utf-8"),
        supplied_hmac.strip().encode("utf-8"),
    )
