from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwk, jwt
from jose.exceptions import JWSError, JWTError

from shopbridge.cache import TTLCache
from shopbridge.config import settings
from shopbridge.errors import AuthenticationError, UpstreamError

logger = logging.getLogger("shopbridge.auth")
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str


class IdTokenVerifier:
    """Verifies the auth provider's RS256 ID tokens against its published JWKS."""

    def __init__(
        self,
        *,
        jwks_url: str,
        audience: str | None,
        issuer: str | None,
        cache: TTLCache[Dict[str, Any]],
    ) -> None:
        self.jwks_url = jwks_url
        self.audience = audience
        self.issuer = issuer
        self._cache = cache

    def _fetch_jwks(self) -> Dict[str, Any]:
        cached = self._cache.get(self.jwks_url)
        if cached:
            return cached
        try:
            resp = httpx.get(self.jwks_url, timeout=10)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("JWKS fetch failed", extra={"jwks_url": self.jwks_url})
            raise UpstreamError("Unable to fetch auth provider keys", status_code=503) from exc
        self._cache.set(self.jwks_url, data)
        return data

    def _signing_key(self, token: str) -> Dict[str, Any]:
        try:
            headers = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthenticationError("Invalid or expired token") from exc
        kid = headers.get("kid")
        if not kid:
            raise AuthenticationError("Invalid or expired token")
        for key in self._fetch_jwks().get("keys", []):
            if key.get("kid") == kid:
                return key
        # keys rotate; refetch once
        self._cache.invalidate(self.jwks_url)
        for key in self._fetch_jwks().get("keys", []):
            if key.get("kid") == kid:
                return key
        logger.warning("Signing key not found", extra={"kid": kid})
        raise AuthenticationError("Invalid or expired token")

    def verify(self, token: str) -> Dict[str, Any]:
        public_key = self._signing_key(token)
        options = {"verify_aud": self.audience is not None, "verify_iss": self.issuer is not None}
        try:
            key = jwk.construct(public_key)
            claims = jwt.decode(
                token,
                key=key.to_pem().decode(),
                algorithms=[public_key.get("alg", "RS256")],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except (JWTError, JWSError, ValueError) as exc:
            logger.warning("Token verification failed", exc_info=exc)
            raise AuthenticationError("Invalid or expired token") from exc
        return claims


_verifier = IdTokenVerifier(
    jwks_url=settings.AUTH_JWKS_URL,
    audience=settings.AUTH_AUDIENCE,
    issuer=settings.AUTH_ISSUER,
    cache=TTLCache(ttl_seconds=settings.AUTH_JWKS_CACHE_TTL_SECONDS),
)


def get_token_verifier() -> IdTokenVerifier:
    return _verifier


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: IdTokenVerifier = Depends(get_token_verifier),
) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Unauthorized")
    claims = verifier.verify(credentials.credentials)
    user_id = claims.get("user_id") or claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token claims")
    return AuthContext(user_id=str(user_id))
