from __future__ import annotations

from typing import Any


class BridgeError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(BridgeError):
    """Server-side secrets or app credentials are missing."""

    status_code = 500


class ValidationError(BridgeError):
    status_code = 400


class AuthenticationError(BridgeError):
    status_code = 401


class AuthorizationError(BridgeError):
    status_code = 403


class NotFoundError(BridgeError):
    status_code = 404


class UpstreamError(BridgeError):
    """A Shopify API call failed; ``payload`` keeps the upstream body for diagnostics."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.payload = payload


class IdempotentNoop(Exception):
    """Raised when a write would duplicate an already-processed event."""

    def __init__(self, message: str = "Already processed", *, existing_id: str | None = None) -> None:
        super().__init__(message)
        self.existing_id = existing_id
