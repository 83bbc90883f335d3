from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from shopbridge.config import settings
from shopbridge.db import init_db
from shopbridge.errors import BridgeError, UpstreamError
from shopbridge.routers import diagnostics, fulfillment, gdpr, oauth, webhooks

logger = logging.getLogger(__name__)

_UPSTREAM_DETAIL_LIMIT = 500


@asynccontextmanager
async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield


def create_app() -> FastAPI:
    logging.getLogger("shopbridge").setLevel(settings.LOG_LEVEL.upper())

    app = FastAPI(
        title="Courier Shopify Bridge",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(_request: Request, exc: BridgeError) -> ORJSONResponse:
        content: dict[str, str] = {"error": exc.message}
        if isinstance(exc, UpstreamError) and exc.payload is not None:
            logger.warning("Upstream error", extra={"status_code": exc.status_code, "payload": exc.payload})
            content["details"] = str(exc.payload)[:_UPSTREAM_DETAIL_LIMIT]
        return ORJSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    # fulfillment first: its fixed /shopify/... paths must win over /{slug}/... patterns
    app.include_router(fulfillment.router)
    app.include_router(oauth.router)
    app.include_router(webhooks.router)
    app.include_router(gdpr.router)
    app.include_router(diagnostics.router)
    return app


app = create_app()
