from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopbridge.apps import ShopifyAppConfig
from shopbridge.config import settings
from shopbridge.db import get_session
from shopbridge.deps import get_app
from shopbridge.ledger import PendingInstallLedger
from shopbridge.schemas import AppDiagnostics, DiagnosticsResponse

router = APIRouter(prefix="/api/integrations", tags=["shopify-diagnostics"])


def _key_prefix(client_id: str | None) -> str:
    if not client_id:
        return "NOT SET"
    return f"{client_id[:8]}..."


@router.get("/{slug}/debug", response_model=DiagnosticsResponse)
def shopify_diagnostics(
    app: ShopifyAppConfig = Depends(get_app),
    session: Session = Depends(get_session),
):
    pending_shops = [
        record.shop_domain
        for record in PendingInstallLedger(session).list_unclaimed()
        if record.app_id in (None, app.app_id)
    ]
    base_url = settings.app_base_url
    return DiagnosticsResponse(
        timestamp=datetime.now(timezone.utc),
        appUrl=base_url,
        fulfillmentEndpoint=f"{base_url}/api/integrations/shopify/fulfill",
        adminApiVersion=settings.SHOPIFY_ADMIN_API_VERSION,
        app=AppDiagnostics(
            appId=app.app_id,
            slug=app.slug,
            hasApiKey=bool(app.client_id),
            apiKeyPrefix=_key_prefix(app.client_id),
            hasApiSecret=bool(app.client_secret),
            callbackUrl=f"{base_url}{app.callback_path}",
            webhookUrl=f"{base_url}{app.webhook_path}",
            scopes=app.scopes.split(","),
            customDistribution=app.supports_custom_distribution,
            pendingShops=pending_shops,
        ),
        carriers={
            "bluedart": settings.bluedart_configured,
            "dtdc": settings.dtdc_configured,
        },
    )
