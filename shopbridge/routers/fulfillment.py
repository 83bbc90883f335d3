from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopbridge.apps import AppRegistry, get_registry
from shopbridge.auth import AuthContext, get_current_user
from shopbridge.crypto import MalformedCiphertext, TokenDecryptionError
from shopbridge.db import get_session
from shopbridge.deps import get_shopify_api
from shopbridge.errors import AuthorizationError, NotFoundError, ValidationError
from shopbridge.models import Shipment
from shopbridge.repositories import ConnectionsRepository, ShipmentsRepository
from shopbridge.schemas import (
    ConnectionStatusResponse,
    DisconnectResponse,
    FulfillRequest,
    FulfillResponse,
)
from shopbridge.shopify_api import ShopifyApiClient, ShopifyApiError

router = APIRouter(prefix="/api/integrations/shopify", tags=["shopify-fulfillment"])
logger = logging.getLogger(__name__)

_CARRIER_TRACKING_COMPANY = {
    "Blue Dart": "Bluedart",
    "DTDC": "DTDC",
}
_CARRIER_TRACKING_URL = {
    "Blue Dart": "https://www.bluedart.com/tracking/{number}",
    "DTDC": "https://www.dtdc.in/tracking/shipment-tracking.asp?strCnno={number}",
}
NO_OPEN_FULFILLMENT_ORDER = "No open fulfillment order found; it may already be fulfilled in Shopify"


def tracking_company(courier: str) -> str:
    return _CARRIER_TRACKING_COMPANY.get(courier, courier)


def tracking_url(courier: str, tracking_number: str) -> str:
    template = _CARRIER_TRACKING_URL.get(courier)
    return template.format(number=tracking_number) if template else ""


def _record_sync_failure(shipments: ShipmentsRepository, shipment: Shipment, message: str) -> None:
    shipment.shopify_fulfillment_status = "failed"
    shipment.shopify_fulfillment_error = message
    shipments.save(shipment)


@router.post("/fulfill", response_model=FulfillResponse)
async def sync_shopify_fulfillment(
    payload: FulfillRequest,
    auth: AuthContext = Depends(get_current_user),
    registry: AppRegistry = Depends(get_registry),
    client: ShopifyApiClient = Depends(get_shopify_api),
    session: Session = Depends(get_session),
):
    if not payload.shipmentId:
        raise ValidationError("Missing shipmentId")

    shipments = ShipmentsRepository(session)
    shipment = shipments.get(payload.shipmentId)
    if shipment is None:
        raise NotFoundError("Shipment not found")
    if shipment.client_id != auth.user_id:
        raise AuthorizationError("Forbidden")
    if not shipment.shopify_order_id:
        raise ValidationError("Not a Shopify order")
    if not shipment.courier_tracking_id:
        raise ValidationError("No AWB/tracking number assigned")

    connection = ConnectionsRepository(session).get_for_tenant(shipment.client_id)
    if connection is None or not connection.is_connected or not connection.access_token:
        raise ValidationError("Shopify not connected")

    app = registry.for_connection(connection.app_id)
    try:
        access_token = app.cipher().decrypt(connection.access_token)
    except (MalformedCiphertext, TokenDecryptionError) as exc:
        logger.error(
            "Stored Shopify token failed to decrypt",
            extra={"tenant_id": connection.tenant_id, "app_id": app.app_id},
        )
        raise ValidationError("Stored Shopify credentials are invalid; reconnect the store") from exc

    shop_domain = connection.shop_domain
    tracking_number = shipment.courier_tracking_id
    try:
        fulfillment_order_id = await client.get_open_fulfillment_order_id(
            shop_domain=shop_domain,
            access_token=access_token,
            order_id=shipment.shopify_order_id,
        )
        if fulfillment_order_id is None:
            _record_sync_failure(shipments, shipment, NO_OPEN_FULFILLMENT_ORDER)
            raise ValidationError(NO_OPEN_FULFILLMENT_ORDER)

        fulfillment_id = await client.create_fulfillment(
            shop_domain=shop_domain,
            access_token=access_token,
            fulfillment_order_id=fulfillment_order_id,
            tracking_number=tracking_number,
            tracking_company=tracking_company(shipment.courier),
            tracking_url=tracking_url(shipment.courier, tracking_number),
        )
    except ShopifyApiError as exc:
        logger.error(
            "Shopify fulfillment sync failed",
            extra={"shipment_id": shipment.id, "shop_domain": shop_domain, "error": str(exc)},
        )
        _record_sync_failure(shipments, shipment, str(exc))
        raise

    shipment.shopify_fulfillment_id = fulfillment_id
    shipment.shopify_fulfillment_status = "fulfilled"
    shipment.shopify_fulfillment_error = None
    shipment.shopify_fulfillment_synced_at = datetime.now(timezone.utc)
    shipments.save(shipment)

    logger.info(
        "Shopify fulfillment created",
        extra={"shipment_id": shipment.id, "fulfillment_id": fulfillment_id},
    )
    return FulfillResponse(success=True, fulfillmentId=fulfillment_id)


@router.get("/status", response_model=ConnectionStatusResponse)
def shopify_connection_status(
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    connection = ConnectionsRepository(session).get_for_tenant(auth.user_id)
    if connection is None:
        raise NotFoundError("Shopify not connected")
    return ConnectionStatusResponse(
        shopDomain=connection.shop_domain,
        appId=connection.app_id,
        isConnected=connection.is_connected,
        scopes=[scope.strip() for scope in connection.scopes.split(",") if scope.strip()],
        webhookStatus=connection.webhook_status,
        webhookError=connection.webhook_error,
        updatedAt=connection.updated_at,
        uninstalledAt=connection.uninstalled_at,
    )


@router.post("/disconnect", response_model=DisconnectResponse)
def shopify_disconnect(
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    connections = ConnectionsRepository(session)
    connection = connections.get_for_tenant(auth.user_id)
    if connection is None:
        raise NotFoundError("Shopify not connected")
    connections.mark_disconnected(connection)
    logger.info("Shopify store disconnected", extra={"tenant_id": auth.user_id, "shop_domain": connection.shop_domain})
    return DisconnectResponse(success=True, shopDomain=connection.shop_domain)
