from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from shopbridge.apps import ShopifyAppConfig
from shopbridge.db import get_session
from shopbridge.deps import get_app
from shopbridge.errors import AuthenticationError, IdempotentNoop, ValidationError
from shopbridge.orders import build_shipment
from shopbridge.repositories import ConnectionsRepository, ShipmentsRepository
from shopbridge.schemas import WebhookAck
from shopbridge.security import normalize_shop_domain, verify_webhook_hmac

router = APIRouter(prefix="/api/integrations", tags=["shopify-webhooks"])
logger = logging.getLogger(__name__)

TOPIC_ORDERS_CREATE = "orders/create"
TOPIC_APP_UNINSTALLED = "app/uninstalled"


def _handle_uninstall(session: Session, shop_domain: str) -> WebhookAck:
    count = ConnectionsRepository(session).mark_shop_uninstalled(shop_domain)
    logger.info("Shopify app uninstalled", extra={"shop_domain": shop_domain, "connections": count})
    return WebhookAck(message="App uninstall processed")


def _handle_order_created(session: Session, shop_domain: str, body: bytes) -> WebhookAck:
    connection = ConnectionsRepository(session).find_connected_by_shop(shop_domain)
    if connection is None:
        logger.warning("Received webhook for unknown shop", extra={"shop_domain": shop_domain})
        return WebhookAck(message="Shop not found")

    order = json.loads(body)
    if not isinstance(order, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    tenant = connection.tenant
    shipment = build_shipment(order=order, tenant=tenant, shop_domain=shop_domain)
    try:
        shipment = ShipmentsRepository(session).insert_if_absent(shipment)
    except IdempotentNoop as noop:
        logger.info(
            "Duplicate Shopify order webhook",
            extra={
                "shop_domain": shop_domain,
                "tenant_id": tenant.id,
                "shopify_order_id": shipment.shopify_order_id,
                "shipment_id": noop.existing_id,
            },
        )
        return WebhookAck(message="Order already processed")

    logger.info(
        "Shipment created from Shopify order",
        extra={
            "shop_domain": shop_domain,
            "tenant_id": tenant.id,
            "shopify_order_id": shipment.shopify_order_id,
            "shipment_id": shipment.id,
        },
    )
    return WebhookAck(message="Webhook processed successfully")


@router.post("/{slug}/webhook", response_model=WebhookAck)
async def shopify_order_webhook(
    request: Request,
    app: ShopifyAppConfig = Depends(get_app),
    session: Session = Depends(get_session),
):
    body = await request.body()
    supplied_hmac = request.headers.get("x-shopify-hmac-sha256")
    topic = (request.headers.get("x-shopify-topic") or TOPIC_ORDERS_CREATE).strip().lower()
    shop_header = request.headers.get("x-shopify-shop-domain")

    if not supplied_hmac or not shop_header or not app.is_configured:
        raise ValidationError("Missing headers or configuration")
    if not verify_webhook_hmac(body=body, supplied_hmac=supplied_hmac, secret=app.client_secret):
        raise AuthenticationError("Invalid HMAC signature")

    # Shopify redelivers on non-2xx, so failures past this point answer 500.
    try:
        shop_domain = normalize_shop_domain(shop_header)
        if topic == TOPIC_APP_UNINSTALLED:
            return _handle_uninstall(session, shop_domain)
        if topic != TOPIC_ORDERS_CREATE:
            return WebhookAck(message="Topic ignored")
        return _handle_order_created(session, shop_domain, body)
    except Exception as exc:
        session.rollback()
        logger.exception("Shopify webhook processing failed", extra={"app_id": app.app_id, "topic": topic})
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc) or exc.__class__.__name__},
        )
