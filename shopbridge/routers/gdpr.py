"""Shopify mandatory compliance webhooks.

Once the HMAC checks out these endpoints always answer ``{"received": true}``,
even when processing fails, so Shopify does not keep redelivering customer data.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from shopbridge.apps import ShopifyAppConfig
from shopbridge.db import get_session
from shopbridge.deps import get_app
from shopbridge.errors import AuthenticationError, ValidationError
from shopbridge.ledger import PendingInstallLedger
from shopbridge.models import GdprRequest, Shipment
from shopbridge.repositories import (
    ConnectionsRepository,
    GdprRequestsRepository,
    ShipmentsRepository,
)
from shopbridge.schemas import (
    CustomersDataRequestPayload,
    CustomersRedactPayload,
    GdprAck,
    ShopRedactPayload,
)
from shopbridge.security import normalize_shop_domain, verify_webhook_hmac

router = APIRouter(prefix="/api/integrations", tags=["shopify-gdpr"])
logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


async def _verified_body(request: Request, app: ShopifyAppConfig) -> dict[str, Any]:
    body = await request.body()
    supplied_hmac = request.headers.get("x-shopify-hmac-sha256")
    if not verify_webhook_hmac(body=body, supplied_hmac=supplied_hmac, secret=app.client_secret):
        raise AuthenticationError("Invalid signature")
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("GDPR webhook body is not valid JSON", extra={"app_id": app.app_id})
        return {}
    return payload if isinstance(payload, dict) else {}


def _shop(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return normalize_shop_domain(value)
    except ValidationError:
        return value.strip().lower()


def _snapshot(shipment: Shipment) -> dict[str, Any]:
    return {
        "shipmentId": shipment.id,
        "destination": {
            "name": shipment.destination_name,
            "phone": shipment.destination_phone,
            "address": shipment.destination_address,
            "city": shipment.destination_city,
            "state": shipment.destination_state,
            "pincode": shipment.destination_pincode,
        },
        "origin": {
            "name": shipment.origin_name,
            "address": shipment.origin_address,
            "city": shipment.origin_city,
            "pincode": shipment.origin_pincode,
        },
        "shopifyOrderId": shipment.shopify_order_id,
        "shopifyOrderNumber": shipment.shopify_order_number,
        "status": shipment.status,
        "createdAt": shipment.created_at.isoformat() if shipment.created_at else None,
    }


def redact_customer(shipment: Shipment, *, redacted_at: datetime, note: str) -> None:
    shipment.destination_name = REDACTED
    shipment.destination_phone = REDACTED
    shipment.destination_address = REDACTED
    shipment.notes = note
    shipment.gdpr_redacted_at = redacted_at


def redact_shop(shipment: Shipment, *, redacted_at: datetime) -> None:
    redact_customer(shipment, redacted_at=redacted_at, note="[Shop data redacted per GDPR request]")
    shipment.origin_name = REDACTED
    shipment.origin_phone = REDACTED
    shipment.origin_address = REDACTED
    shipment.shopify_order_id = None
    shipment.shopify_order_number = None


@router.post("/{slug}/gdpr/customers-data-request", response_model=GdprAck)
async def customers_data_request(
    request: Request,
    app: ShopifyAppConfig = Depends(get_app),
    session: Session = Depends(get_session),
):
    raw = await _verified_body(request, app)
    try:
        payload = CustomersDataRequestPayload.model_validate(raw)
        shop_domain = _shop(payload.shop_domain)
        customer = payload.customer
        logger.info("customers/data_request received", extra={"app_id": app.app_id, "shop_domain": shop_domain})

        shipments: list[Shipment] = []
        if customer.phone or payload.orders_requested:
            shipments = ShipmentsRepository(session).find_for_customer(
                shop_domain=shop_domain,
                phone=customer.phone,
                order_ids=payload.orders_requested,
            )
        now = datetime.now(timezone.utc)
        GdprRequestsRepository(session).record(
            GdprRequest(
                type="customers/data_request",
                app_id=app.app_id,
                shop_domain=shop_domain,
                customer_email=customer.email,
                customer_phone=customer.phone,
                orders_requested=payload.orders_requested,
                shipment_count=len(shipments),
                customer_data=[_snapshot(shipment) for shipment in shipments],
                status="processed",
                requested_at=now,
                processed_at=now,
            )
        )
        logger.info(
            "Stored GDPR data request",
            extra={"app_id": app.app_id, "shop_domain": shop_domain, "shipments": len(shipments)},
        )
    except Exception:
        session.rollback()
        logger.exception("customers/data_request processing failed", extra={"app_id": app.app_id})
    return GdprAck()


@router.post("/{slug}/gdpr/customers-redact", response_model=GdprAck)
async def customers_redact(
    request: Request,
    app: ShopifyAppConfig = Depends(get_app),
    session: Session = Depends(get_session),
):
    raw = await _verified_body(request, app)
    try:
        payload = CustomersRedactPayload.model_validate(raw)
        shop_domain = _shop(payload.shop_domain)
        customer = payload.customer
        shipments_repo = ShipmentsRepository(session)

        shipments: list[Shipment] = []
        if customer.phone or payload.orders_to_redact:
            shipments = shipments_repo.find_for_customer(
                shop_domain=shop_domain,
                phone=customer.phone,
                order_ids=payload.orders_to_redact,
            )
        now = datetime.now(timezone.utc)
        for shipment in shipments:
            redact_customer(shipment, redacted_at=now, note="[Customer data redacted per GDPR request]")
            session.add(shipment)
        session.commit()

        GdprRequestsRepository(session).record(
            GdprRequest(
                type="customers/redact",
                app_id=app.app_id,
                shop_domain=shop_domain,
                orders_requested=payload.orders_to_redact,
                shipment_count=len(shipments),
                customer_data=[{"shipmentId": shipment.id} for shipment in shipments],
                status="redacted",
                requested_at=now,
                processed_at=now,
            )
        )
        logger.info(
            "Redacted customer data",
            extra={"app_id": app.app_id, "shop_domain": shop_domain, "shipments": len(shipments)},
        )
    except Exception:
        session.rollback()
        logger.exception("customers/redact processing failed", extra={"app_id": app.app_id})
    return GdprAck()


@router.post("/{slug}/gdpr/shop-redact", response_model=GdprAck)
async def shop_redact(
    request: Request,
    app: ShopifyAppConfig = Depends(get_app),
    session: Session = Depends(get_session),
):
    raw = await _verified_body(request, app)
    try:
        payload = ShopRedactPayload.model_validate(raw)
        shop_domain = _shop(payload.shop_domain)
        if not shop_domain:
            logger.warning("shop/redact without shop_domain", extra={"app_id": app.app_id})
            return GdprAck()

        connections = ConnectionsRepository(session)
        shop_connections = connections.list_for_shop(shop_domain)
        tenant_ids = [connection.tenant_id for connection in shop_connections]

        now = datetime.now(timezone.utc)
        shipments = ShipmentsRepository(session).list_for_shop(shop_domain=shop_domain, client_ids=tenant_ids)
        for shipment in shipments:
            redact_shop(shipment, redacted_at=now)
            session.add(shipment)
        session.commit()

        for connection in shop_connections:
            connections.delete(connection)
        PendingInstallLedger(session).delete(shop_domain)

        GdprRequestsRepository(session).record(
            GdprRequest(
                type="shop/redact",
                app_id=app.app_id,
                shop_domain=shop_domain,
                shipment_count=len(shipments),
                customer_data=[{"shipmentId": shipment.id} for shipment in shipments],
                status="redacted",
                requested_at=now,
                processed_at=now,
            )
        )
        logger.info(
            "Redacted shop data",
            extra={"app_id": app.app_id, "shop_domain": shop_domain, "tenants": len(tenant_ids), "shipments": len(shipments)},
        )
    except Exception:
        session.rollback()
        logger.exception("shop/redact processing failed", extra={"app_id": app.app_id})
    return GdprAck()
