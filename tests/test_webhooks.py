from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from shopbridge.crypto import encrypt_token
from shopbridge.models import Shipment, ShopifyConnection
from shopbridge.security import webhook_hmac

SHOP = "acme.myshopify.com"
WEBHOOK_URL = "/api/integrations/shopify/webhook"

ORDER = {
    "id": 820982911946154508,
    "order_number": 1001,
    "total_price": "799.00",
    "financial_status": "pending",
    "payment_gateway_names": ["Cash on Delivery (COD)"],
    "shipping_address": {
        "first_name": "Asha",
        "last_name": "Rao",
        "address1": "4 Lake View",
        "city": "Pune",
        "province": "Maharashtra",
        "zip": "411001",
        "phone": "9811111111",
    },
    "line_items": [{"id": 1, "title": "Mug", "quantity": 1, "price": "799.00"}],
}


def _post(api_client, body: bytes, *, topic: str | None = "orders/create", secret: str = "app1_test_secret", shop: str = SHOP):
    headers = {
        "X-Shopify-Hmac-Sha256": webhook_hmac(body, secret=secret),
        "X-Shopify-Shop-Domain": shop,
        "Content-Type": "application/json",
    }
    if topic:
        headers["X-Shopify-Topic"] = topic
    return api_client.post(WEBHOOK_URL, content=body, headers=headers)


@pytest.fixture()
def connection(db_session, tenant):
    record = ShopifyConnection(
        tenant_id=tenant.id,
        shop_domain=SHOP,
        access_token=encrypt_token("shpat_live_token", "app1_test_secret"),
        is_connected=True,
        scopes="read_orders",
        app_id="app1",
    )
    db_session.add(record)
    db_session.commit()
    return record


def _shipments(db_session) -> list[Shipment]:
    db_session.expire_all()
    return list(db_session.scalars(select(Shipment)).all())


def test_order_webhook_creates_pending_shipment(api_client, db_session, connection):
    response = _post(api_client, json.dumps(ORDER).encode("utf-8"))

    assert response.status_code == 200
    assert response.json() == {"message": "Webhook processed successfully"}
    shipments = _shipments(db_session)
    assert len(shipments) == 1
    shipment = shipments[0]
    assert shipment.client_id == "tenant_1"
    assert shipment.shopify_order_id == "820982911946154508"
    assert shipment.courier == "Optimization Pending"
    assert shipment.payment_mode == "cod"
    assert shipment.shop_domain == SHOP
    assert shipment.origin_city == "Mumbai"


def test_duplicate_order_webhook_is_acknowledged_once(api_client, db_session, connection):
    body = json.dumps(ORDER).encode("utf-8")

    first = _post(api_client, body)
    second = _post(api_client, body)

    assert first.json() == {"message": "Webhook processed successfully"}
    assert second.status_code == 200
    assert second.json() == {"message": "Order already processed"}
    assert len(_shipments(db_session)) == 1


def test_missing_topic_header_is_treated_as_order_created(api_client, db_session, connection):
    response = _post(api_client, json.dumps(ORDER).encode("utf-8"), topic=None)

    assert response.json() == {"message": "Webhook processed successfully"}


def test_order_webhook_for_unknown_shop_is_acknowledged(api_client, db_session, connection):
    response = _post(api_client, json.dumps(ORDER).encode("utf-8"), shop="other.myshopify.com")

    assert response.status_code == 200
    assert response.json() == {"message": "Shop not found"}
    assert _shipments(db_session) == []


def test_order_webhook_for_disconnected_shop_is_ignored(api_client, db_session, connection):
    connection.is_connected = False
    db_session.commit()

    response = _post(api_client, json.dumps(ORDER).encode("utf-8"))

    assert response.json() == {"message": "Shop not found"}


def test_webhook_with_bad_hmac_is_unauthorized(api_client, db_session, connection):
    body = json.dumps(ORDER).encode("utf-8")

    response = _post(api_client, body, secret="app2_test_secret")

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid HMAC signature"}
    assert _shipments(db_session) == []


def test_webhook_without_headers_is_rejected(api_client, db_session):
    response = api_client.post(WEBHOOK_URL, content=b"{}")

    assert response.status_code == 400
    assert response.json() == {"error": "Missing headers or configuration"}


def test_app_uninstalled_marks_connection_disconnected(api_client, db_session, connection):
    response = _post(api_client, json.dumps({"domain": SHOP}).encode("utf-8"), topic="app/uninstalled")

    assert response.status_code == 200
    assert response.json() == {"message": "App uninstall processed"}
    db_session.expire_all()
    stored = db_session.get(ShopifyConnection, connection.id)
    assert stored.is_connected is False
    assert stored.uninstalled_at is not None


def test_other_topics_are_ignored(api_client, db_session, connection):
    response = _post(api_client, b"{}", topic="products/update")

    assert response.json() == {"message": "Topic ignored"}


def test_malformed_order_payload_returns_server_error(api_client, db_session, connection):
    response = _post(api_client, b"not json")

    assert response.status_code == 500
    assert "error" in response.json()
    assert _shipments(db_session) == []
