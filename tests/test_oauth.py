from __future__ import annotations

import hashlib
import hmac
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import select

import shopbridge.deps as deps_module
import shopbridge.main as main_module
from shopbridge.apps import AppRegistry, get_registry
from shopbridge.config import Settings
from shopbridge.crypto import decrypt_token, encrypt_token
from shopbridge.ledger import PendingInstallLedger
from shopbridge.models import PendingShopifyInstall, ShopifyConnection, Tenant
from shopbridge.shopify_api import ShopifyApiError
from shopbridge.signed_state import decode_state

SHOP = "acme.myshopify.com"
DASHBOARD = "https://example.ngrok.app/client-integrations"
SECRETS = {"shopify": "app1_test_secret", "shopify2": "app2_test_secret", "shopify3": "app3_test_secret"}


def _signed_callback_params(slug: str, **params: str) -> dict[str, str]:
    items = sorted(params.items())
    message = "&".join(f"{key}={value}" for key, value in items)
    digest = hmac.new(SECRETS[slug].encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return {**params, "hmac": digest}


def _query(location: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(location).query)


@pytest.fixture()
def shopify_calls(monkeypatch):
    calls: dict[str, list] = {"exchange": [], "webhooks": []}

    async def fake_exchange_code_for_access_token(*, app, shop_domain: str, code: str):
        calls["exchange"].append((app.app_id, shop_domain, code))
        return "shpat_live_token", "read_orders,write_fulfillments"

    async def fake_register_webhook(*, shop_domain: str, access_token: str, topic: str, callback_url: str):
        calls["webhooks"].append((shop_domain, access_token, topic, callback_url))
        return f"gid://shopify/WebhookSubscription/{len(calls['webhooks'])}"

    monkeypatch.setattr(deps_module.shopify_api, "exchange_code_for_access_token", fake_exchange_code_for_access_token)
    monkeypatch.setattr(deps_module.shopify_api, "register_webhook", fake_register_webhook)
    return calls


def _connection(db_session, tenant_id: str) -> ShopifyConnection | None:
    db_session.expire_all()
    return db_session.scalars(select(ShopifyConnection).where(ShopifyConnection.tenant_id == tenant_id)).first()


def test_install_redirects_to_shopify_authorize_with_signed_state(api_client, db_session, tenant):
    response = api_client.get(
        "/api/integrations/shopify2/install",
        params={"shop": "acme", "userId": tenant.id},
        follow_redirects=False,
    )

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(f"https://{SHOP}/admin/oauth/authorize?")
    query = _query(location)
    assert query["client_id"] == ["app2_test_key"]
    assert query["redirect_uri"] == ["https://example.ngrok.app/api/integrations/shopify2/callback"]
    assert decode_state(query["state"][0], "app2_test_secret") == tenant.id

    db_session.expire_all()
    assert db_session.get(Tenant, tenant.id).pending_shop_domain == SHOP


def test_install_and_callback_connect_store(api_client, db_session, tenant, shopify_calls):
    install = api_client.get(
        "/api/integrations/shopify2/install",
        params={"shop": SHOP, "userId": tenant.id},
        follow_redirects=False,
    )
    state = _query(install.headers["location"])["state"][0]
    # only the signed state can identify the tenant from here on
    db_session.expire_all()
    tenant.pending_shop_domain = None
    db_session.commit()

    response = api_client.get(
        "/api/integrations/shopify2/callback",
        params=_signed_callback_params("shopify2", shop=SHOP, code="oauth_code", state=state, timestamp="1710000000"),
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == f"{DASHBOARD}?shopifySuccess=true"
    assert shopify_calls["exchange"] == [("app2", SHOP, "oauth_code")]
    assert [call[2] for call in shopify_calls["webhooks"]] == ["ORDERS_CREATE", "APP_UNINSTALLED"]
    assert shopify_calls["webhooks"][0][3] == "https://example.ngrok.app/api/integrations/shopify2/webhook"

    connection = _connection(db_session, tenant.id)
    assert connection is not None
    assert connection.shop_domain == SHOP
    assert connection.app_id == "app2"
    assert connection.is_connected is True
    assert connection.webhook_status == "active"
    assert connection.access_token != "shpat_live_token"
    assert decrypt_token(connection.access_token, "app2_test_secret") == "shpat_live_token"
    assert db_session.get(Tenant, tenant.id).pending_shop_domain is None


def test_callback_with_invalid_hmac_is_rejected(api_client, db_session, tenant, shopify_calls):
    params = _signed_callback_params("shopify", shop=SHOP, code="oauth_code", state="x")
    params["code"] = "tampered"

    response = api_client.get("/api/integrations/shopify/callback", params=params, follow_redirects=False)

    assert response.headers["location"] == f"{DASHBOARD}?shopifyError=invalid_signature"
    assert shopify_calls["exchange"] == []
    assert _connection(db_session, tenant.id) is None


def test_callback_signed_with_other_app_secret_is_rejected(api_client, db_session, tenant, shopify_calls):
    params = _signed_callback_params("shopify2", shop=SHOP, code="oauth_code")

    response = api_client.get("/api/integrations/shopify/callback", params=params, follow_redirects=False)

    assert response.headers["location"] == f"{DASHBOARD}?shopifyError=invalid_signature"


def test_callback_missing_params(api_client, db_session):
    response = api_client.get(
        "/api/integrations/shopify/callback",
        params={"shop": SHOP, "code": "oauth_code"},
        follow_redirects=False,
    )

    assert response.headers["location"] == f"{DASHBOARD}?shopifyError=missing_params"


def test_callback_falls_back_to_pending_shop(api_client, db_session, tenant, shopify_calls):
    api_client.get(
        "/api/integrations/shopify2/install",
        params={"shop": SHOP, "userId": tenant.id},
        follow_redirects=False,
    )

    response = api_client.get(
        "/api/integrations/shopify2/callback",
        params=_signed_callback_params("shopify2", shop=SHOP, code="oauth_code"),
        follow_redirects=False,
    )

    assert response.headers["location"] == f"{DASHBOARD}?shopifySuccess=true"
    assert _connection(db_session, tenant.id).app_id == "app2"


def test_callback_without_identity_on_public_app_reports_no_user(api_client, db_session, shopify_calls):
    response = api_client.get(
        "/api/integrations/shopify2/callback",
        params=_signed_callback_params("shopify2", shop=SHOP, code="oauth_code"),
        follow_redirects=False,
    )

    assert response.headers["location"] == f"{DASHBOARD}?shopifyError=no_user"
    assert shopify_calls["exchange"] == []


def test_callback_token_exchange_failure(api_client, db_session, tenant, monkeypatch):
    async def failing_exchange(*, app, shop_domain: str, code: str):
        raise ShopifyApiError(message="invalid code")

    monkeypatch.setattr(deps_module.shopify_api, "exchange_code_for_access_token", failing_exchange)
    tenant.pending_shop_domain = SHOP
    db_session.commit()

    response = api_client.get(
        "/api/integrations/shopify/callback",
        params=_signed_callback_params("shopify", shop=SHOP, code="oauth_code"),
        follow_redirects=False,
    )

    assert response.headers["location"] == f"{DASHBOARD}?shopifyError=token_exchange_failed"
    assert _connection(db_session, tenant.id) is None


def test_webhook_registration_failure_keeps_connection(api_client, db_session, tenant, shopify_calls, monkeypatch):
    async def failing_register_webhook(*, shop_domain: str, access_token: str, topic: str, callback_url: str):
        raise ShopifyApiError(message="Webhook registration failed for ORDERS_CREATE: access denied")

    monkeypatch.setattr(deps_module.shopify_api, "register_webhook", failing_register_webhook)
    tenant.pending_shop_domain = SHOP
    db_session.commit()

    response = api_client.get(
        "/api/integrations/shopify/callback",
        params=_signed_callback_params("shopify", shop=SHOP, code="oauth_code"),
        follow_redirects=False,
    )

    assert response.headers["location"] == f"{DASHBOARD}?shopifySuccess=true"
    connection = _connection(db_session, tenant.id)
    assert connection.is_connected is True
    assert connection.webhook_status == "failed"
    assert "access denied" in connection.webhook_error


def test_custom_distribution_install_is_parked_then_claimed(api_client, db_session, tenant, shopify_calls):
    callback = api_client.get(
        "/api/integrations/shopify3/callback",
        params=_signed_callback_params("shopify3", shop=SHOP, code="oauth_code"),
        follow_redirects=False,
    )

    assert _query(callback.headers["location"]) == {"shopifyPending": ["true"], "pendingShop": [SHOP]}
    assert shopify_calls["webhooks"] == []
    db_session.expire_all()
    pending = PendingInstallLedger(db_session).get_unclaimed(SHOP)
    assert pending is not None
    assert pending.app_id == "app3"

    # the merchant signs up afterwards and starts an install through the primary app link
    install = api_client.get(
        "/api/integrations/shopify/install",
        params={"shop": SHOP, "userId": tenant.id},
        follow_redirects=False,
    )

    assert install.headers["location"] == f"{DASHBOARD}?shopifySuccess=true"
    connection = _connection(db_session, tenant.id)
    assert connection.app_id == "app3"
    assert decrypt_token(connection.access_token, "app3_test_secret") == "shpat_live_token"
    assert connection.webhook_status == "active"
    assert shopify_calls["webhooks"][0][1] == "shpat_live_token"
    assert shopify_calls["webhooks"][0][3] == "https://example.ngrok.app/api/integrations/shopify3/webhook"
    remaining = db_session.scalars(select(PendingShopifyInstall).where(PendingShopifyInstall.shop_domain == SHOP)).first()
    assert remaining is None


def test_install_requires_shop_and_user(api_client, db_session):
    missing_shop = api_client.get("/api/integrations/shopify/install", params={"userId": "tenant_1"})
    missing_user = api_client.get("/api/integrations/shopify/install", params={"shop": SHOP})

    assert missing_shop.status_code == 400
    assert missing_shop.json() == {"error": "Missing shop parameter"}
    assert missing_user.status_code == 400
    assert missing_user.json() == {"error": "Missing userId parameter"}


def test_install_for_unknown_user_is_not_found(api_client, db_session):
    response = api_client.get("/api/integrations/shopify/install", params={"shop": SHOP, "userId": "ghost"})

    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_install_rejects_invalid_shop(api_client, db_session, tenant):
    response = api_client.get(
        "/api/integrations/shopify/install",
        params={"shop": "not a shop", "userId": tenant.id},
    )

    assert response.status_code == 400


def test_unknown_integration_slug_is_not_found(api_client, db_session):
    response = api_client.get("/api/integrations/woocommerce/install", params={"shop": SHOP, "userId": "t"})

    assert response.status_code == 404


def _pending_record(db_session) -> PendingShopifyInstall | None:
    db_session.expire_all()
    return db_session.scalars(select(PendingShopifyInstall).where(PendingShopifyInstall.shop_domain == SHOP)).first()


def test_install_discards_undecryptable_pending_token_and_starts_oauth(
    api_client, db_session, tenant, shopify_calls
):
    PendingInstallLedger(db_session).put(SHOP, "aa" * 12 + ":bb", "read_orders", app_id="app1")

    first = api_client.get(
        "/api/integrations/shopify/install",
        params={"shop": SHOP, "userId": tenant.id},
        follow_redirects=False,
    )
    second = api_client.get(
        "/api/integrations/shopify/install",
        params={"shop": SHOP, "userId": tenant.id},
        follow_redirects=False,
    )

    for response in (first, second):
        assert response.status_code == 302
        assert response.headers["location"].startswith(f"https://{SHOP}/admin/oauth/authorize?")
    assert _pending_record(db_session) is None
    assert _connection(db_session, tenant.id) is None
    assert shopify_calls["webhooks"] == []


def test_install_discards_pending_token_of_unconfigured_app(api_client, db_session, tenant, shopify_calls):
    PendingInstallLedger(db_session).put(
        SHOP,
        encrypt_token("shpat_live_token", "app3_test_secret"),
        "read_orders",
        app_id="app3",
    )
    registry = AppRegistry.from_settings(Settings(SHOPIFY3_API_KEY=None, SHOPIFY3_API_SECRET=None))
    main_module.app.dependency_overrides[get_registry] = lambda: registry

    response = api_client.get(
        "/api/integrations/shopify/install",
        params={"shop": SHOP, "userId": tenant.id},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"].startswith(f"https://{SHOP}/admin/oauth/authorize?")
    assert _pending_record(db_session) is None
