from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopbridge.apps import AppRegistry, ShopifyAppConfig, get_registry
from shopbridge.config import settings
from shopbridge.crypto import MalformedCiphertext, TokenDecryptionError
from shopbridge.db import get_session
from shopbridge.deps import get_app, get_shopify_api, get_webhook_registrar
from shopbridge.errors import ConfigurationError, NotFoundError, ValidationError
from shopbridge.ledger import PendingInstallLedger
from shopbridge.models import PendingShopifyInstall, Tenant
from shopbridge.registrar import WebhookRegistrar
from shopbridge.repositories import ConnectionsRepository, TenantsRepository
from shopbridge.security import normalize_shop_domain, verify_oauth_hmac
from shopbridge.shopify_api import ShopifyApiClient, ShopifyApiError
from shopbridge.signed_state import decode_state, encode_state

router = APIRouter(prefix="/api/integrations", tags=["shopify-oauth"])
logger = logging.getLogger(__name__)


def _dashboard_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.dashboard_url}?{urlencode(params)}", status_code=302)


def _error_redirect(reason: str) -> RedirectResponse:
    return _dashboard_redirect(shopifyError=reason)


def build_authorize_url(*, app: ShopifyAppConfig, shop_domain: str, state: str) -> str:
    client_id, _ = app.require_credentials()
    query = urlencode(
        {
            "client_id": client_id,
            "scope": app.scopes,
            "redirect_uri": f"{settings.app_base_url}{app.callback_path}",
            "state": state,
        }
    )
    return f"https://{shop_domain}/admin/oauth/authorize?{query}"


async def _claim_pending_install(
    *,
    pending: PendingShopifyInstall,
    tenant: Tenant,
    session: Session,
    registry: AppRegistry,
    registrar: WebhookRegistrar,
) -> RedirectResponse | None:
    """Hand a parked custom-distribution token to ``tenant``.

    Returns ``None`` when the parked token is unusable; the record is dropped so
    the caller can send the merchant through OAuth again.
    """
    shop_domain = pending.shop_domain
    ledger = PendingInstallLedger(session)
    try:
        owner_app = registry.for_connection(pending.app_id)
        access_token = owner_app.cipher().decrypt(pending.access_token)
    except (MalformedCiphertext, TokenDecryptionError, ConfigurationError, NotFoundError):
        logger.exception(
            "Discarding pending Shopify install with unusable token",
            extra={"shop_domain": shop_domain, "app_id": pending.app_id},
        )
        ledger.delete(shop_domain)
        return None

    claimed = ledger.try_claim(shop_domain, tenant.id)
    if claimed is None:
        return _error_redirect("pending_claim_failed")

    connections = ConnectionsRepository(session)
    # The ledger already holds the token encrypted under the owning app's secret.
    connection = connections.upsert(
        tenant=tenant,
        shop_domain=shop_domain,
        encrypted_token=claimed.access_token,
        scopes=claimed.scopes,
        app_id=owner_app.app_id,
    )
    result = await registrar.register(shop_domain, access_token, owner_app.webhook_path)
    connections.set_webhook_status(connection, success=result.success, error=result.error)
    ledger.delete_if_claimed(shop_domain)

    logger.info(
        "Pending Shopify install claimed",
        extra={"shop_domain": shop_domain, "tenant_id": tenant.id, "webhook_ok": result.success},
    )
    return _dashboard_redirect(shopifySuccess="true")


@router.get("/{slug}/install")
async def shopify_install(
    shop: str | None = None,
    userId: str | None = None,
    app: ShopifyAppConfig = Depends(get_app),
    registry: AppRegistry = Depends(get_registry),
    registrar: WebhookRegistrar = Depends(get_webhook_registrar),
    session: Session = Depends(get_session),
):
    if not shop:
        raise ValidationError("Missing shop parameter")
    if not userId:
        raise ValidationError("Missing userId parameter")
    _, client_secret = app.require_credentials()

    shop_domain = normalize_shop_domain(shop)
    tenants = TenantsRepository(session)
    tenant = tenants.get(userId)
    if tenant is None:
        raise NotFoundError("User not found")

    pending = PendingInstallLedger(session).get_unclaimed(shop_domain)
    if pending is not None:
        logger.info(
            "Found pending Shopify install",
            extra={"shop_domain": shop_domain, "tenant_id": tenant.id, "app_id": pending.app_id},
        )
        redirect = await _claim_pending_install(
            pending=pending,
            tenant=tenant,
            session=session,
            registry=registry,
            registrar=registrar,
        )
        if redirect is not None:
            return redirect

    tenants.mark_pending_shop(tenant, shop_domain)
    state = encode_state(tenant.id, client_secret)
    logger.info(
        "Redirecting to Shopify authorization",
        extra={"shop_domain": shop_domain, "tenant_id": tenant.id, "app_id": app.app_id},
    )
    return RedirectResponse(
        url=build_authorize_url(app=app, shop_domain=shop_domain, state=state),
        status_code=302,
    )


@router.get("/{slug}/callback")
async def shopify_callback(
    request: Request,
    app: ShopifyAppConfig = Depends(get_app),
    client: ShopifyApiClient = Depends(get_shopify_api),
    registrar: WebhookRegistrar = Depends(get_webhook_registrar),
    session: Session = Depends(get_session),
):
    params = request.query_params
    shop = params.get("shop")
    code = params.get("code")
    state = params.get("state")
    supplied_hmac = params.get("hmac")

    if not shop or not code or not supplied_hmac:
        return _error_redirect("missing_params")
    if not app.is_configured:
        logger.error("Shopify callback received for unconfigured app", extra={"app_id": app.app_id})
        return _error_redirect("server_error")
    _, client_secret = app.require_credentials()

    if not verify_oauth_hmac(list(params.multi_items()), secret=client_secret):
        logger.warning("Rejected Shopify callback with invalid HMAC", extra={"app_id": app.app_id})
        return _error_redirect("invalid_signature")

    try:
        shop_domain = normalize_shop_domain(shop)
    except ValidationError:
        return _error_redirect("invalid_shop")

    tenants = TenantsRepository(session)
    tenant = None
    if state:
        user_id = decode_state(state, client_secret)
        if user_id:
            tenant = tenants.get(user_id)
    if tenant is None:
        tenant = tenants.find_by_pending_shop(shop_domain)
    if tenant is None and not app.supports_custom_distribution:
        logger.error("No tenant found for Shopify callback", extra={"shop_domain": shop_domain, "app_id": app.app_id})
        return _error_redirect("no_user")

    try:
        access_token, scopes = await client.exchange_code_for_access_token(
            app=app,
            shop_domain=shop_domain,
            code=code,
        )
    except ShopifyApiError as exc:
        logger.error(
            "Shopify token exchange failed",
            extra={"shop_domain": shop_domain, "app_id": app.app_id, "error": str(exc)},
        )
        return _error_redirect("token_exchange_failed")

    encrypted_token = app.cipher().encrypt(access_token)

    if tenant is None:
        try:
            PendingInstallLedger(session).put(shop_domain, encrypted_token, scopes, app_id=app.app_id)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to store pending Shopify install", extra={"shop_domain": shop_domain})
            return _error_redirect("callback_failed")
        return _dashboard_redirect(shopifyPending="true", pendingShop=shop_domain)

    try:
        connections = ConnectionsRepository(session)
        connection = connections.upsert(
            tenant=tenant,
            shop_domain=shop_domain,
            encrypted_token=encrypted_token,
            scopes=scopes,
            app_id=app.app_id,
        )
        result = await registrar.register(shop_domain, access_token, app.webhook_path)
        connections.set_webhook_status(connection, success=result.success, error=result.error)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to save Shopify connection", extra={"shop_domain": shop_domain, "tenant_id": tenant.id})
        return _error_redirect("callback_failed")

    logger.info(
        "Shopify store connected",
        extra={"shop_domain": shop_domain, "tenant_id": tenant.id, "app_id": app.app_id, "webhook_ok": result.success},
    )
    return _dashboard_redirect(shopifySuccess="true")
