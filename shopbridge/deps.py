from __future__ import annotations

from fastapi import Depends

from shopbridge.apps import AppRegistry, ShopifyAppConfig, get_registry
from shopbridge.registrar import WebhookRegistrar
from shopbridge.shopify_api import ShopifyApiClient

shopify_api = ShopifyApiClient()


def get_shopify_api() -> ShopifyApiClient:
    return shopify_api


def get_webhook_registrar(client: ShopifyApiClient = Depends(get_shopify_api)) -> WebhookRegistrar:
    return WebhookRegistrar(client)


def get_app(slug: str, registry: AppRegistry = Depends(get_registry)) -> ShopifyAppConfig:
    return registry.by_slug(slug)
