from __future__ import annotations

import pytest

from shopbridge.apps import AppRegistry, ShopifyAppConfig
from shopbridge.config import Settings
from shopbridge.errors import ConfigurationError, NotFoundError


def _registry(**overrides) -> AppRegistry:
    values = {
        "SHOPIFY_API_KEY": "k1",
        "SHOPIFY_API_SECRET": "s1",
        "SHOPIFY2_API_KEY": None,
        "SHOPIFY2_API_SECRET": None,
        "SHOPIFY3_API_KEY": "k3",
        "SHOPIFY3_API_SECRET": "s3",
    }
    values.update(overrides)
    return AppRegistry.from_settings(Settings(**values))


def test_registry_exposes_three_apps_by_id_and_slug():
    registry = _registry()

    assert [app.app_id for app in registry.all()] == ["app1", "app2", "app3"]
    assert registry.by_slug("shopify").app_id == "app1"
    assert registry.by_slug("shopify2").app_id == "app2"
    assert registry.by_slug("shopify3").app_id == "app3"
    assert registry.get("app3").webhook_path == "/api/integrations/shopify3/webhook"
    assert registry.get("app1").callback_path == "/api/integrations/shopify/callback"


def test_custom_distribution_defaults():
    registry = _registry()

    assert registry.get("app1").supports_custom_distribution is True
    assert registry.get("app2").supports_custom_distribution is False
    assert registry.get("app3").supports_custom_distribution is True


def test_configured_skips_apps_without_credentials():
    registry = _registry()

    assert [app.app_id for app in registry.configured()] == ["app1", "app3"]
    with pytest.raises(ConfigurationError):
        registry.get("app2").require_credentials()


def test_blank_credentials_count_as_missing():
    registry = _registry(SHOPIFY_API_KEY="   ")

    assert registry.get("app1").is_configured is False


def test_unknown_slug_and_app_are_not_found():
    registry = _registry()

    with pytest.raises(NotFoundError):
        registry.by_slug("woocommerce")
    with pytest.raises(NotFoundError):
        registry.get("app9")


def test_connections_without_app_id_resolve_to_primary_app():
    registry = _registry()

    assert registry.for_connection(None).app_id == "app1"
    assert registry.for_connection("app3").app_id == "app3"


def test_cipher_is_keyed_by_app_secret():
    app = ShopifyAppConfig(
        app_id="app1",
        slug="shopify",
        client_id="k",
        client_secret="s",
        scopes="read_orders",
        supports_custom_distribution=True,
    )

    assert app.cipher().decrypt(app.cipher().encrypt("shpat_1")) == "shpat_1"


def test_settings_clean_scopes_and_dashboard_path():
    config = Settings(SHOPIFY_SCOPES=" read_orders , ,write_fulfillments ", DASHBOARD_PATH="dashboard/")

    assert config.SHOPIFY_SCOPES == "read_orders,write_fulfillments"
    assert config.DASHBOARD_PATH == "/dashboard"
    assert config.dashboard_url == "https://example.ngrok.app/dashboard"
