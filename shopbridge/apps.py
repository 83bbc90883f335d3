"""Registry of the Shopify app variants this service answers for.

Each storefront app differs only in its credentials, scopes and the URL segment
its routes live under, so every handler takes a :class:`ShopifyAppConfig`
resolved from the registry instead of reading a hard-coded secret.
"""

from __future__ import annotations

from dataclasses import dataclass

from shopbridge.config import Settings, settings
from shopbridge.crypto import TokenCipher
from shopbridge.errors import ConfigurationError, NotFoundError

DEFAULT_APP_ID = "app1"


@dataclass(frozen=True)
class ShopifyAppConfig:
    app_id: str
    slug: str
    client_id: str | None
    client_secret: str | None
    scopes: str
    supports_custom_distribution: bool

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def route_prefix(self) -> str:
        return f"/api/integrations/{self.slug}"

    @property
    def callback_path(self) -> str:
        return f"{self.route_prefix}/callback"

    @property
    def webhook_path(self) -> str:
        return f"{self.route_prefix}/webhook"

    def require_credentials(self) -> tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(f"Shopify credentials are not configured for {self.app_id}")
        return self.client_id, self.client_secret

    def cipher(self) -> TokenCipher:
        _, secret = self.require_credentials()
        return TokenCipher(secret)


class AppRegistry:
    def __init__(self, apps: list[ShopifyAppConfig]) -> None:
        self._by_id = {app.app_id: app for app in apps}
        self._by_slug = {app.slug: app for app in apps}

    @classmethod
    def from_settings(cls, config: Settings) -> "AppRegistry":
        return cls(
            [
                ShopifyAppConfig(
                    app_id="app1",
                    slug="shopify",
                    client_id=config.SHOPIFY_API_KEY,
                    client_secret=config.SHOPIFY_API_SECRET,
                    scopes=config.SHOPIFY_SCOPES,
                    supports_custom_distribution=config.SHOPIFY_CUSTOM_DISTRIBUTION,
                ),
                ShopifyAppConfig(
                    app_id="app2",
                    slug="shopify2",
                    client_id=config.SHOPIFY2_API_KEY,
                    client_secret=config.SHOPIFY2_API_SECRET,
                    scopes=config.SHOPIFY2_SCOPES,
                    supports_custom_distribution=config.SHOPIFY2_CUSTOM_DISTRIBUTION,
                ),
                ShopifyAppConfig(
                    app_id="app3",
                    slug="shopify3",
                    client_id=config.SHOPIFY3_API_KEY,
                    client_secret=config.SHOPIFY3_API_SECRET,
                    scopes=config.SHOPIFY3_SCOPES,
                    supports_custom_distribution=config.SHOPIFY3_CUSTOM_DISTRIBUTION,
                ),
            ]
        )

    def all(self) -> list[ShopifyAppConfig]:
        return list(self._by_id.values())

    def configured(self) -> list[ShopifyAppConfig]:
        return [app for app in self._by_id.values() if app.is_configured]

    def get(self, app_id: str) -> ShopifyAppConfig:
        app = self._by_id.get(app_id)
        if app is None:
            raise NotFoundError(f"Unknown Shopify app: {app_id}")
        return app

    def by_slug(self, slug: str) -> ShopifyAppConfig:
        app = self._by_slug.get(slug)
        if app is None:
            raise NotFoundError(f"Unknown Shopify integration: {slug}")
        return app

    def for_connection(self, app_id: str | None) -> ShopifyAppConfig:
        # Connections written before multi-app support carry no app id and were
        # encrypted with the primary app's secret.
        return self.get(app_id or DEFAULT_APP_ID)


registry = AppRegistry.from_settings(settings)


def get_registry() -> AppRegistry:
    return registry
