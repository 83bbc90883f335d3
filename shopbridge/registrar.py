from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from shopbridge.config import settings
from shopbridge.shopify_api import ShopifyApiClient, ShopifyApiError

logger = logging.getLogger(__name__)

WEBHOOK_TOPICS: tuple[str, ...] = ("ORDERS_CREATE", "APP_UNINSTALLED")


@dataclass(frozen=True)
class WebhookRegistration:
    success: bool
    error: str | None = None


class WebhookRegistrar:
    """Subscribes a shop's order and uninstall events to this deployment.

    ``register`` always resolves to a :class:`WebhookRegistration`; a failure
    here must not undo an otherwise successful install.
    """

    def __init__(self, client: ShopifyApiClient, *, topics: tuple[str, ...] = WEBHOOK_TOPICS) -> None:
        self._client = client
        self._topics = topics

    async def register(self, shop: str, access_token: str, callback_path: str) -> WebhookRegistration:
        callback_url = f"{settings.app_base_url}{callback_path}"
        errors: list[str] = []
        for topic in self._topics:
            try:
                await self._client.register_webhook(
                    shop_domain=shop,
                    access_token=access_token,
                    topic=topic,
                    callback_url=callback_url,
                )
            except ShopifyApiError as exc:
                logger.warning(
                    "Shopify webhook registration failed",
                    extra={"shop_domain": shop, "topic": topic, "error": str(exc)},
                )
                errors.append(str(exc))
            except (httpx.HTTPError, ValueError) as exc:
                logger.exception("Shopify webhook registration errored", extra={"shop_domain": shop, "topic": topic})
                errors.append(f"{topic}: {str(exc) or exc.__class__.__name__}")
        if errors:
            return WebhookRegistration(success=False, error="; ".join(errors))
        logger.info(
            "Registered Shopify webhooks",
            extra={"shop_domain": shop, "topics": list(self._topics), "callback_url": callback_url},
        )
        return WebhookRegistration(success=True)
