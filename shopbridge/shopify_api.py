from __future__ import annotations

from typing import Any

import httpx

from shopbridge.apps import ShopifyAppConfig
from shopbridge.config import settings
from shopbridge.errors import UpstreamError

_OPEN_FULFILLMENT_ORDER_STATUSES = {"OPEN", "IN_PROGRESS"}

WEBHOOK_SUBSCRIPTION_CREATE = """
mutation webhookSubscriptionCreate($topic: WebhookSubscriptionTopic!, $webhookSubscription: WebhookSubscriptionInput!) {
  webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {
    webhookSubscription { id }
    userErrors { field message }
  }
}
"""

WEBHOOK_SUBSCRIPTIONS_BY_TOPIC = """
query webhookSubscriptionsByTopic($topics: [WebhookSubscriptionTopic!]) {
  webhookSubscriptions(first: 50, topics: $topics) {
    edges {
      node {
        id
        endpoint { __typename ... on WebhookHttpEndpoint { callbackUrl } }
      }
    }
  }
}
"""

ORDER_FULFILLMENT_ORDERS = """
query getFulfillmentOrders($orderId: ID!) {
  order(id: $orderId) {
    fulfillmentOrders(first: 5) { nodes { id status } }
  }
}
"""

FULFILLMENT_CREATE = """
mutation fulfillmentCreateV2($fulfillment: FulfillmentV2Input!) {
  fulfillmentCreateV2(fulfillment: $fulfillment) {
    fulfillment { id status }
    userErrors { field message }
  }
}
"""


class ShopifyApiError(UpstreamError):
    def __init__(self, *, message: str, status_code: int = 502, payload: Any = None) -> None:
        super().__init__(message, status_code=status_code, payload=payload)


def order_gid(order_id: str) -> str:
    order_id = str(order_id)
    if order_id.startswith("gid://"):
        return order_id
    return f"gid://shopify/Order/{order_id}"


def _user_error_messages(user_errors: list[dict[str, Any]]) -> str:
    return "; ".join(str(error.get("message")) for error in user_errors)


def _is_address_taken(user_errors: list[dict[str, Any]]) -> bool:
    return any(
        isinstance(error.get("message"), str) and "already been taken" in error["message"].lower()
        for error in user_errors
    )


def _non_empty_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class ShopifyApiClient:
    """Admin API calls needed to connect a store and push fulfillments back to it."""

    def __init__(self) -> None:
        self._timeout = settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS

    async def exchange_code_for_access_token(
        self,
        *,
        app: ShopifyAppConfig,
        shop_domain: str,
        code: str,
    ) -> tuple[str, str]:
        """Trade an OAuth ``code`` for an offline token; returns ``(token, scopes)``."""
        client_id, client_secret = app.require_credentials()
        response = await self._post_json(
            url=f"https://{shop_domain}/admin/oauth/access_token",
            payload={"client_id": client_id, "client_secret": client_secret, "code": code},
        )
        access_token = _non_empty_str(response.get("access_token"))
        if access_token is None:
            raise ShopifyApiError(message="OAuth token exchange response is missing access_token")
        # Shopify omits scope when it matches the requested set
        return access_token, _non_empty_str(response.get("scope")) or app.scopes

    async def register_webhook(
        self,
        *,
        shop_domain: str,
        access_token: str,
        topic: str,
        callback_url: str,
    ) -> str:
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={
                "query": WEBHOOK_SUBSCRIPTION_CREATE,
                "variables": {
                    "topic": topic,
                    "webhookSubscription": {"callbackUrl": callback_url, "format": "JSON"},
                },
            },
        )
        result = data.get("webhookSubscriptionCreate") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            existing_id = None
            if _is_address_taken(user_errors):
                existing_id = await self._find_existing_http_webhook_id(
                    shop_domain=shop_domain,
                    access_token=access_token,
                    topic=topic,
                    callback_url=callback_url,
                )
            if existing_id:
                return existing_id
            raise ShopifyApiError(
                message=f"Webhook registration failed for {topic}: {_user_error_messages(user_errors)}",
                payload=user_errors,
            )
        webhook_id = _non_empty_str((result.get("webhookSubscription") or {}).get("id"))
        if webhook_id is None:
            raise ShopifyApiError(message=f"Webhook registration for {topic} returned no id")
        return webhook_id

    async def _find_existing_http_webhook_id(
        self,
        *,
        shop_domain: str,
        access_token: str,
        topic: str,
        callback_url: str,
    ) -> str | None:
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={"query": WEBHOOK_SUBSCRIPTIONS_BY_TOPIC, "variables": {"topics": [topic]}},
        )
        wanted = callback_url.rstrip("/")
        for edge in (data.get("webhookSubscriptions") or {}).get("edges") or []:
            node = edge.get("node") or {}
            endpoint = node.get("endpoint") or {}
            if endpoint.get("__typename") != "WebhookHttpEndpoint":
                continue
            registered = _non_empty_str(endpoint.get("callbackUrl"))
            if registered and registered.rstrip("/") == wanted and _non_empty_str(node.get("id")):
                return node["id"]
        return None

    async def get_open_fulfillment_order_id(
        self,
        *,
        shop_domain: str,
        access_token: str,
        order_id: str,
    ) -> str | None:
        """First fulfillment order still awaiting shipment, or ``None`` if all are closed."""
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={"query": ORDER_FULFILLMENT_ORDERS, "variables": {"orderId": order_gid(order_id)}},
        )
        order = data.get("order")
        if not isinstance(order, dict):
            raise ShopifyApiError(message=f"Shopify order not found: {order_id}", status_code=404)
        for node in (order.get("fulfillmentOrders") or {}).get("nodes") or []:
            if node.get("status") in _OPEN_FULFILLMENT_ORDER_STATUSES and _non_empty_str(node.get("id")):
                return node["id"]
        return None

    async def create_fulfillment(
        self,
        *,
        shop_domain: str,
        access_token: str,
        fulfillment_order_id: str,
        tracking_number: str,
        tracking_company: str,
        tracking_url: str | None,
        notify_customer: bool = True,
    ) -> str:
        tracking_info = {"number": tracking_number, "company": tracking_company}
        if tracking_url:
            tracking_info["url"] = tracking_url
        data = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={
                "query": FULFILLMENT_CREATE,
                "variables": {
                    "fulfillment": {
                        "lineItemsByFulfillmentOrder": [{"fulfillmentOrderId": fulfillment_order_id}],
                        "notifyCustomer": notify_customer,
                        "trackingInfo": tracking_info,
                    }
                },
            },
        )
        result = data.get("fulfillmentCreateV2") or {}
        user_errors = result.get("userErrors") or []
        if user_errors:
            raise ShopifyApiError(
                message=f"Shopify fulfillment error: {_user_error_messages(user_errors)}",
                status_code=400,
                payload=user_errors,
            )
        fulfillment_id = _non_empty_str((result.get("fulfillment") or {}).get("id"))
        if fulfillment_id is None:
            raise ShopifyApiError(message="Shopify did not return fulfillment data")
        return fulfillment_id

    async def _admin_graphql(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        body = await self._post_json(
            url=f"https://{shop_domain}/admin/api/{settings.SHOPIFY_ADMIN_API_VERSION}/graphql.json",
            payload=payload,
            headers={"Content-Type": "application/json", "X-Shopify-Access-Token": access_token},
        )
        if body.get("errors"):
            raise ShopifyApiError(message=f"Admin GraphQL errors: {body['errors']}", payload=body["errors"])
        data = body.get("data")
        if not isinstance(data, dict):
            raise ShopifyApiError(message="Admin GraphQL response is missing data")
        return data

    async def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise ShopifyApiError(message=f"Network error while calling Shopify: {exc}") from exc

        if response.is_error:
            raise ShopifyApiError(
                message=f"Shopify API call failed ({response.status_code}): {response.text[:500]}",
                payload=response.text[:2000],
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError(message="Shopify API returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise ShopifyApiError(message="Shopify API response must be a JSON object")
        return body
