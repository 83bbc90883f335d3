from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FulfillRequest(BaseModel):
    shipmentId: str | None = None


class FulfillResponse(BaseModel):
    success: bool
    fulfillmentId: str


class WebhookAck(BaseModel):
    message: str


class GdprAck(BaseModel):
    received: bool = True


class ConnectionStatusResponse(BaseModel):
    shopDomain: str
    appId: str | None
    isConnected: bool
    scopes: list[str]
    webhookStatus: str | None
    webhookError: str | None
    updatedAt: datetime
    uninstalledAt: datetime | None


class DisconnectResponse(BaseModel):
    success: bool
    shopDomain: str


class _ShopifyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GdprCustomer(_ShopifyPayload):
    id: int | str | None = None
    email: str | None = None
    phone: str | None = None


def _stringify_ids(value: list | None) -> list[str]:
    return [str(item) for item in (value or []) if item is not None]


class CustomersDataRequestPayload(_ShopifyPayload):
    shop_id: int | str | None = None
    shop_domain: str | None = None
    customer: GdprCustomer = Field(default_factory=GdprCustomer)
    orders_requested: list[str] = Field(default_factory=list)

    @field_validator("orders_requested", mode="before")
    @classmethod
    def coerce_order_ids(cls, value: list | None) -> list[str]:
        return _stringify_ids(value)


class CustomersRedactPayload(_ShopifyPayload):
    shop_id: int | str | None = None
    shop_domain: str | None = None
    customer: GdprCustomer = Field(default_factory=GdprCustomer)
    orders_to_redact: list[str] = Field(default_factory=list)

    @field_validator("orders_to_redact", mode="before")
    @classmethod
    def coerce_order_ids(cls, value: list | None) -> list[str]:
        return _stringify_ids(value)


class ShopRedactPayload(_ShopifyPayload):
    shop_id: int | str | None = None
    shop_domain: str | None = None


class AppDiagnostics(BaseModel):
    appId: str
    slug: str
    hasApiKey: bool
    apiKeyPrefix: str
    hasApiSecret: bool
    callbackUrl: str
    webhookUrl: str
    scopes: list[str]
    customDistribution: bool
    pendingShops: list[str]


class DiagnosticsResponse(BaseModel):
    timestamp: datetime
    appUrl: str
    fulfillmentEndpoint: str
    adminApiVersion: str
    app: AppDiagnostics
    carriers: dict[str, bool]
