from __future__ import annotations

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_APP1_DEFAULT_SCOPES = (
    "read_orders,read_customers,write_fulfillments,"
    "read_merchant_managed_fulfillment_orders,write_merchant_managed_fulfillment_orders"
)
_APP_DEFAULT_SCOPES = (
    "read_orders,write_fulfillments,"
    "read_merchant_managed_fulfillment_orders,write_merchant_managed_fulfillment_orders"
)


def _clean_scopes(value: str) -> str:
    scopes = [scope.strip() for scope in value.split(",") if scope.strip()]
    if not scopes:
        raise ValueError("Shopify scopes must include at least one scope")
    return ",".join(scopes)


class Settings(BaseSettings):
    APP_BASE_URL: AnyHttpUrl = "http://localhost:3000"
    DASHBOARD_PATH: str = "/client-integrations"
    DATABASE_URL: str = "sqlite:///./courier_shopify_bridge.db"
    LOG_LEVEL: str = "INFO"

    SHOPIFY_API_KEY: str | None = None
    SHOPIFY_API_SECRET: str | None = None
    SHOPIFY_SCOPES: str = _APP1_DEFAULT_SCOPES
    SHOPIFY_CUSTOM_DISTRIBUTION: bool = True

    SHOPIFY2_API_KEY: str | None = None
    SHOPIFY2_API_SECRET: str | None = None
    SHOPIFY2_SCOPES: str = _APP_DEFAULT_SCOPES
    SHOPIFY2_CUSTOM_DISTRIBUTION: bool = False

    SHOPIFY3_API_KEY: str | None = None
    SHOPIFY3_API_SECRET: str | None = None
    SHOPIFY3_SCOPES: str = _APP_DEFAULT_SCOPES
    SHOPIFY3_CUSTOM_DISTRIBUTION: bool = True

    SHOPIFY_ADMIN_API_VERSION: str = "2024-10"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 20.0

    AUTH_JWKS_URL: str = (
        "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    )
    AUTH_AUDIENCE: str | None = None
    AUTH_ISSUER: str | None = None
    AUTH_JWKS_CACHE_TTL_SECONDS: int = 300

    # Carrier API credentials stay server-side; they are never serialized to clients.
    BLUEDART_LOGIN_ID: str | None = None
    BLUEDART_LICENSE_KEY: str | None = None
    DTDC_API_KEY: str | None = None
    DTDC_ACCESS_TOKEN: str | None = None

    @field_validator("SHOPIFY_SCOPES", "SHOPIFY2_SCOPES", "SHOPIFY3_SCOPES")
    @classmethod
    def validate_scopes(cls, value: str) -> str:
        return _clean_scopes(value)

    @field_validator(
        "SHOPIFY_API_KEY",
        "SHOPIFY_API_SECRET",
        "SHOPIFY2_API_KEY",
        "SHOPIFY2_API_SECRET",
        "SHOPIFY3_API_KEY",
        "SHOPIFY3_API_SECRET",
    )
    @classmethod
    def strip_credentials(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("DASHBOARD_PATH")
    @classmethod
    def validate_dashboard_path(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith("/"):
            cleaned = f"/{cleaned}"
        return cleaned.rstrip("/") or "/"

    @property
    def app_base_url(self) -> str:
        return str(self.APP_BASE_URL).rstrip("/")

    @property
    def dashboard_url(self) -> str:
        return f"{self.app_base_url}{self.DASHBOARD_PATH}"

    @property
    def bluedart_configured(self) -> bool:
        return bool(self.BLUEDART_LOGIN_ID and self.BLUEDART_LICENSE_KEY)

    @property
    def dtdc_configured(self) -> bool:
        return bool(self.DTDC_API_KEY and self.DTDC_ACCESS_TOKEN)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
