from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return uuid4().hex


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(length=128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    pending_shop_domain: Mapped[str | None] = mapped_column(String(length=255), nullable=True, index=True)
    pending_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pickup_name: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    pickup_phone: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    pickup_city: Mapped[str | None] = mapped_column(String(length=128), nullable=True)
    pickup_state: Mapped[str | None] = mapped_column(String(length=128), nullable=True)
    pickup_pincode: Mapped[str | None] = mapped_column(String(length=16), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    connection: Mapped["ShopifyConnection | None"] = relationship(
        back_populates="tenant",
        uselist=False,
        cascade="all, delete-orphan",
    )


class ShopifyConnection(Base):
    __tablename__ = "shopify_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    shop_domain: Mapped[str] = mapped_column(String(length=255), nullable=False, index=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    app_id: Mapped[str | None] = mapped_column(String(length=32), nullable=True)
    webhook_status: Mapped[str | None] = mapped_column(String(length=32), nullable=True)
    webhook_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    uninstalled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tenant: Mapped[Tenant] = relationship(back_populates="connection")


class PendingShopifyInstall(Base):
    __tablename__ = "pending_shopify_installs"

    shop_domain: Mapped[str] = mapped_column(String(length=255), primary_key=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    app_id: Mapped[str | None] = mapped_column(String(length=32), nullable=True)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_by: Mapped[str | None] = mapped_column(String(length=128), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("client_id", "shopify_order_id", name="uq_shipment_client_shopify_order"),
    )

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_uuid)
    client_id: Mapped[str] = mapped_column(String(length=128), nullable=False, index=True)
    client_name: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    client_type: Mapped[str] = mapped_column(String(length=32), nullable=False, default="shopify")

    courier: Mapped[str] = mapped_column(String(length=64), nullable=False)
    courier_tracking_id: Mapped[str | None] = mapped_column(String(length=128), nullable=True)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="pending")

    origin_name: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    origin_phone: Mapped[str] = mapped_column(String(length=64), nullable=False, default="")
    origin_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    origin_city: Mapped[str] = mapped_column(String(length=128), nullable=False, default="")
    origin_state: Mapped[str] = mapped_column(String(length=128), nullable=False, default="")
    origin_pincode: Mapped[str] = mapped_column(String(length=16), nullable=False, default="")

    destination_name: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    destination_phone: Mapped[str] = mapped_column(String(length=64), nullable=False, default="", index=True)
    destination_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    destination_city: Mapped[str] = mapped_column(String(length=128), nullable=False, default="")
    destination_state: Mapped[str] = mapped_column(String(length=128), nullable=False, default="")
    destination_pincode: Mapped[str] = mapped_column(String(length=16), nullable=False, default="")

    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    piece_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    courier_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    charged_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    margin_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    declared_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    payment_mode: Mapped[str] = mapped_column(String(length=16), nullable=False, default="prepaid")
    to_pay_customer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cod_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    reference_no: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    shop_domain: Mapped[str | None] = mapped_column(String(length=255), nullable=True, index=True)
    shopify_order_id: Mapped[str | None] = mapped_column(String(length=64), nullable=True, index=True)
    shopify_order_number: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    shopify_fulfillment_status: Mapped[str | None] = mapped_column(String(length=16), nullable=True)
    shopify_fulfillment_id: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    shopify_fulfillment_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    shopify_fulfillment_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gdpr_redacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class GdprRequest(Base):
    """Append-only audit row for each compliance webhook Shopify delivers."""

    __tablename__ = "gdpr_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    app_id: Mapped[str | None] = mapped_column(String(length=32), nullable=True)
    shop_domain: Mapped[str | None] = mapped_column(String(length=255), nullable=True, index=True)
    customer_email: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    orders_requested: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    shipment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    customer_data: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="processed")
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
