"""Mapping of Shopify ``orders/create`` payloads onto internal shipments."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from shopbridge.errors import ValidationError
from shopbridge.models import Shipment, Tenant

UNASSIGNED_COURIER = "Optimization Pending"
DEFAULT_WEIGHT_KG = 0.5
_COD_GATEWAY_RE = re.compile(r"cash on delivery|\bcod\b")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_amount(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount in order payload: {value!r}") from exc
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _gateway_names(order: dict[str, Any]) -> list[str]:
    raw = order.get("payment_gateway_names") or []
    names = list(raw) if isinstance(raw, list) else [raw]
    gateway = order.get("gateway")
    if gateway:
        names.append(gateway)
    return [str(name).lower().replace("_", " ") for name in names if name]


def is_cash_on_delivery(order: dict[str, Any]) -> bool:
    gateways = _gateway_names(order)
    if any(_COD_GATEWAY_RE.search(name) for name in gateways):
        return True
    # an unpaid order with no payment gateway is collected on delivery
    financial_status = _text(order.get("financial_status")).lower()
    return financial_status == "pending" and not gateways


def coerce_line_items(order: dict[str, Any]) -> list[dict[str, Any]]:
    raw = order.get("line_items")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("order.line_items must be a list")

    line_items: list[dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("Each line_items entry must be an object")
        line_items.append(
            {
                "id": item.get("id"),
                "variantId": item.get("variant_id"),
                "title": item.get("title"),
                "sku": item.get("sku"),
                "quantity": item.get("quantity"),
                "price": item.get("price"),
            }
        )
    return line_items


def _destination(order: dict[str, Any]) -> dict[str, str]:
    address = order.get("shipping_address") or {}
    customer = order.get("customer") or {}
    name = " ".join(
        part for part in (_text(address.get("first_name")), _text(address.get("last_name"))) if part
    ) or _text(address.get("name"))
    street = ", ".join(
        part for part in (_text(address.get("address1")), _text(address.get("address2"))) if part
    )
    phone = _text(address.get("phone")) or _text(order.get("phone")) or _text(customer.get("phone"))
    return {
        "name": name,
        "phone": phone,
        "address": street,
        "city": _text(address.get("city")),
        "state": _text(address.get("province")),
        "pincode": _text(address.get("zip")),
    }


def _weight_kg(order: dict[str, Any]) -> float:
    grams = order.get("total_weight")
    try:
        grams = float(grams)
    except (TypeError, ValueError):
        return DEFAULT_WEIGHT_KG
    if grams <= 0:
        return DEFAULT_WEIGHT_KG
    return round(grams / 1000, 3)


def build_shipment(*, order: dict[str, Any], tenant: Tenant, shop_domain: str) -> Shipment:
    order_id = _text(order.get("id"))
    if not order_id:
        raise ValidationError("Order payload is missing id")
    order_number = _text(order.get("order_number")) or _text(order.get("name")).lstrip("#")

    destination = _destination(order)
    total = parse_amount(order.get("total_price"))
    cod = is_cash_on_delivery(order)
    line_items = coerce_line_items(order)
    piece_count = sum(int(item.get("quantity") or 0) for item in line_items) or 1

    return Shipment(
        client_id=tenant.id,
        client_name=tenant.name or "Shopify Merchant",
        client_type="shopify",
        courier=UNASSIGNED_COURIER,
        status="pending",
        origin_name=tenant.pickup_name or "",
        origin_phone=tenant.pickup_phone or "",
        origin_address=tenant.pickup_address or "",
        origin_city=tenant.pickup_city or "",
        origin_state=tenant.pickup_state or "",
        origin_pincode=tenant.pickup_pincode or "",
        destination_name=destination["name"],
        destination_phone=destination["phone"],
        destination_address=destination["address"],
        destination_city=destination["city"],
        destination_state=destination["state"],
        destination_pincode=destination["pincode"],
        line_items=line_items,
        weight=_weight_kg(order),
        piece_count=piece_count,
        courier_charge=Decimal("0.00"),
        charged_amount=total,
        margin_amount=Decimal("0.00"),
        declared_value=total,
        payment_mode="cod" if cod else "prepaid",
        to_pay_customer=cod,
        cod_amount=total if cod else None,
        reference_no=f"ORD-{order_number or order_id}",
        notes=f"Shopify Order ID: {order_id}",
        shop_domain=shop_domain,
        shopify_order_id=order_id,
        shopify_order_number=order_number or None,
        shopify_fulfillment_status="pending",
    )
