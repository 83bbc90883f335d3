from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopbridge.errors import IdempotentNoop
from shopbridge.models import GdprRequest, Shipment, ShopifyConnection, Tenant

logger = logging.getLogger(__name__)


class TenantsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, tenant_id: str) -> Optional[Tenant]:
        return self.session.get(Tenant, tenant_id)

    def mark_pending_shop(self, tenant: Tenant, shop_domain: str) -> Tenant:
        tenant.pending_shop_domain = shop_domain
        tenant.pending_at = datetime.now(timezone.utc)
        self.session.add(tenant)
        self.session.commit()
        return tenant

    def find_by_pending_shop(self, shop_domain: str) -> Optional[Tenant]:
        """Resolve a tenant from the shop it most recently started installing.

        This only matches a domain string. It is weaker than a verified OAuth
        state and exists for installs where Shopify drops the state parameter.
        """
        stmt = select(Tenant).where(Tenant.pending_shop_domain == shop_domain).order_by(Tenant.pending_at.desc())
        tenant = self.session.scalars(stmt).first()
        if tenant is not None:
            logger.warning(
                "Resolved tenant by pending shop domain instead of signed state",
                extra={"shop_domain": shop_domain, "tenant_id": tenant.id},
            )
        return tenant


class ConnectionsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_for_tenant(self, tenant_id: str) -> Optional[ShopifyConnection]:
        stmt = select(ShopifyConnection).where(ShopifyConnection.tenant_id == tenant_id)
        return self.session.scalars(stmt).first()

    def list_for_shop(self, shop_domain: str) -> list[ShopifyConnection]:
        stmt = select(ShopifyConnection).where(ShopifyConnection.shop_domain == shop_domain)
        return list(self.session.scalars(stmt).all())

    def find_connected_by_shop(self, shop_domain: str) -> Optional[ShopifyConnection]:
        stmt = (
            select(ShopifyConnection)
            .where(
                ShopifyConnection.shop_domain == shop_domain,
                ShopifyConnection.is_connected.is_(True),
            )
            .order_by(ShopifyConnection.updated_at.desc())
        )
        return self.session.scalars(stmt).first()

    def upsert(
        self,
        *,
        tenant: Tenant,
        shop_domain: str,
        encrypted_token: str,
        scopes: str,
        app_id: str,
    ) -> ShopifyConnection:
        connection = self.get_for_tenant(tenant.id)
        if connection is None:
            connection = ShopifyConnection(tenant_id=tenant.id)
        connection.shop_domain = shop_domain
        connection.access_token = encrypted_token
        connection.scopes = scopes
        connection.app_id = app_id
        connection.is_connected = True
        connection.webhook_status = None
        connection.webhook_error = None
        connection.uninstalled_at = None
        connection.updated_at = datetime.now(timezone.utc)
        if tenant.pending_shop_domain == shop_domain:
            tenant.pending_shop_domain = None
            tenant.pending_at = None
            self.session.add(tenant)
        self.session.add(connection)
        self.session.commit()
        self.session.refresh(connection)
        return connection

    def set_webhook_status(self, connection: ShopifyConnection, *, success: bool, error: str | None) -> None:
        connection.webhook_status = "active" if success else "failed"
        connection.webhook_error = None if success else error
        self.session.add(connection)
        self.session.commit()

    def mark_disconnected(self, connection: ShopifyConnection, *, uninstalled: bool = False) -> None:
        now = datetime.now(timezone.utc)
        connection.is_connected = False
        connection.updated_at = now
        if uninstalled:
            connection.uninstalled_at = now
        self.session.add(connection)
        self.session.commit()

    def mark_shop_uninstalled(self, shop_domain: str) -> int:
        connections = self.list_for_shop(shop_domain)
        now = datetime.now(timezone.utc)
        for connection in connections:
            connection.is_connected = False
            connection.uninstalled_at = now
            connection.updated_at = now
            self.session.add(connection)
        self.session.commit()
        return len(connections)

    def delete(self, connection: ShopifyConnection) -> None:
        self.session.delete(connection)
        self.session.commit()


class ShipmentsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, shipment_id: str) -> Optional[Shipment]:
        return self.session.get(Shipment, shipment_id)

    def find_by_shopify_order(self, *, client_id: str, shopify_order_id: str) -> Optional[Shipment]:
        stmt = select(Shipment).where(
            Shipment.client_id == client_id,
            Shipment.shopify_order_id == shopify_order_id,
        )
        return self.session.scalars(stmt).first()

    def insert_if_absent(self, shipment: Shipment) -> Shipment:
        """Insert a Shopify-sourced shipment unless its (client, order) pair exists.

        The existence query short-circuits ordinary redeliveries; the unique
        constraint settles concurrent ones.
        """
        existing = self.find_by_shopify_order(
            client_id=shipment.client_id,
            shopify_order_id=shipment.shopify_order_id,
        )
        if existing is not None:
            raise IdempotentNoop("Order already processed", existing_id=existing.id)
        self.session.add(shipment)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            existing = self.find_by_shopify_order(
                client_id=shipment.client_id,
                shopify_order_id=shipment.shopify_order_id,
            )
            if existing is None:
                raise
            raise IdempotentNoop("Order already processed", existing_id=existing.id) from exc
        self.session.refresh(shipment)
        return shipment

    def find_for_customer(
        self,
        *,
        shop_domain: str | None,
        phone: str | None,
        order_ids: Iterable[str],
    ) -> list[Shipment]:
        clauses = []
        if phone:
            clauses.append(Shipment.destination_phone == phone)
        order_ids = [str(order_id) for order_id in order_ids if order_id is not None]
        if order_ids:
            clauses.append(Shipment.shopify_order_id.in_(order_ids))
        if not clauses:
            return []
        stmt = select(Shipment).where(or_(*clauses))
        if shop_domain:
            stmt = stmt.where(Shipment.shop_domain == shop_domain)
        return list(self.session.scalars(stmt.order_by(Shipment.created_at)).all())

    def list_for_shop(self, *, shop_domain: str, client_ids: Iterable[str]) -> list[Shipment]:
        client_ids = list(client_ids)
        clauses = [Shipment.shop_domain == shop_domain]
        if client_ids:
            clauses.append(and_(Shipment.client_id.in_(client_ids), Shipment.client_type == "shopify"))
        stmt = select(Shipment).where(or_(*clauses)).order_by(Shipment.created_at)
        return list(self.session.scalars(stmt).all())

    def save(self, shipment: Shipment) -> Shipment:
        self.session.add(shipment)
        self.session.commit()
        self.session.refresh(shipment)
        return shipment


class GdprRequestsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(self, request: GdprRequest) -> GdprRequest:
        self.session.add(request)
        self.session.commit()
        self.session.refresh(request)
        return request
