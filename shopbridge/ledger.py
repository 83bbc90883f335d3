"""Pending installs from Shopify's custom distribution flow.

When a merchant installs through a custom distribution link, Shopify calls back
with no state we issued, so the exchanged token is parked here keyed by shop
domain until a tenant starts an install for that shop and claims it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from shopbridge.models import PendingShopifyInstall

logger = logging.getLogger(__name__)


class PendingInstallLedger:
    def __init__(self, session: Session) -> None:
        self.session = session

    def put(self, shop_domain: str, encrypted_token: str, scopes: str, *, app_id: str) -> PendingShopifyInstall:
        record = self.session.get(PendingShopifyInstall, shop_domain)
        if record is None:
            record = PendingShopifyInstall(shop_domain=shop_domain)
        record.access_token = encrypted_token
        record.scopes = scopes
        record.app_id = app_id
        record.claimed = False
        record.claimed_by = None
        record.claimed_at = None
        record.installed_at = datetime.now(timezone.utc)
        self.session.add(record)
        self.session.commit()
        logger.info("Stored pending Shopify install", extra={"shop_domain": shop_domain, "app_id": app_id})
        return record

    def get_unclaimed(self, shop_domain: str) -> Optional[PendingShopifyInstall]:
        record = self.session.get(PendingShopifyInstall, shop_domain)
        if record is None or record.claimed:
            return None
        return record

    def try_claim(self, shop_domain: str, claiming_user_id: str) -> Optional[PendingShopifyInstall]:
        """Claim the record for ``claiming_user_id``; at most one caller ever wins."""
        stmt = (
            update(PendingShopifyInstall)
            .where(
                PendingShopifyInstall.shop_domain == shop_domain,
                PendingShopifyInstall.claimed.is_(False),
            )
            .values(claimed=True, claimed_by=claiming_user_id, claimed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        if result.rowcount != 1:
            return None
        record = self.session.get(PendingShopifyInstall, shop_domain)
        logger.info(
            "Claimed pending Shopify install",
            extra={"shop_domain": shop_domain, "tenant_id": claiming_user_id},
        )
        return record

    def delete_if_claimed(self, shop_domain: str) -> bool:
        record = self.session.get(PendingShopifyInstall, shop_domain)
        if record is None or not record.claimed:
            return False
        self.session.delete(record)
        self.session.commit()
        return True

    def delete(self, shop_domain: str) -> bool:
        record = self.session.get(PendingShopifyInstall, shop_domain)
        if record is None:
            return False
        self.session.delete(record)
        self.session.commit()
        return True

    def list_unclaimed(self) -> list[PendingShopifyInstall]:
        stmt = (
            select(PendingShopifyInstall)
            .where(PendingShopifyInstall.claimed.is_(False))
            .order_by(PendingShopifyInstall.installed_at)
        )
        return list(self.session.scalars(stmt).all())
