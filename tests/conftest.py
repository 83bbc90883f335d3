import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("APP_BASE_URL", "https://example.ngrok.app")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_courier_shopify_bridge.db")
os.environ.setdefault("SHOPIFY_API_KEY", "app1_test_key")
os.environ.setdefault("SHOPIFY_API_SECRET", "app1_test_secret")
os.environ.setdefault("SHOPIFY2_API_KEY", "app2_test_key")
os.environ.setdefault("SHOPIFY2_API_SECRET", "app2_test_secret")
os.environ.setdefault("SHOPIFY3_API_KEY", "app3_test_key")
os.environ.setdefault("SHOPIFY3_API_SECRET", "app3_test_secret")
os.environ.setdefault("AUTH_AUDIENCE", "courier-dashboard")
os.environ.setdefault("AUTH_ISSUER", "https://securetoken.google.com/courier-dashboard")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import delete  # noqa: E402

import shopbridge.main as main_module  # noqa: E402
from shopbridge.auth import AuthContext, get_current_user  # noqa: E402
from shopbridge.db import SessionLocal, init_db  # noqa: E402
from shopbridge.models import (  # noqa: E402
    GdprRequest,
    PendingShopifyInstall,
    Shipment,
    ShopifyConnection,
    Tenant,
)

_TABLES = (GdprRequest, Shipment, PendingShopifyInstall, ShopifyConnection, Tenant)


def _clear_tables(session) -> None:
    for model in _TABLES:
        session.execute(delete(model))
    session.commit()


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()
    _clear_tables(session)
    try:
        yield session
    finally:
        session.rollback()
        _clear_tables(session)
        session.close()


@pytest.fixture()
def api_client():
    with TestClient(main_module.app) as client:
        yield client
    main_module.app.dependency_overrides.clear()


@pytest.fixture()
def signed_in_as():
    def _sign_in(user_id: str) -> None:
        main_module.app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id=user_id)

    return _sign_in


@pytest.fixture()
def tenant(db_session):
    record = Tenant(
        id="tenant_1",
        name="Acme Retail",
        email="ops@acme.test",
        pickup_name="Acme Warehouse",
        pickup_phone="9800000000",
        pickup_address="12 Dock Road",
        pickup_city="Mumbai",
        pickup_state="Maharashtra",
        pickup_pincode="400001",
    )
    db_session.add(record)
    db_session.commit()
    return record
