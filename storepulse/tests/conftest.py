"""Pytest configuration for StorePulse tests

WHAT: Provides shared fixtures for service, router and scheduler tests
WHY: Ensures consistent test setup, database isolation, and auth headers
REFERENCES:
    - storepulse/main.py: FastAPI application
    - storepulse/database.py: Database configuration
    - storepulse/deps.py: Dependency injection
"""

import base64
import hashlib
import hmac
import json
import os
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test environment before any storepulse import reads settings
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
# Must be URL-safe base64-encoded 32-byte string
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SHOPIFY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SENTRY_DSN", "")


WEBHOOK_SECRET = os.environ["SHOPIFY_WEBHOOK_SECRET"]


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine shared across sessions."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from storepulse.models import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    """Session factory for code that opens its own sessions (scheduler, sweep)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Tenant Fixtures
# ============================================================================

def make_tenant(db: Session, name: str, shop_domain: str, access_token: str = None, webhook_secret: str = None):
    from storepulse.models import Tenant
    from storepulse.security import encrypt_secret

    tenant = Tenant(name=name, shop_domain=shop_domain)
    if access_token:
        tenant.access_token_enc = encrypt_secret(access_token, context="test")
    if webhook_secret:
        tenant.webhook_secret_enc = encrypt_secret(webhook_secret, context="test")
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


@pytest.fixture
def tenant(test_db_session):
    """Connected tenant."""
    return make_tenant(test_db_session, "Acme Store", "acme", access_token="shpat_acme")


@pytest.fixture
def other_tenant(test_db_session):
    """Second connected tenant, for isolation checks."""
    return make_tenant(test_db_session, "Globex Store", "globex", access_token="shpat_globex")


@pytest.fixture
def unconnected_tenant(test_db_session):
    """Tenant registered but without an access token."""
    return make_tenant(test_db_session, "Initech Store", "initech")


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """FastAPI app with the database dependency pointed at the test session."""
    from storepulse.database import get_db
    from storepulse.main import create_app

    application = create_app()

    def override_get_db():
        yield test_db_session

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    """Test client without lifespan (scheduler is not started)."""
    return TestClient(app)


def auth_headers_for(tenant) -> dict:
    from storepulse.security import create_access_token
    return {"Authorization": f"Bearer {create_access_token(str(tenant.id))}"}


@pytest.fixture
def auth_headers(tenant):
    return auth_headers_for(tenant)


# ============================================================================
# Webhook Helpers
# ============================================================================

def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def webhook_request(payload: dict, topic: str, secret: str = WEBHOOK_SECRET):
    """Return (body, headers) for a signed webhook delivery."""
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "X-Shopify-Topic": topic,
        "X-Shopify-Hmac-SHA256": sign(body, secret),
        "Content-Type": "application/json",
    }
    return body, headers


# ============================================================================
# Payload Factories
# ============================================================================

def customer_payload(shopify_id=1001, **overrides) -> dict:
    payload = {
        "id": shopify_id,
        "email": f"customer{shopify_id}@example.com",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "phone": "+15550001",
        "tags": "vip, wholesale",
        "total_spent": "250.00",
        "orders_count": 3,
        "created_at": "2024-01-05T10:00:00-05:00",
    }
    payload.update(overrides)
    return payload


def order_payload(shopify_id=5001, customer=None, line_items=None, **overrides) -> dict:
    payload = {
        "id": shopify_id,
        "order_number": 1001,
        "name": "#1001",
        "total_price": "120.50",
        "subtotal_price": "110.00",
        "total_tax": "10.50",
        "total_discounts": "0.00",
        "currency": "USD",
        "financial_status": "paid",
        "fulfillment_status": None,
        "created_at": "2024-03-01T12:00:00Z",
        "customer": customer,
        "line_items": line_items if line_items is not None else [
            {"id": 1, "product_id": 70, "variant_id": 700, "title": "Mug", "sku": "MUG-1", "quantity": 2, "price": "25.00"},
            {"id": 2, "product_id": 71, "variant_id": 710, "title": "Tee", "sku": "TEE-1", "quantity": 1, "price": "60.00"},
        ],
    }
    payload.update(overrides)
    return payload


def product_payload(shopify_id=7001, **overrides) -> dict:
    payload = {
        "id": shopify_id,
        "title": "Ceramic Mug",
        "handle": "ceramic-mug",
        "vendor": "Acme",
        "product_type": "Kitchen",
        "status": "active",
        "tags": "mug",
        "created_at": "2023-12-01T08:00:00Z",
        "variants": [
            {"id": 1, "price": "25.00", "compare_at_price": "30.00", "inventory_quantity": 12},
            {"id": 2, "price": "99.00", "compare_at_price": None, "inventory_quantity": 1},
        ],
        "image": {"src": "https://cdn.example.com/mug.png"},
    }
    payload.update(overrides)
    return payload
