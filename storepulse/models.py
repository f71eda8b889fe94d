"""SQLAlchemy ORM models and enums.

This module defines the tenant-partitioned schema. Every Shopify-derived
table carries `tenant_id` and a per-tenant natural key
(`tenant_id`, `shopify_id`) enforced by a unique constraint, so two tenants
may hold records with identical Shopify ids.
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import Column, String, DateTime, Enum, Integer, ForeignKey, Numeric, JSON, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base

from .errors import SyncLogStateError


# Single Base used by the entire application
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums ---------------------------------------------------------

class SyncTypeEnum(str, enum.Enum):
    customers = "customers"
    orders = "orders"
    products = "products"


class SyncStatusEnum(str, enum.Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


class EventTypeEnum(str, enum.Enum):
    """Cart/checkout lifecycle occurrences received by webhook."""
    cart_updated = "cart_updated"
    checkout_started = "checkout_started"
    cart_abandoned = "cart_abandoned"


# Core models ----------------------------------------------------

class Tenant(Base):
    """Tenant is the isolation boundary: one Shopify store.

    The access credential and optional webhook secret are stored Fernet
    encrypted (see storepulse.security). A tenant without an access token
    exists but cannot be synced.
    """
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)

    # Store handle ("mystore") or full host ("mystore.myshopify.com")
    shop_domain = Column(String, nullable=False, unique=True)

    access_token_enc = Column(Text, nullable=True)
    webhook_secret_enc = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customers = relationship("Customer", back_populates="tenant")
    orders = relationship("Order", back_populates="tenant")
    products = relationship("Product", back_populates="tenant")
    sync_logs = relationship("SyncLog", back_populates="tenant")

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token_enc)

    def __str__(self):
        return f"{self.name} ({self.shop_domain})"


class Customer(Base):
    """Shopify customer mirrored per tenant.

    `total_spent` and `orders_count` mirror what Shopify reports on the
    customer resource; they are never recomputed from local orders.
    """
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "shopify_id", name="uq_customer_tenant_shopify"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    shopify_id = Column(String, nullable=False)

    # PII - handle with care
    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    tags = Column(String, nullable=True)  # Comma-separated, as Shopify sends them

    total_spent = Column(Numeric(18, 4), nullable=False, default=0)
    orders_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    shopify_created_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="customers")
    orders = relationship("Order", back_populates="customer")

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.email or "Unknown"

    def __str__(self):
        return f"{self.display_name} - ${self.total_spent}"


class Order(Base):
    """Shopify order; `order_date` drives every time-bucketed aggregate.

    `customer_id` is null for guest checkouts. Line items are replaced as a
    whole on every upsert (delete-orphan cascade).
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "shopify_id", name="uq_order_tenant_shopify"),
        Index("ix_orders_tenant_order_date", "tenant_id", "order_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True)
    shopify_id = Column(String, nullable=False)

    order_number = Column(String, nullable=True)
    name = Column(String, nullable=True)  # Display name (e.g., "#1001")

    total_price = Column(Numeric(18, 4), nullable=False, default=0)
    subtotal_price = Column(Numeric(18, 4), nullable=True)
    total_tax = Column(Numeric(18, 4), nullable=True)
    total_discounts = Column(Numeric(18, 4), nullable=True)
    currency = Column(String, nullable=False, default="USD")

    # Open string values mirrored from Shopify, not locally constrained
    financial_status = Column(String, nullable=True)
    fulfillment_status = Column(String, nullable=True)

    order_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="orders")
    customer = relationship("Customer", back_populates="orders")
    line_items = relationship("OrderLineItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def customer_name(self) -> str:
        if self.customer is None:
            return "Guest"
        full_name = " ".join(part for part in (self.customer.first_name, self.customer.last_name) if part)
        return full_name or self.customer.email or "Guest"

    def __str__(self):
        return f"Order {self.name or self.shopify_id} - ${self.total_price}"


class OrderLineItem(Base):
    """Line item snapshot taken from the latest order payload."""
    __tablename__ = "order_line_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)

    shopify_id = Column(String, nullable=True)
    product_shopify_id = Column(String, nullable=True)  # Kept even if product is deleted
    variant_shopify_id = Column(String, nullable=True)

    title = Column(String, nullable=False)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(18, 4), nullable=False, default=0)  # Unit price

    order = relationship("Order", back_populates="line_items")

    def __str__(self):
        return f"{self.title} x{self.quantity} @ ${self.price}"


class Product(Base):
    """Product catalog entry.

    Price, compare-at price and inventory come from the first variant only.
    """
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "shopify_id", name="uq_product_tenant_shopify"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    shopify_id = Column(String, nullable=False)

    title = Column(String, nullable=False)
    handle = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # active, archived, draft
    tags = Column(String, nullable=True)

    price = Column(Numeric(18, 4), nullable=False, default=0)
    compare_at_price = Column(Numeric(18, 4), nullable=True)
    inventory = Column(Integer, nullable=False, default=0)
    image_url = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    shopify_created_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="products")

    def __str__(self):
        return f"{self.title} (${self.price})"


class Event(Base):
    """Append-only cart/checkout occurrence. Never updated or deleted here."""
    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)

    type = Column(String, nullable=False)
    source = Column(String, nullable=False, default="webhook")
    customer_shopify_id = Column(String, nullable=True)
    session_id = Column(String, nullable=True)  # Cart or checkout token
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)


class SyncLog(Base):
    """One sync attempt for one (tenant, record type).

    running -> completed | failed, exactly once. Both transitions stamp
    `completed_at`; a terminal row refuses further transitions.
    """
    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_tenant_started", "tenant_id", "started_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)

    type = Column(
        Enum(SyncTypeEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
    )
    status = Column(
        Enum(SyncStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=SyncStatusEnum.running,
    )
    item_count = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="sync_logs")

    def _ensure_running(self) -> None:
        if self.status != SyncStatusEnum.running:
            raise SyncLogStateError(
                f"SyncLog {self.id} is already {self.status.value}; no further transition allowed"
            )

    def mark_completed(self, item_count: int) -> None:
        self._ensure_running()
        self.status = SyncStatusEnum.completed
        self.item_count = item_count
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self._ensure_running()
        self.status = SyncStatusEnum.failed
        self.error = error
        self.completed_at = utcnow()

    def __str__(self):
        return f"{self.type.value} sync {self.status.value}"
