"""Shopify record reconciliation.

WHAT:
    Maps one external Shopify record (customer, order, product) into its
    local row, keyed by the tenant-scoped natural key (tenant_id, shopify_id),
    and appends cart/checkout events.

WHY:
    - The scheduled pull path and the webhook push path must produce identical
      rows for identical payloads, so both call `reconcile_record`.
    - Applying the same payload twice leaves storage unchanged (idempotent upsert).

CONTRACT:
    - Payloads are parsed completely before anything is written; a payload that
      cannot be mapped raises MalformedRecordError and writes nothing.
    - Every record is committed on its own. An order, its embedded customer and
      its replaced line items become visible in one commit.
    - SQLAlchemy failures are rolled back and re-raised as StorageError.

REFERENCES:
    - storepulse/services/shopify_sync_service.py (pull path)
    - storepulse/routers/shopify_webhooks.py (push path)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storepulse.errors import MalformedRecordError, StorageError
from storepulse.models import (
    Customer,
    Event,
    EventTypeEnum,
    Order,
    OrderLineItem,
    Product,
    SyncTypeEnum,
)

logger = logging.getLogger(__name__)


# Webhook topics that append an Event instead of upserting a record
EVENT_TOPICS: Dict[str, EventTypeEnum] = {
    "carts/create": EventTypeEnum.cart_updated,
    "carts/update": EventTypeEnum.cart_updated,
    "checkouts/create": EventTypeEnum.checkout_started,
    "checkouts/delete": EventTypeEnum.cart_abandoned,
}

# Webhook topics that reconcile a record, keyed to the record kind
RECORD_TOPICS: Dict[str, SyncTypeEnum] = {
    "customers/create": SyncTypeEnum.customers,
    "customers/update": SyncTypeEnum.customers,
    "orders/create": SyncTypeEnum.orders,
    "orders/updated": SyncTypeEnum.orders,
    "orders/update": SyncTypeEnum.orders,
    "products/create": SyncTypeEnum.products,
    "products/update": SyncTypeEnum.products,
}


# =============================================================================
# PARSING HELPERS
# =============================================================================

def _require_id(payload: Any, kind: str) -> str:
    if not isinstance(payload, dict):
        raise MalformedRecordError(f"{kind} payload is not an object", kind=kind)
    external_id = payload.get("id")
    if external_id is None or external_id == "":
        raise MalformedRecordError(f"{kind} payload has no id", kind=kind)
    return str(external_id)


def _parse_decimal(value: Any, field_name: str, kind: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Parse a Shopify money string ("19.99") into a non-negative Decimal."""
    if value is None or value == "":
        return default
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise MalformedRecordError(f"{kind}.{field_name} is not a number: {value!r}", kind=kind)
    if not parsed.is_finite() or parsed < 0:
        raise MalformedRecordError(f"{kind}.{field_name} must be a non-negative amount: {value!r}", kind=kind)
    return parsed


def _parse_int(value: Any, field_name: str, kind: str, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MalformedRecordError(f"{kind}.{field_name} is not an integer: {value!r}", kind=kind)
    try:
        return int(value)
    except (ValueError, TypeError):
        raise MalformedRecordError(f"{kind}.{field_name} is not an integer: {value!r}", kind=kind)


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a Shopify ISO timestamp into a naive UTC datetime.

    Returns None for missing or unparseable values.
    """
    if not dt_str:
        return None
    try:
        parsed = datetime.fromisoformat(str(dt_str).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _nested_dict(value: Any, field_name: str, kind: str) -> Dict[str, Any]:
    """Nested object field; missing or empty becomes {}."""
    if value is None or value == "":
        return {}
    if not isinstance(value, dict):
        raise MalformedRecordError(f"{kind}.{field_name} is not an object: {value!r}", kind=kind)
    return value


def _nested_list(value: Any, field_name: str, kind: str) -> List[Any]:
    """Nested array field; missing or empty becomes []."""
    if value is None or value == "":
        return []
    if not isinstance(value, list):
        raise MalformedRecordError(f"{kind}.{field_name} is not a list: {value!r}", kind=kind)
    return value


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# =============================================================================
# PARSED RECORDS
# =============================================================================
# WHAT: Fully validated column values, produced before any write

@dataclass
class _CustomerFields:
    shopify_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    tags: Optional[str] = None
    total_spent: Decimal = Decimal("0")
    orders_count: int = 0
    shopify_created_at: Optional[datetime] = None


@dataclass
class _LineItemFields:
    shopify_id: Optional[str]
    product_shopify_id: Optional[str]
    variant_shopify_id: Optional[str]
    title: str
    sku: Optional[str]
    quantity: int
    price: Decimal


@dataclass
class _OrderFields:
    shopify_id: str
    order_number: Optional[str]
    name: Optional[str]
    total_price: Decimal
    subtotal_price: Optional[Decimal]
    total_tax: Optional[Decimal]
    total_discounts: Optional[Decimal]
    currency: str
    financial_status: Optional[str]
    fulfillment_status: Optional[str]
    order_date: datetime
    customer: Optional[_CustomerFields] = None
    line_items: List[_LineItemFields] = field(default_factory=list)


def _parse_customer(payload: Dict[str, Any]) -> _CustomerFields:
    shopify_id = _require_id(payload, "customer")
    return _CustomerFields(
        shopify_id=shopify_id,
        email=_str_or_none(payload.get("email")),
        first_name=_str_or_none(payload.get("first_name")),
        last_name=_str_or_none(payload.get("last_name")),
        phone=_str_or_none(payload.get("phone")),
        tags=_str_or_none(payload.get("tags")),
        total_spent=_parse_decimal(payload.get("total_spent"), "total_spent", "customer", Decimal("0")),
        orders_count=_parse_int(payload.get("orders_count"), "orders_count", "customer"),
        shopify_created_at=_parse_datetime(payload.get("created_at")),
    )


def _parse_embedded_customer(payload: Dict[str, Any]) -> _CustomerFields:
    """Customer snippet inside an order; name and phone fall back to default_address."""
    shopify_id = _require_id(payload, "customer")
    address = _nested_dict(payload.get("default_address"), "customer.default_address", "order")
    return _CustomerFields(
        shopify_id=shopify_id,
        email=_str_or_none(payload.get("email")),
        first_name=_str_or_none(payload.get("first_name") or address.get("first_name")),
        last_name=_str_or_none(payload.get("last_name") or address.get("last_name")),
        phone=_str_or_none(payload.get("phone") or address.get("phone")),
        tags=_str_or_none(payload.get("tags")),
        shopify_created_at=_parse_datetime(payload.get("created_at")),
    )


def _parse_line_item(item: Any) -> _LineItemFields:
    if not isinstance(item, dict):
        raise MalformedRecordError("line item is not an object", kind="order")
    return _LineItemFields(
        shopify_id=_str_or_none(item.get("id")),
        product_shopify_id=_str_or_none(item.get("product_id")),
        variant_shopify_id=_str_or_none(item.get("variant_id")),
        title=str(item.get("title") or item.get("name") or ""),
        sku=_str_or_none(item.get("sku")),
        quantity=_parse_int(item.get("quantity"), "line_items.quantity", "order", default=1),
        price=_parse_decimal(item.get("price"), "line_items.price", "order", Decimal("0")),
    )


def _parse_order(payload: Dict[str, Any]) -> _OrderFields:
    shopify_id = _require_id(payload, "order")

    order_date = _parse_datetime(payload.get("created_at"))
    if order_date is None:
        raise MalformedRecordError(f"order {shopify_id} has no valid created_at", kind="order")

    customer_payload = _nested_dict(payload.get("customer"), "customer", "order")
    customer = None
    if customer_payload.get("id"):
        customer = _parse_embedded_customer(customer_payload)
    line_items = _nested_list(payload.get("line_items"), "line_items", "order")

    order_number = payload.get("order_number")
    return _OrderFields(
        shopify_id=shopify_id,
        order_number=str(order_number) if order_number is not None else _str_or_none(payload.get("name")),
        name=_str_or_none(payload.get("name")),
        total_price=_parse_decimal(payload.get("total_price"), "total_price", "order", Decimal("0")),
        subtotal_price=_parse_decimal(payload.get("subtotal_price"), "subtotal_price", "order"),
        total_tax=_parse_decimal(payload.get("total_tax"), "total_tax", "order"),
        total_discounts=_parse_decimal(payload.get("total_discounts"), "total_discounts", "order"),
        currency=str(payload.get("currency") or "USD"),
        financial_status=_str_or_none(payload.get("financial_status")),
        fulfillment_status=_str_or_none(payload.get("fulfillment_status")),
        order_date=order_date,
        customer=customer,
        line_items=[_parse_line_item(item) for item in line_items],
    )


def _parse_product(payload: Dict[str, Any]) -> Dict[str, Any]:
    shopify_id = _require_id(payload, "product")
    title = payload.get("title")
    if not title:
        raise MalformedRecordError(f"product {shopify_id} has no title", kind="product")

    # First variant only: price, compare-at price and inventory
    variants = _nested_list(payload.get("variants"), "variants", "product")
    first_variant = _nested_dict(variants[0], "variants[0]", "product") if variants else {}

    image = _nested_dict(payload.get("image"), "image", "product")
    images = _nested_list(payload.get("images"), "images", "product")
    image_url = image.get("src")
    if not image_url and images:
        image_url = _nested_dict(images[0], "images[0]", "product").get("src")

    return {
        "shopify_id": shopify_id,
        "title": str(title),
        "handle": _str_or_none(payload.get("handle")),
        "vendor": _str_or_none(payload.get("vendor")),
        "product_type": _str_or_none(payload.get("product_type")),
        "status": str(payload.get("status") or "active"),
        "tags": _str_or_none(payload.get("tags")),
        "price": _parse_decimal(first_variant.get("price"), "variants.price", "product", Decimal("0")),
        "compare_at_price": _parse_decimal(
            first_variant.get("compare_at_price"), "variants.compare_at_price", "product"
        ),
        "inventory": _parse_int(first_variant.get("inventory_quantity"), "variants.inventory_quantity", "product"),
        "image_url": _str_or_none(image_url),
        "shopify_created_at": _parse_datetime(payload.get("created_at")),
    }


# =============================================================================
# WRITES
# =============================================================================

def _commit(db: Session, label: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[RECONCILE] Storage failure for {label}: {e}")
        raise StorageError(f"Failed to store {label}: {e}") from e


def _find_customer(db: Session, tenant_id: UUID, shopify_id: str) -> Optional[Customer]:
    return db.query(Customer).filter(
        Customer.tenant_id == tenant_id,
        Customer.shopify_id == shopify_id,
    ).first()


def _merge_embedded_customer(db: Session, tenant_id: UUID, fields: _CustomerFields) -> Customer:
    """Upsert a customer seen inside an order without committing.

    Only non-empty fields are applied; the counters are left to the full
    customer sync (new rows start at zero).
    """
    customer = _find_customer(db, tenant_id, fields.shopify_id)
    if customer is None:
        customer = Customer(
            tenant_id=tenant_id,
            shopify_id=fields.shopify_id,
            total_spent=Decimal("0"),
            orders_count=0,
            shopify_created_at=fields.shopify_created_at,
        )
        db.add(customer)

    for attr in ("email", "first_name", "last_name", "phone", "tags"):
        value = getattr(fields, attr)
        if value:
            setattr(customer, attr, value)
    return customer


def upsert_customer(db: Session, tenant_id: UUID, payload: Dict[str, Any]) -> Customer:
    """Create or update a customer from a full customer payload.

    Mutable fields are overwritten verbatim, including `total_spent` and
    `orders_count`; `shopify_created_at` is only set on creation.
    """
    fields = _parse_customer(payload)
    try:
        customer = _find_customer(db, tenant_id, fields.shopify_id)
        if customer is None:
            customer = Customer(
                tenant_id=tenant_id,
                shopify_id=fields.shopify_id,
                shopify_created_at=fields.shopify_created_at,
            )
            db.add(customer)

        customer.email = fields.email
        customer.first_name = fields.first_name
        customer.last_name = fields.last_name
        customer.phone = fields.phone
        customer.tags = fields.tags
        customer.total_spent = fields.total_spent
        customer.orders_count = fields.orders_count
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Failed to store customer {fields.shopify_id}: {e}") from e

    _commit(db, f"customer {fields.shopify_id}")
    return customer


def upsert_order(db: Session, tenant_id: UUID, payload: Dict[str, Any]) -> Order:
    """Create or update an order, its embedded customer and its line items.

    Line items are a strict function of the latest payload: the existing set
    is deleted and the current set inserted, in the same commit as the order.
    """
    fields = _parse_order(payload)
    try:
        customer = None
        if fields.customer is not None:
            customer = _merge_embedded_customer(db, tenant_id, fields.customer)

        order = db.query(Order).filter(
            Order.tenant_id == tenant_id,
            Order.shopify_id == fields.shopify_id,
        ).first()
        if order is None:
            order = Order(tenant_id=tenant_id, shopify_id=fields.shopify_id)
            db.add(order)

        order.customer = customer  # None for guest checkouts
        order.order_number = fields.order_number
        order.name = fields.name
        order.total_price = fields.total_price
        order.subtotal_price = fields.subtotal_price
        order.total_tax = fields.total_tax
        order.total_discounts = fields.total_discounts
        order.currency = fields.currency
        order.financial_status = fields.financial_status
        order.fulfillment_status = fields.fulfillment_status
        order.order_date = fields.order_date

        # Replace, never merge
        order.line_items.clear()
        db.flush()
        order.line_items.extend(
            OrderLineItem(
                shopify_id=item.shopify_id,
                product_shopify_id=item.product_shopify_id,
                variant_shopify_id=item.variant_shopify_id,
                title=item.title,
                sku=item.sku,
                quantity=item.quantity,
                price=item.price,
            )
            for item in fields.line_items
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Failed to store order {fields.shopify_id}: {e}") from e

    _commit(db, f"order {fields.shopify_id}")
    return order


def upsert_product(db: Session, tenant_id: UUID, payload: Dict[str, Any]) -> Product:
    """Create or update a product; `shopify_created_at` is only set on creation."""
    values = _parse_product(payload)
    shopify_id = values.pop("shopify_id")
    shopify_created_at = values.pop("shopify_created_at")
    try:
        product = db.query(Product).filter(
            Product.tenant_id == tenant_id,
            Product.shopify_id == shopify_id,
        ).first()
        if product is None:
            product = Product(
                tenant_id=tenant_id,
                shopify_id=shopify_id,
                shopify_created_at=shopify_created_at,
            )
            db.add(product)

        for attr, value in values.items():
            setattr(product, attr, value)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Failed to store product {shopify_id}: {e}") from e

    _commit(db, f"product {shopify_id}")
    return product


def record_event(db: Session, tenant_id: UUID, event_type: EventTypeEnum, payload: Dict[str, Any]) -> Event:
    """Append a cart/checkout event. Events are never updated."""
    if not isinstance(payload, dict):
        raise MalformedRecordError("event payload is not an object", kind="event")

    customer = payload.get("customer") or {}
    event = Event(
        tenant_id=tenant_id,
        type=event_type.value,
        source="webhook",
        customer_shopify_id=_str_or_none(customer.get("id")) if isinstance(customer, dict) else None,
        session_id=_str_or_none(payload.get("token")),
        payload=payload,
    )
    db.add(event)
    _commit(db, f"{event_type.value} event")
    return event


_UPSERTS: Dict[SyncTypeEnum, Callable[[Session, UUID, Dict[str, Any]], Any]] = {
    SyncTypeEnum.customers: upsert_customer,
    SyncTypeEnum.orders: upsert_order,
    SyncTypeEnum.products: upsert_product,
}


def reconcile_record(db: Session, tenant_id: UUID, kind: SyncTypeEnum, payload: Dict[str, Any]) -> Any:
    """Map one external record of `kind` into storage.

    Shared by the sync orchestrator and the webhook receiver.

    Raises:
        MalformedRecordError: payload cannot be mapped; nothing was written
        StorageError: the write failed and was rolled back
    """
    upsert = _UPSERTS[SyncTypeEnum(kind)]
    return upsert(db, tenant_id, payload)


def resolve_topic(topic: Optional[str]) -> Tuple[Optional[SyncTypeEnum], Optional[EventTypeEnum]]:
    """Return (record kind, event type) for a webhook topic; both None if unhandled."""
    if not topic:
        return None, None
    return RECORD_TOPICS.get(topic), EVENT_TOPICS.get(topic)
