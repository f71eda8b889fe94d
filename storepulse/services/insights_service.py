"""Dashboard insight views.

WHAT:
    Read-only, tenant-scoped aggregates behind the dashboard widgets:
    summary totals, daily order series, top customers, daily trends with
    averages, latest products, recent orders and product counts per type.

WHY:
    Routers stay thin; every query here is filtered by `tenant_id`.

REFERENCES:
    - storepulse/routers/insights.py
    - storepulse/services/analytics_service.py (RFM and forecast views)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from storepulse.models import Customer, Order, Product, utcnow

MAX_TOP_CUSTOMERS = 20
MAX_TREND_DAYS = 90
MAX_PRODUCTS = 50
MAX_RECENT_ORDERS = 50
DEFAULT_RANGE_DAYS = 30


def _to_float(value: Optional[Decimal]) -> float:
    return float(value or 0)


def _clamp_limit(limit: int, maximum: int) -> int:
    return max(1, min(limit, maximum))


# =============================================================================
# SUMMARY
# =============================================================================

@dataclass
class PeriodStats:
    orders: int = 0
    revenue: float = 0.0
    new_customers: Optional[int] = None


@dataclass
class Totals:
    customers: int
    orders: int
    products: int
    revenue: float


@dataclass
class Summary:
    totals: Totals
    today: PeriodStats
    this_month: PeriodStats


def _order_stats_since(db: Session, tenant_id: UUID, since: datetime) -> PeriodStats:
    count, revenue = db.query(func.count(Order.id), func.sum(Order.total_price)).filter(
        Order.tenant_id == tenant_id,
        Order.order_date >= since,
    ).one()
    return PeriodStats(orders=count or 0, revenue=_to_float(revenue))


def get_summary(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> Summary:
    """Store totals plus today's and this month's order figures (UTC days)."""
    now = now or utcnow()
    today_start = datetime.combine(now.date(), time.min)
    month_start = today_start.replace(day=1)

    customers = db.query(func.count(Customer.id)).filter(Customer.tenant_id == tenant_id).scalar() or 0
    products = db.query(func.count(Product.id)).filter(Product.tenant_id == tenant_id).scalar() or 0
    orders, revenue = db.query(func.count(Order.id), func.sum(Order.total_price)).filter(
        Order.tenant_id == tenant_id
    ).one()

    this_month = _order_stats_since(db, tenant_id, month_start)
    this_month.new_customers = db.query(func.count(Customer.id)).filter(
        Customer.tenant_id == tenant_id,
        Customer.created_at >= month_start,
    ).scalar() or 0

    return Summary(
        totals=Totals(customers=customers, orders=orders or 0, products=products, revenue=_to_float(revenue)),
        today=_order_stats_since(db, tenant_id, today_start),
        this_month=this_month,
    )


# =============================================================================
# TIME SERIES
# =============================================================================

@dataclass
class DailyPoint:
    date: date
    orders: int
    revenue: float
    customers: int = 0


@dataclass
class Trends:
    daily: List[DailyPoint]
    orders_per_day: float
    revenue_per_day: float


def _daily_points(db: Session, tenant_id: UUID, start: datetime, end: Optional[datetime] = None) -> List[DailyPoint]:
    query = db.query(Order.order_date, Order.total_price, Order.customer_id).filter(
        Order.tenant_id == tenant_id,
        Order.order_date >= start,
    )
    if end is not None:
        query = query.filter(Order.order_date <= end)

    revenue: Dict[date, Decimal] = {}
    counts: Dict[date, int] = {}
    customers: Dict[date, Set[UUID]] = {}
    for order_date, total_price, customer_id in query.all():
        day = order_date.date()
        revenue[day] = revenue.get(day, Decimal("0")) + Decimal(str(total_price or 0))
        counts[day] = counts.get(day, 0) + 1
        if customer_id is not None:
            customers.setdefault(day, set()).add(customer_id)

    return [
        DailyPoint(
            date=day,
            orders=counts[day],
            revenue=float(revenue[day]),
            customers=len(customers.get(day, ())),
        )
        for day in sorted(revenue)
    ]


def get_orders_by_date(
    db: Session,
    tenant_id: UUID,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[DailyPoint]:
    """Orders and revenue per day; defaults to the 30 days ending now."""
    end = end_date or utcnow()
    start = start_date or end - timedelta(days=DEFAULT_RANGE_DAYS)
    return _daily_points(db, tenant_id, start, end)


def get_trends(db: Session, tenant_id: UUID, days: int = 30, now: Optional[datetime] = None) -> Trends:
    """Daily orders, revenue and distinct customers with per-day averages."""
    days = _clamp_limit(days, MAX_TREND_DAYS)
    now = now or utcnow()
    start = datetime.combine(now.date() - timedelta(days=days), time.min)

    daily = _daily_points(db, tenant_id, start)
    if daily:
        orders_per_day = round(sum(p.orders for p in daily) / len(daily), 2)
        revenue_per_day = round(sum(p.revenue for p in daily) / len(daily), 2)
    else:
        orders_per_day = revenue_per_day = 0.0

    return Trends(daily=daily, orders_per_day=orders_per_day, revenue_per_day=revenue_per_day)


# =============================================================================
# LISTS
# =============================================================================

@dataclass
class CustomerRow:
    id: UUID
    name: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    total_spent: float
    orders_count: int


@dataclass
class ProductRow:
    id: UUID
    title: str
    vendor: Optional[str]
    product_type: Optional[str]
    price: float
    inventory: int
    image_url: Optional[str]


@dataclass
class OrderRow:
    id: UUID
    order_number: Optional[str]
    name: Optional[str]
    total_price: float
    currency: str
    financial_status: Optional[str]
    fulfillment_status: Optional[str]
    order_date: datetime
    customer_name: str
    customer_email: Optional[str] = None


@dataclass
class ProductTypeCount:
    type: str
    count: int


def get_top_customers(db: Session, tenant_id: UUID, limit: int = 5) -> List[CustomerRow]:
    customers = (
        db.query(Customer)
        .filter(Customer.tenant_id == tenant_id)
        .order_by(Customer.total_spent.desc())
        .limit(_clamp_limit(limit, MAX_TOP_CUSTOMERS))
        .all()
    )
    return [
        CustomerRow(
            id=c.id,
            name=c.display_name,
            email=c.email,
            first_name=c.first_name,
            last_name=c.last_name,
            total_spent=_to_float(c.total_spent),
            orders_count=c.orders_count or 0,
        )
        for c in customers
    ]


def get_latest_products(db: Session, tenant_id: UUID, limit: int = 10) -> List[ProductRow]:
    products = (
        db.query(Product)
        .filter(Product.tenant_id == tenant_id)
        .order_by(Product.created_at.desc())
        .limit(_clamp_limit(limit, MAX_PRODUCTS))
        .all()
    )
    return [
        ProductRow(
            id=p.id,
            title=p.title,
            vendor=p.vendor,
            product_type=p.product_type,
            price=_to_float(p.price),
            inventory=p.inventory or 0,
            image_url=p.image_url,
        )
        for p in products
    ]


def get_recent_orders(db: Session, tenant_id: UUID, limit: int = 10) -> List[OrderRow]:
    """Newest orders first; guest orders show `customer_name` "Guest"."""
    orders = (
        db.query(Order)
        .options(joinedload(Order.customer))
        .filter(Order.tenant_id == tenant_id)
        .order_by(Order.order_date.desc())
        .limit(_clamp_limit(limit, MAX_RECENT_ORDERS))
        .all()
    )
    return [
        OrderRow(
            id=o.id,
            order_number=o.order_number,
            name=o.name,
            total_price=_to_float(o.total_price),
            currency=o.currency,
            financial_status=o.financial_status,
            fulfillment_status=o.fulfillment_status,
            order_date=o.order_date,
            customer_name=o.customer_name,
            customer_email=o.customer.email if o.customer else None,
        )
        for o in orders
    ]


def get_product_type_counts(db: Session, tenant_id: UUID) -> List[ProductTypeCount]:
    """Product count per product type; blank types are grouped as "Uncategorized"."""
    rows = (
        db.query(Product.product_type, func.count(Product.id))
        .filter(Product.tenant_id == tenant_id)
        .group_by(Product.product_type)
        .all()
    )

    counts: Dict[str, int] = {}
    for product_type, count in rows:
        key = product_type or "Uncategorized"
        counts[key] = counts.get(key, 0) + count

    return [
        ProductTypeCount(type=name, count=count)
        for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]
