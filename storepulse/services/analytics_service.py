"""Analytics derivation: RFM segmentation and revenue forecasting.

WHAT:
    - RFM (Recency / Frequency / Monetary) scoring and segment assignment
      for every customer of a tenant.
    - A 7-day revenue projection from an OLS line fitted to the trailing
      30 days of daily revenue buckets.

WHY:
    - Recomputed on every request from synchronized data; nothing is cached
      or persisted.
    - The scoring and regression math are pure functions so they can be
      checked without a database; the `get_*` loaders only gather inputs.

NOTES:
    - Forecast `confidence` is a display heuristic derived from the residual
      spread relative to mean revenue. It is NOT a statistical confidence
      interval.
    - Frequency uses Shopify's `orders_count` and monetary uses Shopify's
      `total_spent`, not locally recomputed totals.

REFERENCES:
    - storepulse/routers/insights.py (rfm-segments, revenue-forecast)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from storepulse.models import Customer, Order, utcnow

logger = logging.getLogger(__name__)

# Days-since-last-order for customers with no local orders
NO_ORDER_DAYS = 999

TOP_CUSTOMERS_PER_SEGMENT = 3

# Evaluated in order; the first matching rule wins
SEGMENT_ORDER = [
    "Champions",
    "Loyal Customers",
    "Potential Loyalists",
    "Recent Customers",
    "Promising",
    "Need Attention",
    "At Risk",
    "Hibernating",
]

FORECAST_WINDOW_DAYS = 30
FORECAST_HORIZON_DAYS = 7
MIN_FORECAST_BUCKETS = 7


def _round2(value: float) -> float:
    return round(value, 2)


# =============================================================================
# RFM SEGMENTATION
# =============================================================================

def score_recency(days_since_last_order: int) -> int:
    if days_since_last_order <= 7:
        return 5
    if days_since_last_order <= 30:
        return 4
    if days_since_last_order <= 90:
        return 3
    if days_since_last_order <= 180:
        return 2
    return 1


def score_frequency(orders_count: int) -> int:
    if orders_count >= 10:
        return 5
    if orders_count >= 5:
        return 4
    if orders_count >= 3:
        return 3
    if orders_count >= 2:
        return 2
    return 1


def score_monetary(total_spent: float) -> int:
    if total_spent >= 1000:
        return 5
    if total_spent >= 500:
        return 4
    if total_spent >= 200:
        return 3
    if total_spent >= 50:
        return 2
    return 1


def assign_segment(r: int, f: int, m: int) -> str:
    """Map (R, F, M) scores to a segment name; first matching rule wins."""
    if r >= 4 and f >= 4 and m >= 4:
        return "Champions"
    if f >= 4 and m >= 3:
        return "Loyal Customers"
    if r >= 4 and f >= 2:
        return "Potential Loyalists"
    if r >= 4 and f == 1:
        return "Recent Customers"
    if r >= 3 and m >= 2:
        return "Promising"
    if r <= 2 and f >= 3:
        return "Need Attention"
    if r <= 2 and f >= 2:
        return "At Risk"
    return "Hibernating"


def days_since(last_order_at: Optional[datetime], now: datetime) -> int:
    """Whole days elapsed (floored); NO_ORDER_DAYS when there is no order."""
    if last_order_at is None:
        return NO_ORDER_DAYS
    return math.floor((now - last_order_at).total_seconds() / 86400)


@dataclass
class RFMCustomer:
    """Input row for segmentation."""
    name: str
    email: Optional[str]
    total_spent: float
    orders_count: int
    last_order_at: Optional[datetime] = None


@dataclass
class SegmentCustomer:
    name: str
    email: Optional[str]
    total_spent: float
    orders_count: int
    days_since_last_order: int
    recency_score: int
    frequency_score: int
    monetary_score: int
    rfm_score: int


@dataclass
class Segment:
    segment: str
    count: int = 0
    total_value: float = 0.0
    avg_value: float = 0.0
    top_customers: List[SegmentCustomer] = field(default_factory=list)


@dataclass
class RFMResult:
    segments: List[Segment]
    total_customers: int


def build_segments(customers: Iterable[RFMCustomer], now: datetime) -> RFMResult:
    """Score and bucket customers; only non-empty segments are returned.

    Each segment keeps its first three customers in input order.
    """
    buckets: Dict[str, Segment] = {name: Segment(segment=name) for name in SEGMENT_ORDER}
    totals: Dict[str, float] = {name: 0.0 for name in SEGMENT_ORDER}
    total_customers = 0

    for customer in customers:
        total_customers += 1
        days = days_since(customer.last_order_at, now)
        r = score_recency(days)
        f = score_frequency(customer.orders_count)
        m = score_monetary(customer.total_spent)
        name = assign_segment(r, f, m)

        bucket = buckets[name]
        bucket.count += 1
        totals[name] += customer.total_spent
        if len(bucket.top_customers) < TOP_CUSTOMERS_PER_SEGMENT:
            bucket.top_customers.append(SegmentCustomer(
                name=customer.name,
                email=customer.email,
                total_spent=customer.total_spent,
                orders_count=customer.orders_count,
                days_since_last_order=days,
                recency_score=r,
                frequency_score=f,
                monetary_score=m,
                rfm_score=r + f + m,
            ))

    segments = []
    for name in SEGMENT_ORDER:
        bucket = buckets[name]
        if bucket.count == 0:
            continue
        bucket.total_value = _round2(totals[name])
        bucket.avg_value = _round2(totals[name] / bucket.count)
        segments.append(bucket)

    return RFMResult(segments=segments, total_customers=total_customers)


def get_rfm_segments(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> RFMResult:
    """Load every customer of a tenant with its latest order date and segment them."""
    now = now or utcnow()

    last_orders = (
        db.query(
            Order.customer_id.label("customer_id"),
            func.max(Order.order_date).label("last_order_at"),
        )
        .filter(Order.tenant_id == tenant_id, Order.customer_id.isnot(None))
        .group_by(Order.customer_id)
        .subquery()
    )

    rows = (
        db.query(Customer, last_orders.c.last_order_at)
        .outerjoin(last_orders, last_orders.c.customer_id == Customer.id)
        .filter(Customer.tenant_id == tenant_id)
        .order_by(Customer.created_at, Customer.shopify_id)
        .all()
    )

    return build_segments(
        (
            RFMCustomer(
                name=customer.display_name,
                email=customer.email,
                total_spent=float(customer.total_spent or 0),
                orders_count=customer.orders_count or 0,
                last_order_at=last_order_at,
            )
            for customer, last_order_at in rows
        ),
        now,
    )


# =============================================================================
# REVENUE FORECAST
# =============================================================================

@dataclass
class RevenueBucket:
    date: date
    revenue: float
    orders: int


@dataclass
class ForecastPoint:
    date: date
    predicted_revenue: float
    confidence: int


@dataclass
class ForecastResult:
    historical: List[RevenueBucket]
    forecast: List[ForecastPoint]
    trend: str
    confidence: int = 0
    weekly_growth: float = 0.0
    avg_daily_revenue: float = 0.0
    predicted_weekly_revenue: float = 0.0
    slope: float = 0.0


def bucket_daily_revenue(orders: Iterable[tuple]) -> List[RevenueBucket]:
    """Group (order_date, total_price) pairs by calendar day, ascending.

    Days without orders produce no bucket.
    """
    revenue: Dict[date, Decimal] = {}
    counts: Dict[date, int] = {}
    for order_date, total_price in orders:
        day = order_date.date()
        revenue[day] = revenue.get(day, Decimal("0")) + Decimal(str(total_price or 0))
        counts[day] = counts.get(day, 0) + 1

    return [
        RevenueBucket(date=day, revenue=float(revenue[day]), orders=counts[day])
        for day in sorted(revenue)
    ]


def forecast_revenue(buckets: Sequence[RevenueBucket]) -> ForecastResult:
    """Fit revenue ~ bucket index by OLS and project the next 7 days.

    Fewer than 7 buckets returns trend "insufficient_data" with an empty
    forecast. Projected points are dated from the last bucket's date, and
    negative projections are floored at 0.
    """
    historical = list(buckets)
    n = len(historical)
    if n < MIN_FORECAST_BUCKETS:
        return ForecastResult(historical=historical, forecast=[], trend="insufficient_data", confidence=0)

    revenues = [b.revenue for b in historical]
    x_mean = (n - 1) / 2
    y_mean = sum(revenues) / n

    numerator = 0.0
    denominator = 0.0
    for i, y in enumerate(revenues):
        numerator += (i - x_mean) * (y - y_mean)
        denominator += (i - x_mean) ** 2

    slope = numerator / denominator if denominator != 0 else 0.0
    intercept = y_mean - slope * x_mean

    # Population variance of the residuals around the fitted line
    variance = sum((y - (intercept + slope * i)) ** 2 for i, y in enumerate(revenues)) / n
    std_dev = math.sqrt(variance)

    if y_mean > 0:
        raw_confidence = 100 - (std_dev / y_mean * 100 * 0.5)
        confidence = round(max(0.0, min(100.0, raw_confidence)))
    else:
        confidence = 0

    last_date = historical[-1].date
    forecast = []
    for i in range(1, FORECAST_HORIZON_DAYS + 1):
        predicted = intercept + slope * (n - 1 + i)
        forecast.append(ForecastPoint(
            date=last_date + timedelta(days=i),
            predicted_revenue=max(0.0, _round2(predicted)),
            confidence=confidence,
        ))

    if slope > y_mean * 0.01:
        trend = "growing"
    elif slope < -y_mean * 0.01:
        trend = "declining"
    else:
        trend = "stable"

    weekly_growth = 0.0
    if n > 7:
        last_week = sum(revenues[-7:])
        prior_week = sum(revenues[-14:-7])
        if prior_week > 0:
            weekly_growth = (last_week / prior_week - 1) * 100

    return ForecastResult(
        historical=historical,
        forecast=forecast,
        trend=trend,
        confidence=confidence,
        weekly_growth=_round2(weekly_growth),
        avg_daily_revenue=_round2(y_mean),
        predicted_weekly_revenue=_round2(sum(p.predicted_revenue for p in forecast)),
        slope=_round2(slope),
    )


def get_revenue_forecast(db: Session, tenant_id: UUID, now: Optional[datetime] = None) -> ForecastResult:
    """Bucket the trailing 30 days of orders and forecast the next 7."""
    now = now or utcnow()
    start = now - timedelta(days=FORECAST_WINDOW_DAYS)

    rows = (
        db.query(Order.order_date, Order.total_price)
        .filter(Order.tenant_id == tenant_id, Order.order_date >= start)
        .order_by(Order.order_date)
        .all()
    )
    buckets = bucket_daily_revenue(rows)
    logger.debug(f"[ANALYTICS] Forecast input: tenant={tenant_id}, buckets={len(buckets)}")
    return forecast_revenue(buckets)
