"""Pydantic schemas for request/response payloads."""

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, constr

from .models import SyncStatusEnum, SyncTypeEnum


# =============================================================================
# SHOPIFY SYNC
# =============================================================================

class SyncRequest(BaseModel):
    """Request body for a manual sync."""

    type: Literal["customers", "orders", "products", "all"] = Field(
        default="all",
        description="Record type to sync, or 'all'",
    )


class SyncStartedResponse(BaseModel):
    success: bool = True
    message: str
    types: List[SyncTypeEnum]


class SyncLogOut(BaseModel):
    """One sync attempt as shown on the settings page."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: SyncTypeEnum
    status: SyncStatusEnum
    item_count: Optional[int] = None
    error: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class SyncStatusResponse(BaseModel):
    last_sync_at: Optional[datetime] = None
    recent_logs: List[SyncLogOut] = Field(default_factory=list)


class ConnectRequest(BaseModel):
    """Store the Shopify Admin API access token for the current tenant.

    The token is encrypted before it is persisted and is not validated
    against Shopify here; the first sync reports a bad token as a failed run.
    """

    access_token: constr(strip_whitespace=True, min_length=1) = Field(
        description="Shopify Admin API access token (shpat_...)",
    )
    webhook_secret: Optional[str] = Field(
        default=None,
        description="Optional per-store webhook signing secret",
    )


# =============================================================================
# TENANTS
# =============================================================================

class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    shop_domain: str
    is_active: bool
    is_connected: bool
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class TenantCounts(BaseModel):
    customers: int = 0
    orders: int = 0
    products: int = 0


class CurrentTenantResponse(TenantOut):
    counts: TenantCounts


class ConnectResponse(BaseModel):
    success: bool = True
    data: TenantOut
    message: str


# =============================================================================
# WEBHOOKS / HEALTH
# =============================================================================

class WebhookAck(BaseModel):
    """Always returned with 200 so Shopify does not retry."""

    received: bool = True
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    scheduler_running: bool = False


# =============================================================================
# INSIGHTS
# =============================================================================

class PeriodStatsOut(BaseModel):
    orders: int
    revenue: float
    new_customers: Optional[int] = None


class TotalsOut(BaseModel):
    customers: int
    orders: int
    products: int
    revenue: float


class SummaryOut(BaseModel):
    totals: TotalsOut
    today: PeriodStatsOut
    this_month: PeriodStatsOut


class DailyPointOut(BaseModel):
    date: date
    orders: int
    revenue: float
    customers: int = 0


class TrendsOut(BaseModel):
    daily: List[DailyPointOut]
    orders_per_day: float
    revenue_per_day: float


class CustomerRowOut(BaseModel):
    id: UUID
    name: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    total_spent: float
    orders_count: int


class ProductRowOut(BaseModel):
    id: UUID
    title: str
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    price: float
    inventory: int
    image_url: Optional[str] = None


class OrderRowOut(BaseModel):
    id: UUID
    order_number: Optional[str] = None
    name: Optional[str] = None
    total_price: float
    currency: str
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    order_date: datetime
    customer_name: str
    customer_email: Optional[str] = None


class ProductTypeCountOut(BaseModel):
    type: str
    count: int


class SegmentCustomerOut(BaseModel):
    name: str
    email: Optional[str] = None
    total_spent: float
    orders_count: int
    days_since_last_order: int
    recency_score: int
    frequency_score: int
    monetary_score: int
    rfm_score: int


class SegmentOut(BaseModel):
    segment: str
    count: int
    total_value: float
    avg_value: float
    top_customers: List[SegmentCustomerOut]


class RFMOut(BaseModel):
    segments: List[SegmentOut]
    total_customers: int


class RevenueBucketOut(BaseModel):
    date: date
    revenue: float
    orders: int


class ForecastPointOut(BaseModel):
    date: date
    predicted_revenue: float
    confidence: int = Field(description="Display heuristic from residual spread, not a statistical interval")


class ForecastOut(BaseModel):
    historical: List[RevenueBucketOut]
    forecast: List[ForecastPointOut]
    trend: Literal["growing", "declining", "stable", "insufficient_data"]
    confidence: int = 0
    weekly_growth: float = 0.0
    avg_daily_revenue: float = 0.0
    predicted_weekly_revenue: float = 0.0
    slope: float = 0.0
