"""Dashboard insight endpoints.

WHAT:
    Read-only JSON views over the current tenant's synced data, including
    RFM customer segments and the 7-day revenue forecast.

WHY:
    Every view is computed on request from storage; nothing is cached.

REFERENCES:
    - storepulse/services/insights_service.py
    - storepulse/services/analytics_service.py
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storepulse.database import get_db
from storepulse.deps import get_current_tenant
from storepulse.models import Tenant
from storepulse.schemas import (
    CustomerRowOut,
    DailyPointOut,
    ForecastOut,
    OrderRowOut,
    ProductRowOut,
    ProductTypeCountOut,
    RFMOut,
    SummaryOut,
    TrendsOut,
)
from storepulse.services import analytics_service, insights_service

router = APIRouter(prefix="/insights", tags=["Insights"])


@router.get("/summary", response_model=SummaryOut)
def summary(tenant: Tenant = Depends(get_current_tenant), db: Session = Depends(get_db)):
    return insights_service.get_summary(db, tenant.id)


@router.get("/orders-by-date", response_model=List[DailyPointOut])
def orders_by_date(
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """Orders and revenue per day (default: last 30 days)."""
    return insights_service.get_orders_by_date(db, tenant.id, start_date, end_date)


@router.get("/top-customers", response_model=List[CustomerRowOut])
def top_customers(
    limit: int = Query(default=5, ge=1),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    return insights_service.get_top_customers(db, tenant.id, limit)


@router.get("/trends", response_model=TrendsOut)
def trends(
    days: int = Query(default=30, ge=1),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    return insights_service.get_trends(db, tenant.id, days)


@router.get("/products", response_model=List[ProductRowOut])
def products(
    limit: int = Query(default=10, ge=1),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    return insights_service.get_latest_products(db, tenant.id, limit)


@router.get("/recent-orders", response_model=List[OrderRowOut])
def recent_orders(
    limit: int = Query(default=10, ge=1),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    return insights_service.get_recent_orders(db, tenant.id, limit)


@router.get("/revenue-by-product-type", response_model=List[ProductTypeCountOut])
def revenue_by_product_type(tenant: Tenant = Depends(get_current_tenant), db: Session = Depends(get_db)):
    """Product count per product type."""
    return insights_service.get_product_type_counts(db, tenant.id)


@router.get("/rfm-segments", response_model=RFMOut)
def rfm_segments(tenant: Tenant = Depends(get_current_tenant), db: Session = Depends(get_db)):
    """Customers grouped into RFM segments with the first three of each."""
    return analytics_service.get_rfm_segments(db, tenant.id)


@router.get("/revenue-forecast", response_model=ForecastOut)
def revenue_forecast(tenant: Tenant = Depends(get_current_tenant), db: Session = Depends(get_db)):
    """Trailing 30-day daily revenue and a 7-day projection.

    `confidence` is a display heuristic, not a statistical interval.
    """
    return analytics_service.get_revenue_forecast(db, tenant.id)
