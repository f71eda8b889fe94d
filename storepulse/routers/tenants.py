"""Tenant endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from storepulse.database import get_db
from storepulse.deps import get_current_tenant
from storepulse.models import Customer, Order, Product, Tenant
from storepulse.schemas import CurrentTenantResponse, TenantCounts, TenantOut

router = APIRouter(prefix="/tenants", tags=["Tenants"])


@router.get("/current", response_model=CurrentTenantResponse)
def get_current(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """Current tenant with its synced record counts."""

    def count(model) -> int:
        return db.query(func.count(model.id)).filter(model.tenant_id == tenant.id).scalar() or 0

    base = TenantOut.model_validate(tenant)
    return CurrentTenantResponse(
        **base.model_dump(),
        counts=TenantCounts(
            customers=count(Customer),
            orders=count(Order),
            products=count(Product),
        ),
    )
