"""Dependency providers for routers."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db
from .models import Tenant
from .security import decode_token
from .telemetry import set_tenant_context


__all__ = ["Settings", "get_settings", "get_current_tenant", "get_sync_scheduler"]


def get_current_tenant(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None),
) -> Tenant:
    """Resolve the current tenant from the `Authorization` header.

    The header is expected to be in the form: "Bearer <jwt>", where the JWT
    carries a `tenant_id` claim issued by the auth service.
    """
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    # Remove optional "Bearer " prefix
    if authorization.startswith("Bearer "):
        token = authorization[len("Bearer ") :]
    else:
        token = authorization

    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    raw_tenant_id = payload.get("tenant_id")
    if not raw_tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    try:
        tenant_id = UUID(str(raw_tenant_id))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Tenant not found")

    set_tenant_context(str(tenant.id))
    return tenant


def get_sync_scheduler(request: Request):
    """Return the process-wide SyncScheduler created in the app lifespan."""
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync scheduler is not running",
        )
    return scheduler
