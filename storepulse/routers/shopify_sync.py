"""Shopify synchronization endpoints.

WHAT:
    Thin HTTP wrappers for the sync pipeline: trigger a manual sync, read
    recent sync status, and store the store's access token.

WHY:
    - Routers handle auth + request parsing only
    - The sync itself runs as a detached task owned by SyncScheduler, so the
      response returns immediately; progress is visible through sync-status.

REFERENCES:
    - storepulse/services/shopify_sync_service.py
    - storepulse/services/sync_scheduler.py
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storepulse.database import get_db
from storepulse.deps import get_current_tenant, get_sync_scheduler
from storepulse.errors import NotConnectedError, TenantNotFoundError
from storepulse.models import Tenant
from storepulse.schemas import (
    ConnectRequest,
    ConnectResponse,
    SyncLogOut,
    SyncRequest,
    SyncStartedResponse,
    SyncStatusResponse,
    TenantOut,
)
from storepulse.security import encrypt_secret
from storepulse.services.shopify_sync_service import (
    get_connected_tenant,
    get_recent_sync_logs,
    normalize_types,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shopify", tags=["Shopify Sync"])


@router.post("/sync", response_model=SyncStartedResponse)
async def trigger_sync(
    payload: SyncRequest = SyncRequest(),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    scheduler=Depends(get_sync_scheduler),
):
    """Start a background sync for the current tenant.

    Returns 400 synchronously when the store is not connected; any later
    failure is recorded on the SyncLog rows.
    """
    try:
        get_connected_tenant(db, tenant.id)
    except NotConnectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    sync_types = normalize_types(payload.type)
    scheduler.trigger(tenant.id, sync_types)

    logger.info(f"[SHOPIFY_SYNC] Manual sync requested: tenant={tenant.id}, types={payload.type}")
    return SyncStartedResponse(
        success=True,
        message=f"Sync started for: {', '.join(t.value for t in sync_types)}",
        types=sync_types,
    )


@router.get("/sync-status", response_model=SyncStatusResponse)
def get_sync_status(
    limit: int = Query(default=10, ge=1, le=100),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """Last sync time and the most recent sync attempts, newest first."""
    logs = get_recent_sync_logs(db, tenant.id, limit=limit)
    return SyncStatusResponse(
        last_sync_at=tenant.last_sync_at,
        recent_logs=[SyncLogOut.model_validate(log) for log in logs],
    )


@router.post("/connect", response_model=ConnectResponse)
def connect_store(
    payload: ConnectRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
):
    """Encrypt and store the access token (and optional webhook secret)."""
    tenant.access_token_enc = encrypt_secret(payload.access_token, context=f"tenant:{tenant.id}:access")
    if payload.webhook_secret:
        tenant.webhook_secret_enc = encrypt_secret(payload.webhook_secret, context=f"tenant:{tenant.id}:webhook")
    db.commit()
    db.refresh(tenant)

    logger.info(f"[SHOPIFY_SYNC] Store connected for tenant {tenant.id} ({tenant.shop_domain})")
    return ConnectResponse(
        success=True,
        data=TenantOut.model_validate(tenant),
        message="Shopify connected successfully. You can now sync data.",
    )
