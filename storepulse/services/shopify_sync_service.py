"""Shopify sync service functions.

WHAT:
    Drives the pull path for one tenant or for every connected tenant:
    - Customers (full payloads, counters verbatim)
    - Orders (with embedded customer and line items, `status=any`)
    - Products (first-variant pricing)
    Each (tenant, type) attempt is recorded as a SyncLog row.

WHY:
    - The scheduler, the manual sync endpoint and tests share the same logic.
    - Keeps routers thin (auth, request parsing) while services handle business logic.
    - A failure in one type never prevents the remaining types from running.

REFERENCES:
    - storepulse/services/shopify_client.py (API client)
    - storepulse/services/reconciliation.py (record mapping, shared with webhooks)
    - storepulse/services/sync_scheduler.py (timer and manual triggers)
"""

from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storepulse.config import get_settings
from storepulse.errors import MalformedRecordError, NotConnectedError, TenantNotFoundError
from storepulse.models import SyncLog, SyncStatusEnum, SyncTypeEnum, Tenant, utcnow
from storepulse.security import decrypt_secret
from storepulse.services.reconciliation import reconcile_record
from storepulse.services.shopify_client import ShopifyClient
from storepulse.telemetry import capture_exception, capture_message

logger = logging.getLogger(__name__)

ALL_TYPES: List[SyncTypeEnum] = [SyncTypeEnum.customers, SyncTypeEnum.orders, SyncTypeEnum.products]

# Extra filters per collection on the first page
_RESOURCE_PARAMS = {
    SyncTypeEnum.orders: {"status": "any"},
}


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================
# WHAT: Dataclasses for sync result formatting
# WHY: Consistent result structure for the scheduler, the API and tests

@dataclass
class SyncTypeResult:
    """Outcome of one sync run (one tenant, one record type)."""
    type: SyncTypeEnum
    status: SyncStatusEnum
    item_count: int = 0
    skipped: int = 0
    error: Optional[str] = None
    duration_seconds: float = 0.0


@dataclass
class TenantSyncResult:
    """Outcome of `sync_tenant` across all requested types."""
    tenant_id: UUID
    results: List[SyncTypeResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.status == SyncStatusEnum.completed for r in self.results)

    @property
    def item_count(self) -> int:
        return sum(r.item_count for r in self.results)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def normalize_types(requested: Union[None, str, SyncTypeEnum, Iterable[Any]]) -> List[SyncTypeEnum]:
    """Turn "all", a single type or a list of types into an ordered type list.

    Raises:
        ValueError: for an unknown type name
    """
    if requested is None or requested == "all":
        return list(ALL_TYPES)
    if isinstance(requested, (str, SyncTypeEnum)):
        requested = [requested]

    wanted = {SyncTypeEnum(t) for t in requested}
    return [t for t in ALL_TYPES if t in wanted]


def get_connected_tenant(db: Session, tenant_id: UUID) -> Tenant:
    """Load a tenant that can be synced.

    Raises:
        TenantNotFoundError: no such tenant
        NotConnectedError: tenant has no stored access token
    """
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")
    if not tenant.access_token_enc:
        raise NotConnectedError(f"Tenant {tenant_id} has no Shopify access token. Connect the store first.")
    return tenant


def _build_client(tenant: Tenant, client_factory: Callable[..., Any]) -> Any:
    """Decrypt the stored token and build a gateway for this tenant."""
    settings = get_settings()
    access_token = decrypt_secret(tenant.access_token_enc, context=f"tenant:{tenant.id}:access")
    return client_factory(
        shop_domain=tenant.shop_domain,
        access_token=access_token,
        api_version=settings.SHOPIFY_API_VERSION,
        timeout=settings.SHOPIFY_REQUEST_TIMEOUT,
    )


def list_syncable_tenant_ids(db: Session) -> List[UUID]:
    """Active tenants with a stored access token."""
    rows = db.query(Tenant.id).filter(
        Tenant.is_active.is_(True),
        Tenant.access_token_enc.isnot(None),
    ).order_by(Tenant.created_at).all()
    return [row[0] for row in rows]


async def _sync_type(db: Session, client: Any, tenant_id: UUID, sync_type: SyncTypeEnum) -> tuple[int, int]:
    """Fetch every page of one collection and reconcile each record.

    Returns:
        (stored, skipped) record counts
    """
    settings = get_settings()
    stored = 0
    skipped = 0

    async for page in client.iter_pages(
        sync_type.value,
        params=_RESOURCE_PARAMS.get(sync_type),
        max_pages=settings.SYNC_MAX_PAGES,
        limit=settings.SHOPIFY_PAGE_SIZE,
    ):
        for record in page.records:
            try:
                reconcile_record(db, tenant_id, sync_type, record)
                stored += 1
            except MalformedRecordError as e:
                skipped += 1
                logger.warning(f"[SHOPIFY_SYNC] Skipping malformed {sync_type.value} record: {e.message}")

    return stored, skipped


# =============================================================================
# SYNC FUNCTIONS
# =============================================================================

async def sync_tenant(
    db: Session,
    tenant_id: UUID,
    types: Union[None, str, SyncTypeEnum, Iterable[Any]] = None,
    client_factory: Callable[..., Any] = ShopifyClient,
) -> TenantSyncResult:
    """Sync the requested record types for one tenant.

    WHAT:
        For each type in order: open a `running` SyncLog, page through the
        collection, reconcile every record (skipping malformed ones), then mark
        the log `completed` with the stored count. Any other failure marks
        the log `failed` and moves on to the next type.

    WHY:
        Partial progress is kept: records committed before a failure stay.

    Raises:
        TenantNotFoundError / NotConnectedError before any SyncLog row is written
    """
    sync_types = normalize_types(types)
    tenant = get_connected_tenant(db, tenant_id)

    logger.info(
        f"[SHOPIFY_SYNC] Starting sync: tenant={tenant.id}, types={[t.value for t in sync_types]}"
    )

    result = TenantSyncResult(tenant_id=tenant.id)
    client = None

    for sync_type in sync_types:
        start_time = time.monotonic()
        sync_log = SyncLog(
            tenant_id=tenant.id,
            type=sync_type,
            status=SyncStatusEnum.running,
            started_at=utcnow(),
        )
        db.add(sync_log)
        db.commit()

        try:
            if client is None:
                client = _build_client(tenant, client_factory)

            stored, skipped = await _sync_type(db, client, tenant.id, sync_type)

            sync_log.mark_completed(stored)
            db.commit()

            result.results.append(SyncTypeResult(
                type=sync_type,
                status=SyncStatusEnum.completed,
                item_count=stored,
                skipped=skipped,
                duration_seconds=time.monotonic() - start_time,
            ))
            logger.info(
                "[SHOPIFY_SYNC] %s sync complete: tenant=%s, stored=%d, skipped=%d",
                sync_type.value, tenant.id, stored, skipped,
            )

        except Exception as e:
            db.rollback()
            error_msg = str(e) or e.__class__.__name__
            logger.error(f"[SHOPIFY_SYNC] {sync_type.value} sync failed for tenant {tenant.id}: {error_msg}")
            capture_exception(e, extra={
                "operation": "sync_tenant",
                "tenant_id": str(tenant.id),
                "sync_type": sync_type.value,
            })

            try:
                sync_log.mark_failed(error_msg)
                db.commit()
            except SQLAlchemyError as log_error:
                db.rollback()
                logger.error(f"[SHOPIFY_SYNC] Could not record failed sync log: {log_error}")

            result.results.append(SyncTypeResult(
                type=sync_type,
                status=SyncStatusEnum.failed,
                error=error_msg,
                duration_seconds=time.monotonic() - start_time,
            ))

    # Stamped once per call, whatever the per-type outcome
    tenant.last_sync_at = utcnow()
    db.commit()

    return result


async def sync_all_tenants(
    session_factory: Callable[[], Session],
    client_factory: Callable[..., Any] = ShopifyClient,
    tenant_lock: Optional[Callable[[UUID], Any]] = None,
) -> List[TenantSyncResult]:
    """Sync every active, connected tenant sequentially.

    Each tenant gets its own session. A failure for one tenant is logged and
    reported; the sweep continues with the next.

    Args:
        session_factory: Callable returning a new Session (e.g. SessionLocal)
        client_factory: Gateway constructor
        tenant_lock: Optional callable returning an asyncio.Lock per tenant id
    """
    db = session_factory()
    try:
        tenant_ids = list_syncable_tenant_ids(db)
    finally:
        db.close()

    logger.info(f"[SHOPIFY_SYNC] Sweep starting for {len(tenant_ids)} tenants")

    results: List[TenantSyncResult] = []
    for tenant_id in tenant_ids:
        lock = tenant_lock(tenant_id) if tenant_lock else contextlib.nullcontext()
        async with lock:
            db = session_factory()
            try:
                results.append(await sync_tenant(db, tenant_id, client_factory=client_factory))
            except Exception as e:
                logger.exception(f"[SHOPIFY_SYNC] Sweep failed for tenant {tenant_id}: {e}")
                capture_exception(e, extra={"operation": "sync_all_tenants", "tenant_id": str(tenant_id)})
            finally:
                db.close()

    synced = sum(1 for r in results if r.success)
    logger.info(f"[SHOPIFY_SYNC] Sweep finished: {synced}/{len(tenant_ids)} tenants fully synced")
    if synced < len(tenant_ids):
        capture_message(
            f"Shopify sweep incomplete: {len(tenant_ids) - synced} of {len(tenant_ids)} tenants had failures",
            level="warning",
            extra={"operation": "sync_all_tenants"},
        )
    return results


def purge_sync_logs(db: Session, retention_days: int, now: Optional[datetime] = None) -> int:
    """Delete SyncLog rows started before the retention window.

    Returns:
        Number of deleted rows
    """
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    deleted = db.query(SyncLog).filter(SyncLog.started_at < cutoff).delete(synchronize_session=False)
    db.commit()
    logger.info(f"[SHOPIFY_SYNC] Purged {deleted} sync logs older than {retention_days} days")
    return deleted


def get_recent_sync_logs(db: Session, tenant_id: UUID, limit: int = 10) -> List[SyncLog]:
    """Most recent sync attempts for a tenant, newest first."""
    return (
        db.query(SyncLog)
        .filter(SyncLog.tenant_id == tenant_id)
        .order_by(SyncLog.started_at.desc())
        .limit(limit)
        .all()
    )
