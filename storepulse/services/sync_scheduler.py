"""Sync scheduler service.

WHAT:
    Owns the in-process schedule and the manual sync tasks:
    - Every SYNC_INTERVAL_MINUTES (15): sweep all connected tenants
    - 00:00 UTC daily: purge sync logs older than SYNC_LOG_RETENTION_DAYS (7)
    - On demand: detached sync for one tenant (POST /shopify/sync)

WHY:
    - One SyncScheduler instance per process, created in the app lifespan and
      stored on `app.state`; start/stop are idempotent.
    - A per-tenant asyncio.Lock serializes the sweep and manual triggers for
      the same tenant, so two runs never reconcile the same store at once.
    - Manual tasks are retained until done so they are not garbage collected
      mid-run, and their outcome is logged.

REFERENCES:
    - storepulse/services/shopify_sync_service.py
    - storepulse/main.py (lifespan)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Set, Union
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from storepulse.config import get_settings
from storepulse.database import SessionLocal
from storepulse.services.shopify_client import ShopifyClient
from storepulse.services.shopify_sync_service import (
    TenantSyncResult,
    purge_sync_logs,
    sync_all_tenants,
    sync_tenant,
)
from storepulse.telemetry import capture_exception

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "shopify_sync_sweep"
PURGE_JOB_ID = "sync_log_purge"


class SyncScheduler:
    """Process-scoped owner of the sync timer and manual sync tasks.

    Usage:
        scheduler = SyncScheduler()
        scheduler.start()
        scheduler.trigger(tenant_id, ["orders"])
        scheduler.stop()
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        client_factory: Callable[..., Any] = ShopifyClient,
        interval_minutes: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
        self.retention_days = retention_days or settings.SYNC_LOG_RETENTION_DAYS

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    def lock_for(self, tenant_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        return lock

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Register the sweep and purge jobs. No-op if already started.

        Must be called from inside a running event loop (the app lifespan).
        """
        if self._scheduler is not None:
            logger.info("[SCHEDULER] Already running")
            return

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.run_sweep,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            name="Shopify sync sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.run_purge,
            trigger=CronTrigger(hour=0, minute=0, timezone="UTC"),
            id=PURGE_JOB_ID,
            name="Sync log retention",
            replace_existing=True,
            max_instances=1,
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            f"[SCHEDULER] Started - syncing every {self.interval_minutes} minutes, "
            f"keeping {self.retention_days} days of sync logs"
        )

    def stop(self) -> None:
        """Shut the timer down. In-flight manual tasks are left to finish."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("[SCHEDULER] Stopped")

    # =========================================================================
    # JOBS
    # =========================================================================

    async def run_sweep(self) -> None:
        """Sync every connected tenant; never raises."""
        logger.info("[SCHEDULER] Starting scheduled sync")
        try:
            await sync_all_tenants(
                self.session_factory,
                client_factory=self.client_factory,
                tenant_lock=self.lock_for,
            )
            logger.info("[SCHEDULER] Scheduled sync completed")
        except Exception as e:
            logger.exception(f"[SCHEDULER] Scheduled sync failed: {e}")
            capture_exception(e, extra={"operation": "run_sweep"})

    async def run_purge(self) -> int:
        """Apply sync-log retention; never raises."""
        db = self.session_factory()
        try:
            return purge_sync_logs(db, self.retention_days)
        except Exception as e:
            db.rollback()
            logger.exception(f"[SCHEDULER] Daily cleanup failed: {e}")
            capture_exception(e, extra={"operation": "run_purge"})
            return 0
        finally:
            db.close()

    async def run_tenant_sync(
        self,
        tenant_id: UUID,
        types: Union[None, str, Iterable[Any]] = None,
    ) -> TenantSyncResult:
        """Sync one tenant while holding its lock."""
        async with self.lock_for(tenant_id):
            db = self.session_factory()
            try:
                return await sync_tenant(db, tenant_id, types, client_factory=self.client_factory)
            finally:
                db.close()

    def trigger(self, tenant_id: UUID, types: Union[None, str, Iterable[Any]] = None) -> asyncio.Task:
        """Start a detached sync for one tenant and return its task.

        The caller does not wait; the outcome is logged here and recorded on
        the SyncLog rows.
        """
        task = asyncio.get_running_loop().create_task(
            self.run_tenant_sync(tenant_id, types),
            name=f"shopify-sync-{tenant_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(tenant_id, t))
        logger.info(f"[SCHEDULER] Manual sync queued for tenant {tenant_id}")
        return task

    def _on_task_done(self, tenant_id: UUID, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"[SCHEDULER] Manual sync cancelled for tenant {tenant_id}")
            return

        error = task.exception()
        if error is not None:
            logger.error(f"[SCHEDULER] Manual sync failed for tenant {tenant_id}: {error}")
            capture_exception(error, extra={"operation": "manual_sync", "tenant_id": str(tenant_id)})
            return

        result = task.result()
        logger.info(
            f"[SCHEDULER] Manual sync finished for tenant {tenant_id}: "
            f"success={result.success}, items={result.item_count}"
        )
