"""
Sentry Error Tracking
=====================

Centralized error tracking for the API process and its background sync tasks.

Related files:
- storepulse/main.py: Initializes Sentry on app startup
- storepulse/services/shopify_sync_service.py: Reports failed sync runs
- storepulse/services/sync_scheduler.py: Reports failed sweeps and tasks

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays off when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from __future__ import annotations

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from storepulse.config import get_settings

logger = logging.getLogger(__name__)


def init_sentry() -> bool:
    """
    Initialize Sentry SDK for FastAPI.

    Returns:
        True if Sentry was initialized, False when no DSN is configured or
        initialization failed.
    """
    settings = get_settings()
    if not settings.SENTRY_DSN:
        logger.info("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,         # Capture INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # Send ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            send_default_pii=False,
            release=settings.RELEASE_VERSION,
        )
        logger.debug("[SENTRY] Initialized for %s environment", settings.ENVIRONMENT)
        return True

    except Exception as e:
        logger.error("[SENTRY] Failed to initialize: %s", e)
        return False


def set_tenant_context(tenant_id: str) -> None:
    """Attach the tenant to subsequent events in this scope."""
    sentry_sdk.set_tag("tenant_id", tenant_id)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Manually capture an exception to Sentry.

    Use this for exceptions that are caught and handled (a failed sync run,
    a rejected webhook) but should still be tracked.

    Example:
        try:
            await sync_tenant(db, tenant_id)
        except Exception as e:
            capture_exception(e, extra={"operation": "sync_tenant"})
    """
    with sentry_sdk.push_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)


def capture_message(message: str, level: str = "info", extra: Optional[dict] = None) -> None:
    """Send an informational message to Sentry."""
    with sentry_sdk.push_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_message(message, level=level)
