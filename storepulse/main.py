"""FastAPI application entrypoint.

Configures logging, CORS and error tracking, includes routers, owns the
SyncScheduler lifecycle, and exposes a healthcheck endpoint.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import init_db
from .routers import insights as insights_router
from .routers import shopify_sync as shopify_sync_router  # Manual sync, status, connect
from .routers import shopify_webhooks as shopify_webhooks_router  # Shopify push path
from .routers import tenants as tenants_router
from .schemas import HealthResponse
from .services.sync_scheduler import SyncScheduler
from .telemetry import init_observability

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info(f"[STARTUP] Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")

    status = init_observability()
    logger.info(f"[STARTUP] Observability initialized: {status}")

    init_db()
    logger.info("[STARTUP] Database initialized")

    scheduler: SyncScheduler = app.state.sync_scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("[STARTUP] SCHEDULER_ENABLED is false - periodic sync disabled")

    yield

    # Shutdown
    scheduler.stop()
    logger.info("[SHUTDOWN] Scheduler stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="""
        Multi-tenant Shopify analytics backend.

        This API provides endpoints for:
        - Connecting a Shopify store and triggering syncs
        - Receiving Shopify webhooks
        - Dashboard insights, RFM segments and revenue forecasts

        ## Authentication

        All endpoints except webhooks and health require
        `Authorization: Bearer <jwt>` carrying a `tenant_id` claim.
        """,
        version="0.1.0",
        lifespan=lifespan,
    )

    # One scheduler per process; started and stopped by the lifespan
    app.state.sync_scheduler = SyncScheduler()

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tenants_router.router)
    app.include_router(shopify_sync_router.router)
    app.include_router(shopify_webhooks_router.router)
    app.include_router(insights_router.router)

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return HealthResponse(status="ok", scheduler_running=app.state.sync_scheduler.running)

    return app


app = create_app()
