"""CRM Workflow Engine - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from api.v1.router import api_v1_router
from api.routes import health
from db.database import close_db, init_db
from workflow.engine import get_workflow_engine
from notifications.manager import get_notification_manager
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from triggers.event_bus import EntityEventListener

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        settings = get_settings()
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    settings = get_settings()
    setup_logging()
    settings.validate_settings()

    await init_db()

    get_notification_manager()
    if settings.email_configured:
        logger.info("[startup] Email channel configured")
    else:
        logger.info("[startup] Email not configured (set SMTP_HOST to enable send_email)")

    engine = get_workflow_engine()
    logger.info(f"[startup] Workflow engine ready ({len(engine.driver.registry.available_types)} action types)")

    listener = None
    if settings.EVENT_BUS_ENABLED:
        listener = EntityEventListener(
            channel=settings.EVENT_BUS_CHANNEL,
            redis_url=settings.REDIS_URL,
            callback=lambda event: engine.trigger(
                event.workflow_id, event.entity_id, event.entity_type, event.event_data
            ),
        )
        listener.start()

    poller_stop = None
    if settings.POLLER_ENABLED:
        poller_stop = _start_execution_poller(settings.POLLER_INTERVAL_SECONDS)
        logger.info(f"[startup] Execution poller thread started ({settings.POLLER_INTERVAL_SECONDS}s interval)")

    logger.info(f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    # Shutdown
    if poller_stop is not None:
        poller_stop.set()
    if listener is not None:
        await listener.stop()
    await close_db()
    logger.info("[shutdown] Application shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Multi-step, time-delayed workflow automations over CRM entities.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # Security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API: all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


def _start_execution_poller(interval_seconds: int = 60) -> "threading.Event":
    """Launch a daemon thread that advances due executions every interval.

    This runs inside the FastAPI/uvicorn process, no Celery beat needed.
    Returns a threading.Event that can be set to stop the poller.
    """
    import threading
    import asyncio
    import time

    stop_event = threading.Event()
    poller_logger = logging.getLogger("execution-poller")

    def _poller_loop():
        """Background thread: one poll tick per interval."""
        from worker.tasks.executions import run_poll_tick

        poller_logger.info("[execution-poller] Background thread started")
        # Wait a few seconds for app to fully start
        time.sleep(5)

        while not stop_event.is_set():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                result = loop.run_until_complete(run_poll_tick())
                if result.get("processed", 0) or result.get("errors", 0):
                    poller_logger.info(f"[execution-poller] {result}")
            except Exception as e:
                poller_logger.error(f"[execution-poller] Error: {e}", exc_info=True)
            finally:
                loop.close()

            # Wait for the next tick (interruptible)
            stop_event.wait(timeout=interval_seconds)

        poller_logger.info("[execution-poller] Background thread stopped")

    t = threading.Thread(target=_poller_loop, daemon=True, name="execution-poller")
    t.start()
    return stop_event


app = create_app()
