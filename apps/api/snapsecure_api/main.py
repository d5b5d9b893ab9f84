"""SnapSecure API - FastAPI application."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text

from snapsecure_api import __version__
from snapsecure_api.container import build_container
from snapsecure_api.db.session import create_db_engine, create_session_factory, init_db
from snapsecure_api.errors import DependencyUnavailable, IntegrityError, NotFoundError
from snapsecure_api.middleware.correlation import CorrelationIdFilter, CorrelationIDMiddleware
from snapsecure_api.routes import auth, permissions, security
from snapsecure_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """JSON-style log lines on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(
        level=level,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", '
        '"module": "%(name)s", "correlation_id": "%(correlation_id)s"}',
        handlers=[handler],
    )


async def _periodic_cleanup(app: FastAPI, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.container.firewall.cleanup)
        except Exception as e:
            logger.error(f"Firewall cleanup failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services once per process; run the cleanup timer."""
    settings: Settings = app.state.settings
    logger.info("Starting SnapSecure API...")

    # Raises ConfigurationError before anything else is built
    settings.validate_settings()

    engine = create_db_engine(settings.database_url_computed)
    init_db(engine)
    app.state.engine = engine
    app.state.container = build_container(settings, create_session_factory(engine))

    cleanup_task = asyncio.create_task(
        _periodic_cleanup(app, settings.firewall_cleanup_interval_seconds)
    )
    yield

    logger.info("Shutting down SnapSecure API...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Application factory."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="SnapSecure API",
        description="Tamper-evident audit trail and firewall for SnapSecure",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(CorrelationIDMiddleware)

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    app.include_router(auth.router)
    app.include_router(permissions.router)
    app.include_router(security.router)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Not found"})

    @app.exception_handler(DependencyUnavailable)
    async def dependency_handler(request: Request, exc: DependencyUnavailable):
        logger.error(f"Dependency unavailable: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Service temporarily unavailable"},
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(IntegrityError)
    async def integrity_handler(request: Request, exc: IntegrityError):
        logger.critical(f"Integrity failure: {exc}", extra={"tx_hash": exc.tx_hash})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal error"},
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint (basic liveness)."""
        return {
            "status": "healthy",
            "service": "snapsecure-api",
            "version": __version__,
        }

    @app.get("/ready")
    def readiness_check():
        """Readiness check endpoint (verifies dependencies)."""
        checks = {"database": False, "firewall_state": False}

        try:
            with app.state.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            logger.error(f"Database check failed: {e}")

        try:
            app.state.container.firewall.is_blocked("127.0.0.1")
            checks["firewall_state"] = True
        except Exception as e:
            logger.error(f"Firewall state check failed: {e}")

        all_ready = all(checks.values())
        return JSONResponse(
            content={"status": "ready" if all_ready else "not_ready", "checks": checks},
            status_code=200 if all_ready else 503,
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "SnapSecure API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app
