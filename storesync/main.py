"""
FastAPI Production Application

Main entry point for the Storefront Sync Engine: webhook receiver, manual
sync trigger, run history, tenant onboarding, health and metrics.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app
import structlog

from storesync.config import get_settings
from storesync.config.logging import configure_logging
from storesync.database.connection import (
    close_database,
    create_tables,
    get_session_factory,
    init_database,
)
from storesync.serving.api.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from storesync.serving.api.routes import (
    health_router,
    sync_router,
    tenants_router,
    webhooks_router,
)
from storesync.sync.engine import SyncEngine

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging()

    logger.info("Starting Storefront Sync Engine", environment=settings.app_env)

    owns_engine = getattr(app.state, "sync_engine", None) is None
    if owns_engine:
        await init_database()
        if settings.database.create_tables:
            await create_tables()
        app.state.sync_engine = SyncEngine.from_settings(get_session_factory(), settings)

    engine: SyncEngine = app.state.sync_engine
    if owns_engine and settings.sync.scheduler_enabled:
        engine.scheduler.start()

    yield

    logger.info("Shutting down...")
    if owns_engine:
        await engine.close()
        await close_database()
        app.state.sync_engine = None


def create_app(engine: Optional[SyncEngine] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Pre-built sync engine; when given, the lifespan neither
            initializes the database nor starts or closes the engine

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Storefront Sync Engine",
        description="Multi-tenant storefront mirror: scheduled polling and real-time webhooks",
        version=settings.version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.sync_engine = engine

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # API routes
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(sync_router, prefix="/api/v1/sync", tags=["Sync"])
    app.include_router(tenants_router, prefix="/api/v1/tenants", tags=["Tenants"])
    app.include_router(webhooks_router, prefix="/shopify/webhooks", tags=["Webhooks"])

    if settings.monitoring.metrics_enabled:
        app.mount("/metrics", make_asgi_app())

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
            "api_version": settings.shopify.api_version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
