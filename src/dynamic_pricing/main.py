"""
Main FastAPI application entry point for the dynamic pricing service.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from dynamic_pricing.db import check_database_health, create_all_tables_async
from dynamic_pricing.pricing.exceptions import PricingError
from dynamic_pricing.pricing.router import router as pricing_router
from dynamic_pricing.settings import settings

logger = structlog.get_logger(__name__)


def pricing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render pricing errors with their own status codes."""
    if not isinstance(exc, PricingError):
        raise exc
    if exc.status_code >= 500:
        logger.error(
            "pricing.request.failed",
            path=request.url.path,
            error_code=exc.error_code,
            error=exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )

    if settings.database.create_tables_on_startup:
        await create_all_tables_async()
        logger.info("database.tables.created")

    logger.info("service.startup.complete")
    yield
    logger.info("service.shutdown.complete")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Dynamic Pricing Service",
        description="Rule-based dynamic pricing and bulk tier calculation",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_exception_handler(PricingError, pricing_error_handler)

    app.include_router(pricing_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get("/health/ready")
    async def readiness_check() -> dict[str, Any]:
        """Readiness check including database connectivity."""
        database_ok = await check_database_health()
        return {
            "status": "ready" if database_ok else "not ready",
            "database": database_ok,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app


app = create_application()
