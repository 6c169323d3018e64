"""FastAPI application entry point for the Chryso Forms retention service."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chryso import __version__
from chryso.api.v1.router import api_router
from chryso.config import settings
from chryso.core.exceptions import ChrysoException
from chryso.core.logging import get_logger, setup_logging
from chryso.db.session import AsyncSessionLocal, close_db, init_db
from chryso.services.retention_scheduler import RetentionScheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    setup_logging()
    logger.info(
        "Starting Chryso Forms retention service",
        version=__version__,
        debug=settings.debug,
    )

    await init_db()

    # Manual executions go through the scheduler even when it is not ticking
    scheduler = RetentionScheduler(AsyncSessionLocal)
    app.state.retention_scheduler = scheduler
    if settings.retention_scheduler_enabled:
        await scheduler.start()
    else:
        logger.info("Retention scheduler disabled in config")

    logger.info("Chryso Forms retention service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Chryso Forms retention service")
    await scheduler.stop()
    await close_db()
    logger.info("Chryso Forms retention service shutdown complete")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Data retention service for Chryso Forms",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ChrysoException)
    async def chryso_exception_handler(request: Request, exc: ChrysoException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint for container orchestration."""
        scheduler = getattr(app.state, "retention_scheduler", None)
        return {
            "status": "healthy",
            "version": __version__,
            "service": "chryso-retention",
            "scheduler_running": bool(scheduler and scheduler.is_running),
        }

    return app


# Create the application instance
app = create_application()
