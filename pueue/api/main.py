"""
FastAPI application entry point.

The HTTP producer surface: submit jobs and inspect their state. Jobs are
executed by worker processes (pueue.worker.main), not by the API.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from pueue import __version__
from pueue.api.routes import health_router, jobs_router
from pueue.config import get_settings
from pueue.db import close_db, init_db
from pueue.errors import PersistenceError
from pueue.observability.logging import setup_logging
from pueue.observability.metrics import setup_metrics
from pueue.observability.tracing import instrument_fastapi, setup_tracing

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    setup_logging()
    setup_metrics()
    setup_tracing()
    await init_db()

    logger.info("Application started")

    yield

    await close_db()
    logger.info("Application shutdown")


async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    """Report store failures as 503 so clients can retry."""
    logger.error(
        "Job store unavailable",
        extra={"path": request.url.path, "error": str(exc)}
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "Job store unavailable"},
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Pueue API",
        description="Persistent, retry-capable job queue on PostgreSQL",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_exception_handler(PersistenceError, persistence_error_handler)

    app.include_router(health_router)
    app.include_router(jobs_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "pueue.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
