"""
Health check routes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pueue import __version__
from pueue.db import get_async_session
from pueue.observability.metrics import get_metrics
from pueue.types.api import HealthResponse
from pueue.utils import utcnow

router = APIRouter(tags=["Health"])


async def _database_ok(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and database connection.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Perform a health check.

    Checks database connectivity and returns service status.
    """
    db_ok = await _database_ok(session)

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        database="healthy" if db_ok else "unhealthy",
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _database_ok(session)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
