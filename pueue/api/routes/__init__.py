"""
API routes module.
"""

from pueue.api.routes.health import router as health_router
from pueue.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "health_router"]
