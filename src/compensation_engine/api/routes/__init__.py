"""API routes."""

from compensation_engine.api.routes.health import router as health_router
from compensation_engine.api.routes.payruns import router as payruns_router
from compensation_engine.api.routes.reports import router as reports_router
from compensation_engine.api.routes.salary import router as salary_router

__all__ = ["health_router", "payruns_router", "reports_router", "salary_router"]
