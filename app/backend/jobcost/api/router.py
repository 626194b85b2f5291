"""Top-level API router."""

from fastapi import APIRouter

from jobcost.api.routes.health import router as health_router
from jobcost.api.routes.notifications import router as notifications_router
from jobcost.api.routes.reports import router as reports_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(reports_router)
api_router.include_router(notifications_router)
