"""Top-level API router."""

from fastapi import APIRouter

from rollup.api.routes.dashboards import router as dashboards_router
from rollup.api.routes.exports import router as exports_router
from rollup.api.routes.health import router as health_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(dashboards_router)
api_router.include_router(exports_router)
