"""API router aggregation - includes all application routers."""

from fastapi import APIRouter

from app.routers import health, pine

# Main API router
api_router = APIRouter()

# Health
api_router.include_router(health.router, tags=["Health"])

# Pine Script Runner
api_router.include_router(pine.router, prefix="/pine", tags=["Pine Script"])
