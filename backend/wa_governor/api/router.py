"""API router configuration."""
from fastapi import APIRouter
from wa_governor.api.endpoints import health, warmup

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router)
api_router.include_router(warmup.router)
