"""API routes for Coffee Roulette."""

from fastapi import APIRouter

from .matching import router as matching_router
from .notifications import router as notifications_router

# Main API router
api_router = APIRouter()

api_router.include_router(matching_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
