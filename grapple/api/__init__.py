"""API routes for Grapple."""

from fastapi import APIRouter

from .changes import router as changes_router
from .event_rooms import router as event_rooms_router
from .pending import router as pending_router
from .proposals import router as proposals_router

# Main API router
api_router = APIRouter()

api_router.include_router(proposals_router)
api_router.include_router(pending_router)
api_router.include_router(event_rooms_router)

# Push notifications for clients that keep a live view
api_router.include_router(changes_router)

__all__ = ["api_router"]
