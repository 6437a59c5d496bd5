"""API routes for slot negotiation."""

from fastapi import APIRouter

from .portal import router as portal_router
from .scheduling import router as scheduling_router

# Main API router
api_router = APIRouter()

# Internal team: candidates, proposals, confirmation
api_router.include_router(scheduling_router)

# Client portal
api_router.include_router(portal_router)

__all__ = ["api_router"]
