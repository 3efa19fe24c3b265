"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints under the /api/v1 prefix
"""

from fastapi import APIRouter

from .endpoints import chats, deals, listings, status

API_PREFIX = "/api/v1"

# Create main v1 router
api_router = APIRouter()

api_router.include_router(status.router, prefix=API_PREFIX, tags=["status"])
api_router.include_router(listings.router, prefix=API_PREFIX, tags=["listings"])
api_router.include_router(deals.router, prefix=API_PREFIX, tags=["deals"])
api_router.include_router(chats.router, prefix=API_PREFIX, tags=["chats"])
