"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints with prefixes
"""

from fastapi import APIRouter

from .endpoints import status, profiles, harvests, transactions, messages

api_router = APIRouter()

api_router.include_router(status.router, prefix="/api/v1", tags=["status"])
api_router.include_router(profiles.router, prefix="/api/v1", tags=["profiles"])
api_router.include_router(harvests.router, prefix="/api/v1", tags=["harvests"])
api_router.include_router(transactions.router, prefix="/api/v1", tags=["transactions"])
api_router.include_router(messages.router, prefix="/api/v1", tags=["messages"])
