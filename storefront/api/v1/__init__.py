"""API v1 routes aggregation"""

from fastapi import APIRouter

from .discounts.router import router as discounts_router

# Create v1 router
api_router = APIRouter()

api_router.include_router(discounts_router, prefix="/discounts", tags=["Discounts"])

# Export router
router = api_router
