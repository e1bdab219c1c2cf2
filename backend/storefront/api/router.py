"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from storefront.api.routes import events, bookings, products

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(bookings.router)
api_router.include_router(products.router)
