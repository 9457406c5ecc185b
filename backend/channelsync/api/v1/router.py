"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from channelsync.api.v1 import bulk_operations, health, products, webhooks

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(products.router, prefix="/products", tags=["products"])
api_v1_router.include_router(bulk_operations.router, prefix="/bulk-operations", tags=["bulk-operations"])
api_v1_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
