"""Health check endpoint."""

from fastapi import APIRouter

from channelsync.config import settings
from channelsync.schemas import HealthCheckResponse
from channelsync.sync.factory import get_sync_factory
from channelsync.sync.scheduler import get_new_product_scheduler

router = APIRouter()


@router.get("/debug/config")
async def debug_config():
    """Debug endpoint to check config (redacted)."""
    if not settings.DEBUG:
        return {"error": "only available in debug mode"}
    return {
        "store_name": settings.STORE_NAME,
        "admin_api_url": settings.STORE_ADMIN_API_URL,
        "access_token_set": bool(settings.STORE_ACCESS_TOKEN),
        "webhook_secret_set": bool(settings.STORE_WEBHOOK_SECRET),
        "admin_api_key_set": bool(settings.ADMIN_API_KEY),
        "default_sales_channels": settings.get_default_sales_channels(),
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Return service health status.

    Reports whether the store is configured, the shared rate limiter's
    current state and the new-product scheduler's state. No remote call is
    made, so the check costs no rate-limit budget.
    """
    store_status = "ok" if settings.store_configured else "not configured"
    scheduler = get_new_product_scheduler()

    return HealthCheckResponse(
        status="ok" if settings.store_configured else "degraded",
        store=store_status,
        rate_limiter=get_sync_factory().limiter.snapshot(),
        scheduler=scheduler.get_status(),
    )
