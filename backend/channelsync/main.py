"""Channel Sync Proxy -- FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from channelsync.api.v1.router import api_v1_router
from channelsync.config import settings
from channelsync.sync.factory import get_sync_factory
from channelsync.sync.scheduler import get_new_product_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    # Startup
    logger.info("Starting Channel Sync API server...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    if not settings.store_configured:
        logger.warning("Store is not configured (STORE_NAME / STORE_ACCESS_TOKEN missing)")

    scheduler = None
    # Start new product scheduler (only in non-test environments with a store)
    if settings.ENVIRONMENT != "test" and settings.store_configured:
        scheduler = get_new_product_scheduler()
        scheduler.start()
        logger.info(
            f"New product scheduler started "
            f"(every {settings.NEW_PRODUCT_INTERVAL_MINUTES} min)"
        )
    else:
        logger.info("Scheduler disabled")

    yield

    # Shutdown
    logger.info("Shutting down Channel Sync API server...")

    if scheduler:
        logger.info("Stopping new product scheduler...")
        scheduler.stop()

    try:
        await get_sync_factory().close()
        logger.info("Store client closed")
    except Exception as e:
        logger.warning(f"Error closing store client: {e}")


app = FastAPI(
    title="Channel Sync API",
    description="Rate-limited proxy for bulk sales channel and attribute updates",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Channel Sync API",
        "version": "0.1.0",
        "description": "Rate-limited proxy for bulk sales channel and attribute updates",
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
