"""FastAPI dependency injection providers."""

import secrets
from typing import Optional

import structlog
from fastapi import Header, HTTPException, status

from channelsync.config import settings
from channelsync.core.exceptions import (
    BulkOperationError,
    BulkOperationNotReadyError,
    ChannelSyncException,
    ClientRequestError,
    NotFoundError,
    RemoteAPIError,
    SetupError,
)
from channelsync.sync.sync_service import ProductSyncService

logger = structlog.get_logger(__name__)


def get_sync_service() -> ProductSyncService:
    """Provide a sync service bound to the process-wide factory.

    Usage:
        @router.get("/products/sales-channels")
        async def list_channels(service: ProductSyncService = Depends(get_sync_service)):
            return await service.list_sales_channels()
    """
    return ProductSyncService()


async def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
    """Reject requests whose X-API-Key does not match ADMIN_API_KEY.

    Mutating routes stay disabled while no key is configured. The comparison
    uses ``secrets.compare_digest``.

    Raises:
        HTTPException: 403 when the key is missing, not configured, or wrong
    """
    configured_key = settings.ADMIN_API_KEY
    if not configured_key:
        logger.warning("admin_api_key_not_configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Mutating endpoints are disabled (ADMIN_API_KEY not configured)",
        )

    if not x_api_key or not secrets.compare_digest(x_api_key.encode(), configured_key.encode()):
        logger.warning("admin_api_key_rejected")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )


def to_http_exception(error: ChannelSyncException) -> HTTPException:
    """Map a domain error to the HTTP status the API reports for it."""
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, SetupError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, BulkOperationNotReadyError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ClientRequestError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, (RemoteAPIError, BulkOperationError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=error.message)
