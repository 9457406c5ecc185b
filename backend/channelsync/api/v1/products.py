"""Product sales channel and attribute endpoints."""

import asyncio
import json
from typing import AsyncIterator, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from channelsync.core.exceptions import ChannelSyncException
from channelsync.dependencies import get_sync_service, require_api_key, to_http_exception
from channelsync.schemas import (
    AttributeUpdateRequest,
    AutoAttributeUpdateRequest,
    BulkUpdateSalesChannelsRequest,
    MissingChannelsResponse,
    ProductChannelsUpdateResponse,
    ProductListResponse,
    SalesChannelsRequest,
    SalesChannelsResponse,
    UpdateResponse,
)
from channelsync.sync.models import BatchProgress
from channelsync.sync.sync_service import ProductSyncService

router = APIRouter()
logger = structlog.get_logger(__name__)


def _ndjson(event: dict) -> str:
    return json.dumps(event) + "\n"


@router.get("", response_model=ProductListResponse, response_model_by_alias=True)
async def list_products(
    limit: Optional[int] = Query(None, ge=1, description="Stop after this many products"),
    service: ProductSyncService = Depends(get_sync_service),
):
    """List catalog products with their titles and tags."""
    try:
        products = await service.list_products(limit=limit)
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return {"products": products, "count": len(products)}


@router.get("/sales-channels", response_model=SalesChannelsResponse, response_model_by_alias=True)
async def list_sales_channels(
    refresh: bool = Query(False, description="Reload the channel list from the store"),
    service: ProductSyncService = Depends(get_sync_service),
):
    """List the names of every sales channel the store exposes."""
    try:
        names = await service.list_sales_channels(refresh=refresh)
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return {"salesChannels": names}


@router.get("/missing-channels", response_model=MissingChannelsResponse, response_model_by_alias=True)
async def products_missing_channels(
    channels: Optional[List[str]] = Query(None, description="Channel names; defaults to the configured ones"),
    service: ProductSyncService = Depends(get_sync_service),
):
    """List products not yet published on every given channel."""
    try:
        product_ids = await service.get_products_missing_channels(channels)
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return {"productIds": product_ids, "count": len(product_ids)}


@router.post(
    "/bulk-update-sales-channels",
    response_model=UpdateResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_api_key)],
)
async def bulk_update_sales_channels(
    request: BulkUpdateSalesChannelsRequest,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Publish many products to the same sales channels.

    Per-product failures are reported in the body, not as an HTTP error.
    """
    try:
        outcome = await service.bulk_update_sales_channels(
            request.product_ids, request.sales_channels
        )
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return outcome.to_response()


@router.post(
    "/bulk-update-sales-channels/stream",
    dependencies=[Depends(require_api_key)],
)
async def bulk_update_sales_channels_stream(
    request: BulkUpdateSalesChannelsRequest,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Same as the buffered route, streaming NDJSON progress after every batch.

    Events carry a ``status`` of processing, batch_completed, completed or
    error. The last event is always completed or error.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def on_progress(progress: BatchProgress) -> None:
        await queue.put({"status": "batch_completed", **progress.to_dict()})

    async def run() -> None:
        try:
            outcome = await service.bulk_update_sales_channels(
                request.product_ids, request.sales_channels, on_progress=on_progress
            )
            await queue.put({"status": "completed", **outcome.to_response()})
        except ChannelSyncException as e:
            logger.error("stream_bulk_update_failed", error=e.message)
            await queue.put({"status": "error", "message": e.message})
        except Exception as e:
            logger.error("stream_bulk_update_crashed", error=str(e), exc_info=True)
            await queue.put({"status": "error", "message": f"Unexpected error: {e}"})
        finally:
            await queue.put(None)

    async def events() -> AsyncIterator[str]:
        task = asyncio.create_task(run())
        try:
            yield _ndjson({"status": "processing", "totalProducts": len(request.product_ids)})
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _ndjson(event)
            await task
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.post(
    "/bulk-update-attributes",
    response_model=UpdateResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_api_key)],
)
async def bulk_update_attributes(
    request: AttributeUpdateRequest,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Set the same marketplace attributes on many products."""
    try:
        outcome = await service.bulk_update_attributes(
            request.product_ids, request.attributes.to_attribute_set()
        )
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return outcome.to_response()


@router.post(
    "/auto-update-attributes",
    response_model=UpdateResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_api_key)],
)
async def auto_update_attributes(
    request: AutoAttributeUpdateRequest,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Detect attributes from each product's title and tags, then set them."""
    try:
        outcome = await service.auto_update_attributes(request.product_ids)
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return outcome.to_response()


@router.get("/{product_id}")
async def get_product(
    product_id: str,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Get a single product with the channels it is published on."""
    try:
        product = await service.get_product(product_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChannelSyncException as e:
        raise to_http_exception(e)

    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post(
    "/{product_id}/sales-channels",
    response_model=ProductChannelsUpdateResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_api_key)],
)
async def update_product_sales_channels(
    product_id: str,
    request: SalesChannelsRequest,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Publish one product. Any remote error fails the request."""
    try:
        return await service.update_product_sales_channels(product_id, request.sales_channels)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChannelSyncException as e:
        raise to_http_exception(e)
