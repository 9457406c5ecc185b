"""Catalog-wide bulk operation endpoints.

Callers start a job, check its status on their own schedule, and ask for it
to be processed once it has completed. No request is held open while the
remote job runs.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from channelsync.core.exceptions import ChannelSyncException
from channelsync.dependencies import get_sync_service, require_api_key, to_http_exception
from channelsync.schemas import (
    BulkOperationProcessRequest,
    BulkOperationProcessResponse,
    BulkOperationResponse,
    BulkOperationStartRequest,
)
from channelsync.sync.sync_service import ProductSyncService

router = APIRouter()


@router.post(
    "",
    response_model=BulkOperationResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_api_key)],
)
async def start_bulk_operation(
    request: Optional[BulkOperationStartRequest] = None,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Start a bulk export (every product id unless a query is given)."""
    try:
        handle = await service.start_catalog_export(request.query if request else None)
    except ChannelSyncException as e:
        raise to_http_exception(e)
    return handle.to_dict()


@router.get("/status", response_model=BulkOperationResponse, response_model_by_alias=True)
async def bulk_operation_status(
    operation_id: Optional[str] = Query(None, alias="operationId"),
    service: ProductSyncService = Depends(get_sync_service),
):
    """Status of the given job, or of the store's most recent one."""
    try:
        handle = await service.check_catalog_export(operation_id)
    except ChannelSyncException as e:
        raise to_http_exception(e)

    if handle is None:
        raise HTTPException(status_code=404, detail="No bulk operation found")
    return handle.to_dict()


@router.post(
    "/process",
    response_model=BulkOperationProcessResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_api_key)],
)
async def process_bulk_operation(
    request: BulkOperationProcessRequest,
    service: ProductSyncService = Depends(get_sync_service),
):
    """Publish every product of a completed job to the given channels."""
    try:
        return await service.process_catalog_export(request.operation_id, request.sales_channels)
    except ChannelSyncException as e:
        raise to_http_exception(e)
