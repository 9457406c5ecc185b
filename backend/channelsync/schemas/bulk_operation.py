"""Bulk operation Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from channelsync.schemas.product import UpdateResponse


class BulkOperationStartRequest(BaseModel):
    """Optional custom bulk query; defaults to exporting every product id."""

    query: Optional[str] = None


class BulkOperationProcessRequest(BaseModel):
    """Publish every product from a completed bulk job."""

    model_config = ConfigDict(populate_by_name=True)

    operation_id: str = Field(..., alias="operationId", min_length=1)
    sales_channels: List[str] = Field(..., alias="salesChannels", min_length=1)


class BulkOperationResponse(BaseModel):
    """Snapshot of a server-side bulk job."""

    model_config = ConfigDict(populate_by_name=True)

    operation_id: str = Field(..., alias="operationId")
    status: str
    result_url: Optional[str] = Field(None, alias="resultUrl")
    object_count: Optional[int] = Field(None, alias="objectCount")
    error_code: Optional[str] = Field(None, alias="errorCode")


class BulkOperationProcessResponse(BaseModel):
    """Outcome of processing a bulk job. ``result`` is absent while it still runs."""

    model_config = ConfigDict(populate_by_name=True)

    operation: BulkOperationResponse
    ready: bool
    malformed_lines: int = Field(0, alias="malformedLines")
    truncated: bool = False
    result: Optional[UpdateResponse] = None
