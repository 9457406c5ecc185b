"""Pydantic schemas for the channel sync API.

All request/response models are defined here for easy import.
"""

from channelsync.schemas.health import HealthCheckResponse
from channelsync.schemas.product import (
    AttributeUpdateRequest,
    AttributeValues,
    AutoAttributeUpdateRequest,
    BulkUpdateSalesChannelsRequest,
    FailureSummary,
    MissingChannelsResponse,
    ProductChannelsUpdateResponse,
    ProductListResponse,
    ProductSummary,
    SalesChannelsRequest,
    SalesChannelsResponse,
    UpdateResponse,
)
from channelsync.schemas.bulk_operation import (
    BulkOperationProcessRequest,
    BulkOperationProcessResponse,
    BulkOperationResponse,
    BulkOperationStartRequest,
)

__all__ = [
    # Health
    "HealthCheckResponse",
    # Product
    "AttributeUpdateRequest",
    "AttributeValues",
    "AutoAttributeUpdateRequest",
    "BulkUpdateSalesChannelsRequest",
    "FailureSummary",
    "MissingChannelsResponse",
    "ProductChannelsUpdateResponse",
    "ProductListResponse",
    "ProductSummary",
    "SalesChannelsRequest",
    "SalesChannelsResponse",
    "UpdateResponse",
    # Bulk operations
    "BulkOperationProcessRequest",
    "BulkOperationProcessResponse",
    "BulkOperationResponse",
    "BulkOperationStartRequest",
]
