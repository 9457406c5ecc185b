"""Sync engine for pushing sales channel and attribute state to the store.

This package provides:
- A shared token bucket and resilient request executor for the remote API
- Structural builders for aliased mutation documents
- An adaptive bulk orchestrator and a bulk operation tracker
- The product sync service used by the API and the scheduler
"""

from .models import (
    AsyncOperationHandle,
    AttributeSet,
    BatchOutcome,
    BatchProgress,
    ChannelSet,
    OperationStatus,
)
from .factory import SyncFactory, get_sync_factory
from .sync_service import ProductSyncService

__all__ = [
    # Data structures
    "AsyncOperationHandle",
    "AttributeSet",
    "BatchOutcome",
    "BatchProgress",
    "ChannelSet",
    "OperationStatus",
    # Factory
    "SyncFactory",
    "get_sync_factory",
    # Service
    "ProductSyncService",
]
