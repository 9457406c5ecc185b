"""Factory for the sync engine's shared components.

The token bucket and the publication registry are process-wide: every
executor and orchestrator built here receives the same instances, so rate
feedback observed by one call paces every other call.
"""

from typing import Optional

import structlog

from channelsync.config import settings
from channelsync.sync.bulk_operations import BulkOperationTracker
from channelsync.sync.executor import RequestExecutor
from channelsync.sync.mutation_builder import MutationBuilder
from channelsync.sync.orchestrator import BulkOrchestrator
from channelsync.sync.publications import PublicationRegistry
from channelsync.sync.store_client import StoreClient
from channelsync.sync.utils.rate_limiter import TokenBucket

logger = structlog.get_logger(__name__)


class SyncFactory:
    """Builds engine components wired to the shared limiter and registry."""

    def __init__(self, client: Optional[StoreClient] = None):
        """Initialize the factory.

        Args:
            client: Store client; built from settings on first use when omitted
        """
        self.limiter = TokenBucket(
            rate=settings.RATE_LIMIT_REFILL_RATE,
            capacity=settings.RATE_LIMIT_CAPACITY,
            pacing_delay=settings.RATE_LIMIT_PACING_SECONDS,
            safety_margin=settings.RATE_LIMIT_SAFETY_MARGIN_SECONDS,
        )
        self.publications = PublicationRegistry()
        self._client = client
        logger.info(
            "sync_factory_initialized",
            capacity=self.limiter.capacity,
            refill_rate=self.limiter.rate,
        )

    @property
    def client(self) -> StoreClient:
        """Shared store client.

        Raises:
            SetupError: If the store is not configured
        """
        if self._client is None:
            self._client = StoreClient.from_settings()
        return self._client

    def create_executor(self) -> RequestExecutor:
        return RequestExecutor(self.client, self.limiter)

    def create_orchestrator(self, batch_size: Optional[int] = None) -> BulkOrchestrator:
        return BulkOrchestrator(
            self.create_executor(),
            self.publications,
            builder=MutationBuilder(),
            batch_size=batch_size,
        )

    def create_tracker(self) -> BulkOperationTracker:
        return BulkOperationTracker(self.create_executor(), self.client)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# Global factory instance
_factory: Optional[SyncFactory] = None


def get_sync_factory() -> SyncFactory:
    """Get the global sync factory instance.

    Returns:
        SyncFactory instance
    """
    global _factory

    if _factory is None:
        _factory = SyncFactory()
    return _factory
