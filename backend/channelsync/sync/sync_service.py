"""Product sync service.

Entry point used by the API routes, the webhook and the scheduler. It wires
requests to the orchestrator, the bulk operation tracker and the raw query
executor, all sharing the factory's limiter and publication cache.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import structlog

from channelsync.config import settings
from channelsync.core.exceptions import BulkOperationError, ClientRequestError
from channelsync.sync.factory import SyncFactory, get_sync_factory
from channelsync.sync.models import (
    AsyncOperationHandle,
    AttributeSet,
    BatchOutcome,
    ChannelSet,
    OperationStatus,
    normalize_entity_id,
)
from channelsync.sync.mutation_builder import MutationBuilder
from channelsync.sync.orchestrator import ProgressCallback
from channelsync.sync.utils.classifier import AttributeClassifier, KeywordAttributeClassifier

logger = structlog.get_logger(__name__)

PRODUCT_QUERY = """
query Product($id: ID!) {
  product(id: $id) {
    id
    title
    tags
    createdAt
    resourcePublications(first: 25) { edges { node { publication { id name } } } }
  }
}
"""

PRODUCT_DETAILS_QUERY = """
query ProductDetails($ids: [ID!]!) {
  nodes(ids: $ids) { ... on Product { id title tags } }
}
"""

NEW_PRODUCTS_QUERY = """
query NewProducts($first: Int!, $after: String, $query: String!) {
  products(first: $first, after: $after, query: $query) {
    edges { node { id } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PRODUCTS_QUERY = """
query ListProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges { node { id title tags createdAt } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

DETAILS_PAGE_SIZE = 50
LISTING_PAGE_SIZE = 100
NOT_FOUND = "Product not found"


def missing_channels_query(publication_count: int) -> str:
    """Listing query with one aliased publishedOnPublication check per channel."""
    definitions = "".join(f", $pub{i}: ID!" for i in range(publication_count))
    checks = " ".join(
        f"on{i}: publishedOnPublication(publicationId: $pub{i})"
        for i in range(publication_count)
    )
    return (
        f"query MissingChannels($first: Int!, $after: String{definitions}) {{ "
        f"products(first: $first, after: $after) {{ "
        f"edges {{ node {{ id {checks} }} }} "
        f"pageInfo {{ hasNextPage endCursor }} }} }}"
    )


class ProductSyncService:
    """Facade over the sync engine for product publication and attributes."""

    def __init__(
        self,
        factory: Optional[SyncFactory] = None,
        classifier: Optional[AttributeClassifier] = None,
    ):
        """Initialize the service.

        Args:
            factory: Component factory, defaults to the process-wide one
            classifier: Attribute classifier for auto-updates
        """
        self.factory = factory or get_sync_factory()
        self.classifier = classifier or KeywordAttributeClassifier()
        self.logger = logger.bind(service="product_sync_service")

    @staticmethod
    def _deadline(timeout_seconds: Optional[float]) -> Optional[float]:
        if not timeout_seconds:
            return None
        return time.monotonic() + timeout_seconds

    # ------------------------------------------------------------------
    # Sales channels
    # ------------------------------------------------------------------

    async def list_sales_channels(self, refresh: bool = False) -> List[str]:
        executor = self.factory.create_executor()
        by_name = await self.factory.publications.get_all(executor, refresh=refresh)
        return sorted(by_name)

    async def update_product_sales_channels(
        self, product_id: str, channels: Sequence[str]
    ) -> Dict[str, Any]:
        """Publish one product to the given channels.

        Unlike bulk runs, errors here fail the whole request.

        Raises:
            ValueError: If the product id is malformed
            ClientRequestError: If the remote rejects any publication
            SetupError: If the publication list cannot be loaded
        """
        entity_id = normalize_entity_id(product_id)
        executor = self.factory.create_executor()
        publication_ids, unknown = await self.factory.publications.resolve(
            executor, ChannelSet.of(channels)
        )

        build = MutationBuilder().build_channel_documents(
            [entity_id], publication_ids
        )
        for document in build.documents:
            body = await executor.execute(document.to_payload())
            error = document.entity_errors(body).get(entity_id)
            if error:
                raise ClientRequestError(error)

        self.logger.info(
            "product_channels_updated",
            product_id=entity_id,
            channels=len(publication_ids),
            ignored=unknown,
        )
        return {
            "id": entity_id,
            "publishedChannels": [c for c in ChannelSet.of(channels) if c not in unknown],
            "ignoredChannels": unknown,
        }

    async def bulk_update_sales_channels(
        self,
        product_ids: Sequence[str],
        channels: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        timeout_seconds: Optional[float] = None,
    ) -> BatchOutcome:
        orchestrator = self.factory.create_orchestrator()
        return await orchestrator.run(
            product_ids,
            ChannelSet.of(channels),
            on_progress=on_progress,
            deadline=self._deadline(timeout_seconds),
        )

    async def list_products(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """List catalog products (id, title, tags, createdAt).

        Pages through the catalog with cursor pagination until ``limit``
        products are collected or the catalog is exhausted.
        """
        executor = self.factory.create_executor()
        products: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while limit is None or len(products) < limit:
            page_size = LISTING_PAGE_SIZE if limit is None else min(LISTING_PAGE_SIZE, limit - len(products))
            data = await executor.execute_query(
                PRODUCTS_QUERY, {"first": page_size, "after": cursor}
            )
            connection = data.get("products") or {}
            products.extend(
                edge["node"] for edge in connection.get("edges") or [] if edge.get("node")
            )
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        if limit is not None:
            products = products[:limit]
        self.logger.info("products_listed", count=len(products))
        return products

    async def get_products_missing_channels(
        self, channels: Optional[Sequence[str]] = None
    ) -> List[str]:
        """List products not published on every one of the given channels.

        Pages through the whole catalog with cursor pagination. Channels
        unknown to the store are ignored.
        """
        names = list(channels) if channels else settings.get_default_sales_channels()
        executor = self.factory.create_executor()
        publication_ids, _ = await self.factory.publications.resolve(
            executor, ChannelSet.of(names)
        )
        if not publication_ids:
            return []

        query = missing_channels_query(len(publication_ids))
        base_vars = {f"pub{i}": pid for i, pid in enumerate(publication_ids)}
        missing: List[str] = []
        cursor: Optional[str] = None

        while True:
            data = await executor.execute_query(
                query, {"first": LISTING_PAGE_SIZE, "after": cursor, **base_vars}
            )
            connection = data.get("products") or {}
            for edge in connection.get("edges") or []:
                node = edge.get("node") or {}
                if not all(node.get(f"on{i}") for i in range(len(publication_ids))):
                    missing.append(node["id"])
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        self.logger.info("products_missing_channels", count=len(missing))
        return missing

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    async def bulk_update_attributes(
        self,
        product_ids: Sequence[str],
        attributes: AttributeSet,
        on_progress: Optional[ProgressCallback] = None,
        timeout_seconds: Optional[float] = None,
    ) -> BatchOutcome:
        orchestrator = self.factory.create_orchestrator()
        return await orchestrator.run(
            product_ids,
            attributes,
            on_progress=on_progress,
            deadline=self._deadline(timeout_seconds),
        )

    async def auto_update_attributes(
        self,
        product_ids: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchOutcome:
        """Classify each product from its title and tags, then set the results.

        Products that do not exist are reported as failed; products where
        nothing could be detected succeed without any mutation.
        """
        entity_ids: List[str] = []
        invalid: List[str] = []
        for raw in product_ids:
            try:
                entity_ids.append(normalize_entity_id(raw))
            except ValueError:
                invalid.append(str(raw))
        entity_ids = list(dict.fromkeys(entity_ids))

        executor = self.factory.create_executor()
        detected: Dict[str, AttributeSet] = {}
        for i in range(0, len(entity_ids), DETAILS_PAGE_SIZE):
            page = entity_ids[i:i + DETAILS_PAGE_SIZE]
            data = await executor.execute_query(PRODUCT_DETAILS_QUERY, {"ids": page})
            for node in data.get("nodes") or []:
                if node and node.get("id"):
                    detected[node["id"]] = self.classifier.classify(
                        node.get("title") or "", node.get("tags") or []
                    )

        found = [e for e in entity_ids if e in detected]
        not_found = [e for e in entity_ids if e not in detected]
        self.logger.info(
            "attributes_classified",
            products=len(found),
            not_found=len(not_found),
            with_attributes=sum(1 for a in detected.values() if not a.is_blank()),
        )

        orchestrator = self.factory.create_orchestrator()
        outcome = await orchestrator.run(found, detected, on_progress=on_progress)
        outcome = outcome.with_failures(not_found, NOT_FOUND)
        return outcome.with_failures(invalid, "Invalid product id")

    # ------------------------------------------------------------------
    # Lookups and raw queries
    # ------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one product. Returns None when it does not exist.

        Raises:
            ValueError: If the product id is malformed
        """
        entity_id = normalize_entity_id(product_id)
        executor = self.factory.create_executor()
        data = await executor.execute_query(PRODUCT_QUERY, {"id": entity_id})
        product = data.get("product")
        if not product:
            return None

        edges = (product.pop("resourcePublications", None) or {}).get("edges") or []
        product["salesChannels"] = sorted(
            e["node"]["publication"]["name"]
            for e in edges
            if (e.get("node") or {}).get("publication")
        )
        return product

    async def execute_request(
        self, query: str, retries: Optional[int] = None, timeout_seconds: Optional[float] = None
    ) -> dict:
        """Raw pass-through for arbitrary queries under the shared throttle."""
        executor = self.factory.create_executor()
        return await executor.execute({"query": query}, max_retries=retries, timeout=timeout_seconds)

    # ------------------------------------------------------------------
    # Catalog-wide bulk jobs
    # ------------------------------------------------------------------

    async def start_catalog_export(self, query: Optional[str] = None) -> AsyncOperationHandle:
        tracker = self.factory.create_tracker()
        if query:
            return await tracker.submit(query)
        return await tracker.submit()

    async def check_catalog_export(
        self, operation_id: Optional[str] = None
    ) -> Optional[AsyncOperationHandle]:
        """Current status of a bulk job (or of the store's latest job)."""
        tracker = self.factory.create_tracker()
        if operation_id:
            return await tracker.poll(AsyncOperationHandle(operation_id=operation_id))
        return await tracker.current()

    async def process_catalog_export(
        self,
        operation_id: str,
        channels: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """Publish every product from a completed bulk job to ``channels``.

        A job still running is reported back with its status, not raised.

        Raises:
            BulkOperationError: If the job failed
        """
        tracker = self.factory.create_tracker()
        handle = await tracker.poll(AsyncOperationHandle(operation_id=operation_id))

        if handle.status == OperationStatus.RUNNING:
            return {"operation": handle.to_dict(), "ready": False}
        if handle.status == OperationStatus.FAILED:
            raise BulkOperationError(
                f"Bulk operation {operation_id} failed ({handle.error_code or 'unknown'})"
            )

        result = await tracker.fetch_result(handle)
        outcome = await self.bulk_update_sales_channels(
            result.entity_ids,
            channels,
            on_progress=on_progress,
            timeout_seconds=settings.BULK_RUN_TIMEOUT_SECONDS,
        )
        return {
            "operation": handle.to_dict(),
            "ready": True,
            "malformedLines": result.malformed_lines,
            "truncated": result.truncated,
            "result": outcome.to_response(),
        }

    # ------------------------------------------------------------------
    # New products
    # ------------------------------------------------------------------

    async def find_new_products(self, lookback_minutes: int) -> List[str]:
        since = datetime.now(timezone.utc) - timedelta(minutes=lookback_minutes)
        search = f"created_at:>{since.strftime('%Y-%m-%dT%H:%M:%SZ')}"
        executor = self.factory.create_executor()

        ids: List[str] = []
        cursor: Optional[str] = None
        while True:
            data = await executor.execute_query(
                NEW_PRODUCTS_QUERY,
                {"first": LISTING_PAGE_SIZE, "after": cursor, "query": search},
            )
            connection = data.get("products") or {}
            ids.extend(e["node"]["id"] for e in connection.get("edges") or [] if e.get("node"))
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
        return ids

    async def publish_new_products(
        self,
        lookback_minutes: int = settings.NEW_PRODUCT_LOOKBACK_MINUTES,
        channels: Optional[Sequence[str]] = None,
    ) -> Optional[BatchOutcome]:
        """Publish products created within the lookback window to the default channels.

        Returns:
            The run's outcome, or None when there were no new products
        """
        product_ids = await self.find_new_products(lookback_minutes)
        if not product_ids:
            self.logger.info("no_new_products", lookback_minutes=lookback_minutes)
            return None

        target = list(channels) if channels else settings.get_default_sales_channels()
        self.logger.info("new_products_found", count=len(product_ids), channels=target)
        outcome = await self.bulk_update_sales_channels(product_ids, target)
        if not outcome.success:
            self.logger.warning(
                "new_products_partially_failed",
                failed=len(outcome.failed_ids),
                failure_summary=outcome.to_response()["failureSummary"],
            )
        return outcome
