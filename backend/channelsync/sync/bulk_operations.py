"""Tracker for server-side bulk query jobs.

Catalog-wide reads are too large to page through client-side, so they are
submitted as a bulk job, polled by the caller on its own cadence, and their
JSONL result file is streamed once the job completed. There is no wait loop
here; HTTP callers check status manually instead of holding a request open.
"""

import json
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
import structlog

from channelsync.core.exceptions import BulkOperationError, BulkOperationNotReadyError
from channelsync.sync.executor import RequestExecutor
from channelsync.sync.models import AsyncOperationHandle, OperationStatus, normalize_entity_id
from channelsync.sync.store_client import StoreClient

logger = structlog.get_logger(__name__)

SUBMIT_MUTATION = """
mutation RunBulkQuery($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

OPERATION_FIELDS = "id status errorCode objectCount url"

POLL_QUERY = f"""
query BulkOperationStatus($id: ID!) {{
  node(id: $id) {{ ... on BulkOperation {{ {OPERATION_FIELDS} }} }}
}}
"""

CURRENT_QUERY = f"""
query CurrentBulkOperation {{
  currentBulkOperation {{ {OPERATION_FIELDS} }}
}}
"""

# Default export: every product id in the catalog
PRODUCT_IDS_QUERY = "{ products { edges { node { id } } } }"

# Remote status -> tracked status
STATUS_MAP = {
    "CREATED": OperationStatus.RUNNING,
    "RUNNING": OperationStatus.RUNNING,
    "CANCELING": OperationStatus.RUNNING,
    "COMPLETED": OperationStatus.COMPLETED,
    "FAILED": OperationStatus.FAILED,
    "CANCELED": OperationStatus.FAILED,
    "EXPIRED": OperationStatus.FAILED,
}

DOWNLOAD_TIMEOUT_SECONDS = 300.0


@dataclass
class BulkResult:
    """Entity ids extracted from a bulk result file."""

    entity_ids: List[str] = field(default_factory=list)
    malformed_lines: int = 0
    truncated: bool = False  # Download stopped early on a network error


def handle_from_node(node: dict) -> AsyncOperationHandle:
    status = STATUS_MAP.get(str(node.get("status", "")).upper(), OperationStatus.RUNNING)
    object_count = node.get("objectCount")
    return AsyncOperationHandle(
        operation_id=node["id"],
        status=status,
        result_url=node.get("url") if status == OperationStatus.COMPLETED else None,
        object_count=int(object_count) if object_count is not None else None,
        error_code=node.get("errorCode"),
    )


class BulkOperationTracker:
    """Submits, polls and downloads bulk query jobs."""

    def __init__(self, executor: RequestExecutor, client: StoreClient):
        """Initialize tracker.

        Args:
            executor: Executor for the submit/poll API calls
            client: Store client used to stream the result file
        """
        self.executor = executor
        self.client = client
        self.logger = logger.bind(service="bulk_operation_tracker")

    async def submit(self, query: str = PRODUCT_IDS_QUERY) -> AsyncOperationHandle:
        """Start a server-side bulk query.

        Raises:
            BulkOperationError: If the remote rejects the job
            RemoteAPIError: If the submit call itself fails
        """
        data = await self.executor.execute_query(SUBMIT_MUTATION, {"query": query})
        payload = data.get("bulkOperationRunQuery") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            messages = "; ".join(str(e.get("message")) for e in user_errors)
            self.logger.error("bulk_operation_rejected", errors=messages)
            raise BulkOperationError(f"Bulk operation rejected: {messages}")

        operation = payload.get("bulkOperation")
        if not operation or not operation.get("id"):
            raise BulkOperationError("Bulk operation was not created")

        handle = handle_from_node(operation)
        self.logger.info("bulk_operation_submitted", operation_id=handle.operation_id)
        return handle

    async def poll(self, handle: AsyncOperationHandle) -> AsyncOperationHandle:
        """Fetch the current state of a job.

        A job that is still running is returned as-is, never raised.

        Raises:
            BulkOperationError: If the job no longer exists
        """
        data = await self.executor.execute_query(POLL_QUERY, {"id": handle.operation_id})
        node = data.get("node")
        if not node:
            raise BulkOperationError(f"Bulk operation {handle.operation_id} not found")

        updated = handle_from_node(node)
        self.logger.info(
            "bulk_operation_polled",
            operation_id=updated.operation_id,
            status=updated.status.value,
            object_count=updated.object_count,
        )
        return updated

    async def current(self) -> Optional[AsyncOperationHandle]:
        """Return the store's most recent bulk job, or None if there is none."""
        data = await self.executor.execute_query(CURRENT_QUERY)
        node = data.get("currentBulkOperation")
        return handle_from_node(node) if node else None

    async def fetch_result(self, handle: AsyncOperationHandle) -> BulkResult:
        """Stream the JSONL result file and extract top-level entity ids.

        Malformed lines are logged and skipped. A network failure mid-stream
        keeps the ids read so far and marks the result truncated.

        Raises:
            BulkOperationNotReadyError: If the job has not completed
            BulkOperationError: If the result file cannot be fetched at all
        """
        if handle.status != OperationStatus.COMPLETED:
            raise BulkOperationNotReadyError(handle.operation_id, handle.status.value)

        result = BulkResult()
        if not handle.result_url:
            # Completed with zero objects: no file is produced
            return result

        try:
            async with self.client.stream_download(
                handle.result_url, DOWNLOAD_TIMEOUT_SECONDS
            ) as response:
                if response.status_code >= 400:
                    raise BulkOperationError(
                        f"Result download failed: HTTP {response.status_code}"
                    )
                line_number = 0
                async for line in response.aiter_lines():
                    line_number += 1
                    if not line.strip():
                        continue
                    entity_id = self._parse_line(line, line_number)
                    if entity_id is None:
                        result.malformed_lines += 1
                    elif entity_id:
                        result.entity_ids.append(entity_id)
        except httpx.HTTPError as e:
            result.truncated = True
            self.logger.error(
                "bulk_result_download_interrupted",
                operation_id=handle.operation_id,
                ids_read=len(result.entity_ids),
                error=str(e),
            )

        self.logger.info(
            "bulk_result_downloaded",
            operation_id=handle.operation_id,
            ids=len(result.entity_ids),
            malformed_lines=result.malformed_lines,
        )
        return result

    def _parse_line(self, line: str, line_number: int) -> Optional[str]:
        """Return the record's entity id, "" for child records, None if malformed."""
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            self.logger.warning("bulk_result_line_malformed", line=line_number, error=str(e))
            return None
        if not isinstance(record, dict) or not record.get("id"):
            self.logger.warning("bulk_result_line_malformed", line=line_number, error="missing id")
            return None
        if record.get("__parentId"):
            return ""
        try:
            return normalize_entity_id(record["id"])
        except ValueError as e:
            self.logger.warning("bulk_result_line_malformed", line=line_number, error=str(e))
            return None
