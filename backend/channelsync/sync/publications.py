"""Publication (sales channel) name -> id registry.

One registry instance is shared by the whole process; the cache is filled on
first use and refreshed on demand.
"""

from typing import Dict, List, Optional, Tuple

import structlog

from channelsync.core.exceptions import RemoteAPIError, SetupError
from channelsync.sync.executor import RequestExecutor
from channelsync.sync.models import ChannelSet

logger = structlog.get_logger(__name__)

PUBLICATIONS_QUERY = """
query Publications($first: Int!, $after: String) {
  publications(first: $first, after: $after) {
    edges { node { id name } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PAGE_SIZE = 50


class PublicationRegistry:
    """Caches the store's publication list keyed by channel name."""

    def __init__(self) -> None:
        self._by_name: Optional[Dict[str, str]] = None

    @property
    def loaded(self) -> bool:
        return self._by_name is not None

    def invalidate(self) -> None:
        self._by_name = None

    async def get_all(self, executor: RequestExecutor, refresh: bool = False) -> Dict[str, str]:
        """Return the name -> publication id map, fetching it when needed.

        Raises:
            SetupError: If the publication list cannot be enumerated
        """
        if self._by_name is not None and not refresh:
            return self._by_name

        by_name: Dict[str, str] = {}
        cursor: Optional[str] = None
        try:
            while True:
                data = await executor.execute_query(
                    PUBLICATIONS_QUERY, {"first": PAGE_SIZE, "after": cursor}
                )
                connection = data.get("publications") or {}
                for edge in connection.get("edges") or []:
                    node = edge.get("node") or {}
                    if node.get("name") and node.get("id"):
                        by_name[node["name"]] = node["id"]
                page_info = connection.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")
        except RemoteAPIError as e:
            raise SetupError(f"Could not load sales channels: {e.message}") from e

        self._by_name = by_name
        logger.info("publications_loaded", count=len(by_name))
        return by_name

    async def resolve(
        self, executor: RequestExecutor, channels: ChannelSet
    ) -> Tuple[List[str], List[str]]:
        """Resolve channel names to publication ids.

        Unknown names are ignored, not treated as errors.

        Returns:
            Tuple of (publication ids, unknown channel names)
        """
        by_name = await self.get_all(executor)
        resolved: List[str] = []
        unknown: List[str] = []
        for name in channels:
            publication_id = by_name.get(name)
            if publication_id:
                resolved.append(publication_id)
            else:
                unknown.append(name)

        if unknown:
            logger.warning("unknown_channels_ignored", channels=unknown)
        return resolved, unknown
