"""HTTP client for the remote store's GraphQL Admin API.

Only transport lives here: headers, endpoint and the raw POST. Retry,
throttling and error classification belong to the request executor.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from channelsync.config import settings
from channelsync.core.exceptions import SetupError

logger = structlog.get_logger(__name__)

USER_AGENT = "channel-sync-proxy/0.1"


class StoreClient:
    """Async client for one store's GraphQL endpoint."""

    def __init__(
        self,
        api_url: str,
        access_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the store client.

        Args:
            api_url: GraphQL Admin API endpoint
            access_token: Admin API access token
            http_client: Optional pre-built client (tests inject a MockTransport)

        Raises:
            SetupError: If the endpoint or token is missing
        """
        if not api_url:
            raise SetupError("Store API URL is not configured")
        if not access_token:
            raise SetupError("Store access token is not configured")

        self.api_url = api_url
        self.access_token = access_token
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.REQUEST_TIMEOUT_SECONDS
        )
        self.logger = logger.bind(service="store_client")

    @classmethod
    def from_settings(cls) -> "StoreClient":
        return cls(settings.STORE_ADMIN_API_URL, settings.STORE_ACCESS_TOKEN)

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def post_graphql(self, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        """POST a GraphQL payload ({"query": ..., "variables": ...}).

        Raises:
            httpx.RequestError: On network or decoding failure
        """
        return await self._http.post(
            self.api_url,
            json=payload,
            headers=self._headers(),
            timeout=timeout,
        )

    def stream_download(self, url: str, timeout: float):
        """Stream a bulk operation result file.

        Result files live on the platform's storage host and are signed URLs,
        so no API token is sent and no API budget is spent.
        """
        return self._http.stream("GET", url, timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()
        self.logger.info("store_client_closed")
