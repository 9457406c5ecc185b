"""Resilient request executor.

Wraps every outbound GraphQL call with rate limiting, throttle detection and
retries. Three failure classes are handled differently:

- Throttled (HTTP 429 or a THROTTLED query error): retried without touching
  the normal retry budget, with a long exponential backoff, after draining
  the shared bucket and dropping it to its slowest tier.
- Transient (timeouts, transport errors, 5xx): retried up to ``max_retries``
  with a short exponential backoff.
- Anything else (4xx, query errors): raised immediately.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type

from channelsync.config import settings
from channelsync.core.exceptions import (
    ClientRequestError,
    RemoteAPIError,
    ThrottledError,
    TransientRemoteError,
)
from channelsync.sync.store_client import StoreClient
from channelsync.sync.utils.rate_limiter import ThrottleTier, TokenBucket

logger = structlog.get_logger(__name__)

THROTTLE_BASE_DELAY = 4.0
THROTTLE_MAX_DELAY = 60.0
TRANSIENT_BASE_DELAY = 0.5
TRANSIENT_MAX_DELAY = 30.0

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"


def extract_headroom(response: httpx.Response, body: Optional[dict]) -> Optional[float]:
    """Read the remaining rate-limit budget as a fraction of the maximum.

    GraphQL responses report ``extensions.cost.throttleStatus``; REST style
    responses carry a ``used/limit`` header. Returns None when neither is present.
    """
    if body:
        status = ((body.get("extensions") or {}).get("cost") or {}).get("throttleStatus")
        if status:
            maximum = status.get("maximumAvailable") or 0
            available = status.get("currentlyAvailable")
            if maximum > 0 and available is not None:
                return max(0.0, min(1.0, available / maximum))

    header = response.headers.get(CALL_LIMIT_HEADER)
    if header and "/" in header:
        used, _, limit = header.partition("/")
        try:
            used_n, limit_n = float(used), float(limit)
        except ValueError:
            return None
        if limit_n > 0:
            return max(0.0, min(1.0, (limit_n - used_n) / limit_n))
    return None


def is_throttle_error(error: dict) -> bool:
    code = ((error.get("extensions") or {}).get("code") or "").upper()
    return code == "THROTTLED" or "throttled" in str(error.get("message", "")).lower()


def first_error_message(errors: List[dict]) -> str:
    for error in errors:
        message = error.get("message") if isinstance(error, dict) else str(error)
        if message:
            return str(message)
    return "Unknown GraphQL error"


class RetryLedger:
    """Per-call retry bookkeeping consulted by the tenacity stop/wait hooks.

    Throttled and transient failures are counted separately so throttling
    never consumes the transient retry budget.
    """

    def __init__(self, max_retries: int, throttle_retry_limit: int):
        self.max_retries = max(1, max_retries)
        self.throttle_retry_limit = throttle_retry_limit
        self.throttled = 0
        self.transient = 0
        self.last_kind: Optional[str] = None
        self.delays: List[float] = []

    def record(self, error: BaseException) -> None:
        if isinstance(error, ThrottledError):
            self.throttled += 1
            self.last_kind = "throttled"
        else:
            self.transient += 1
            self.last_kind = "transient"

    def should_stop(self, retry_state: RetryCallState) -> bool:
        if self.last_kind == "throttled":
            return self.throttled > self.throttle_retry_limit
        return self.transient >= self.max_retries

    def next_wait(self, retry_state: RetryCallState) -> float:
        if self.last_kind == "throttled":
            delay = min(THROTTLE_MAX_DELAY, THROTTLE_BASE_DELAY * 2 ** (self.throttled - 1))
        else:
            delay = min(TRANSIENT_MAX_DELAY, TRANSIENT_BASE_DELAY * 2 ** (self.transient - 1))
        self.delays.append(delay)
        return delay


class RequestExecutor:
    """Executes GraphQL requests under the shared throttling discipline."""

    def __init__(
        self,
        client: StoreClient,
        limiter: TokenBucket,
        max_retries: int = settings.REQUEST_MAX_RETRIES,
        timeout: float = settings.REQUEST_TIMEOUT_SECONDS,
        throttle_retry_limit: int = settings.THROTTLE_RETRY_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the executor.

        Args:
            client: Store transport
            limiter: Process-wide token bucket shared by all executors
            max_retries: Default transient retry budget per call
            timeout: Default per-call timeout in seconds
            throttle_retry_limit: Ceiling on throttled retries for one call
            sleep: Async sleep used for backoff, injectable for tests
        """
        self.client = client
        self.limiter = limiter
        self.max_retries = max_retries
        self.timeout = timeout
        self.throttle_retry_limit = throttle_retry_limit
        self._sleep = sleep
        self.calls_issued = 0
        self.logger = logger.bind(service="request_executor")

    async def execute(
        self,
        payload: Dict[str, Any],
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """Send one GraphQL payload, retrying per failure class.

        Args:
            payload: {"query": ..., "variables": ...}
            max_retries: Transient retry budget (defaults to the executor's)
            timeout: Per-attempt timeout in seconds

        Returns:
            Decoded response body

        Raises:
            ThrottledError: If the throttle ceiling is exceeded
            TransientRemoteError: After ``max_retries`` transient failures
            ClientRequestError: Immediately on non-retryable errors
        """
        ledger = RetryLedger(
            max_retries if max_retries is not None else self.max_retries,
            self.throttle_retry_limit,
        )
        attempt_timeout = timeout if timeout is not None else self.timeout

        def after_attempt(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            ledger.record(error)
            if isinstance(error, ThrottledError):
                self.limiter.apply_tier(ThrottleTier.THROTTLED)

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            self.logger.warning(
                "request_retry_scheduled",
                kind=ledger.last_kind,
                attempt=retry_state.attempt_number,
                delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error),
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((ThrottledError, TransientRemoteError)),
            stop=ledger.should_stop,
            wait=ledger.next_wait,
            after=after_attempt,
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        body: dict = {}
        async for attempt in retrying:
            with attempt:
                body = await self._attempt(payload, attempt_timeout)
        return body

    async def _attempt(self, payload: Dict[str, Any], timeout: float) -> dict:
        await self.limiter.try_consume(1)
        self.calls_issued += 1

        try:
            response = await self.client.post_graphql(payload, timeout)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"Connection error: {e}") from e
        except httpx.RequestError as e:
            raise TransientRemoteError(f"Request error: {e}") from e

        return self._classify(response)

    def _classify(self, response: httpx.Response) -> dict:
        status = response.status_code

        if status == 429:
            raise ThrottledError("Throttled: HTTP 429", status_code=status)
        if status >= 500:
            raise TransientRemoteError(f"Server error: HTTP {status}", status_code=status)

        try:
            body = response.json()
        except ValueError:
            body = None

        if status >= 400:
            message = f"HTTP {status}"
            if isinstance(body, dict) and body.get("errors"):
                errors = body["errors"]
                detail = first_error_message(errors) if isinstance(errors, list) else str(errors)
                message = f"{message}: {detail}"
            raise ClientRequestError(message, status_code=status)

        if not isinstance(body, dict):
            raise TransientRemoteError("Invalid JSON in response body", status_code=status)

        errors = body.get("errors") or []
        if errors and any(is_throttle_error(e) for e in errors if isinstance(e, dict)):
            raise ThrottledError("Throttled", status_code=status)

        self.limiter.apply_headroom(extract_headroom(response, body))

        if errors and not body.get("data"):
            raise ClientRequestError(first_error_message(errors), status_code=status)
        return body

    async def execute_query(self, query: str, variables: Optional[dict] = None, **kwargs) -> dict:
        """Convenience wrapper returning only the ``data`` member."""
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        body = await self.execute(payload, **kwargs)
        data = body.get("data")
        if data is None:
            raise RemoteAPIError("Response carried no data")
        return data
