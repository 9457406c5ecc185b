"""Pytest configuration and shared fixtures."""

import json
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from channelsync.sync.executor import RequestExecutor
from channelsync.sync.store_client import StoreClient
from channelsync.sync.utils.rate_limiter import TokenBucket

API_URL = "https://test-store.myshopify.com/admin/api/2024-04/graphql.json"


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def operation_name(payload: Dict[str, Any]) -> Optional[str]:
    match = re.match(r"\s*(?:query|mutation)\s+(\w+)", payload.get("query", ""))
    return match.group(1) if match else None


def graphql_response(
    data: Any = None,
    errors: Optional[list] = None,
    available: Optional[float] = None,
    maximum: float = 1000.0,
    status_code: int = 200,
    headers: Optional[dict] = None,
) -> httpx.Response:
    """Build a GraphQL response, optionally carrying throttle status."""
    body: Dict[str, Any] = {}
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    if available is not None:
        body["extensions"] = {
            "cost": {
                "throttleStatus": {
                    "maximumAvailable": maximum,
                    "currentlyAvailable": available,
                    "restoreRate": 50.0,
                }
            }
        }
    return httpx.Response(status_code, json=body, headers=headers)


def throttled_response() -> httpx.Response:
    return graphql_response(errors=[{"message": "Throttled", "extensions": {"code": "THROTTLED"}}])


class GraphQLStub:
    """Routes GraphQL requests to per-operation handlers and records them.

    A handler is either a callable taking the decoded payload, or a list of
    responses/exceptions returned in order (the last one repeats).
    """

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.downloads: Dict[str, Callable[[], httpx.Response]] = {}
        self.requests: List[Dict[str, Any]] = []

    def on(self, name: str, handler: Any) -> "GraphQLStub":
        self.handlers[name] = handler
        return self

    def on_download(self, url: str, make_response: Callable[[], httpx.Response]) -> "GraphQLStub":
        self.downloads[url] = make_response
        return self

    def calls(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        if name is None:
            return self.requests
        return [r for r in self.requests if operation_name(r) == name]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            make_response = self.downloads.get(str(request.url))
            if make_response is None:
                raise AssertionError(f"Unexpected download: {request.url}")
            return make_response()

        payload = json.loads(request.content)
        self.requests.append(payload)
        name = operation_name(payload)
        handler = self.handlers.get(name)
        if handler is None:
            raise AssertionError(f"Unexpected operation: {name}")

        if callable(handler):
            result = handler(payload)
        else:
            result = handler.pop(0) if len(handler) > 1 else handler[0]

        if isinstance(result, Exception):
            raise result
        # Fresh copy: a response object must not be sent twice
        return httpx.Response(result.status_code, headers=result.headers, content=result.content)


def publications_handler(channels: Dict[str, str]) -> Callable[[dict], httpx.Response]:
    def handler(payload: dict) -> httpx.Response:
        edges = [{"node": {"id": pid, "name": name}} for name, pid in channels.items()]
        return graphql_response(
            {"publications": {"edges": edges, "pageInfo": {"hasNextPage": False, "endCursor": None}}}
        )

    return handler


def publish_all_ok(payload: dict) -> httpx.Response:
    """Answer a PublishProducts document with success for every alias."""
    aliases = re.findall(r"(\w+): publishablePublish", payload["query"])
    return graphql_response({alias: {"userErrors": []} for alias in aliases})


def set_attributes_ok(payload: dict) -> httpx.Response:
    aliases = re.findall(r"(\w+): metafieldsSet", payload["query"])
    return graphql_response({alias: {"userErrors": []} for alias in aliases})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub() -> GraphQLStub:
    return GraphQLStub()


@pytest.fixture
def store_client(stub: GraphQLStub) -> StoreClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return StoreClient(API_URL, "test-token", http_client=http_client)


@pytest.fixture
def limiter(clock: FakeClock) -> TokenBucket:
    return TokenBucket(rate=50.0, capacity=1000.0, clock=clock, sleep=clock.sleep)


@pytest.fixture
def executor(store_client: StoreClient, limiter: TokenBucket, clock: FakeClock) -> RequestExecutor:
    return RequestExecutor(
        store_client,
        limiter,
        max_retries=3,
        timeout=5.0,
        throttle_retry_limit=25,
        sleep=clock.sleep,
    )
