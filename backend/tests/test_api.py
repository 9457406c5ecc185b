"""Tests for the HTTP API routes."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from channelsync.api.v1.webhooks import compute_signature
from channelsync.config import settings
from channelsync.core.exceptions import ClientRequestError, SetupError, TransientRemoteError
from channelsync.dependencies import get_sync_service
from channelsync.main import app
from channelsync.sync.models import AsyncOperationHandle, BatchOutcome, BatchProgress

API_KEY = "test-admin-key"
WEBHOOK_SECRET = "test-webhook-secret"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", API_KEY)
    monkeypatch.setattr(settings, "STORE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    app.dependency_overrides[get_sync_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return {"X-API-Key": API_KEY}


def partial_outcome() -> BatchOutcome:
    return BatchOutcome(
        succeeded_ids=("1",),
        failed_ids=("2",),
        failure_reasons={"Product not found": 1},
    )


# ============================================================================
# AUTH TESTS
# ============================================================================

class TestApiKey:
    """Mutating routes require X-API-Key."""

    def test_missing_key_rejected(self, client, service):
        response = client.post(
            "/api/v1/products/bulk-update-sales-channels",
            json={"productIds": ["1"], "salesChannels": ["TikTok"]},
        )

        assert response.status_code == 403
        service.bulk_update_sales_channels.assert_not_called()

    def test_wrong_key_rejected(self, client):
        response = client.post(
            "/api/v1/products/bulk-update-sales-channels",
            json={"productIds": ["1"], "salesChannels": ["TikTok"]},
            headers={"X-API-Key": "nope"},
        )

        assert response.status_code == 403

    def test_unconfigured_key_disables_route(self, client, auth, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "")

        response = client.post(
            "/api/v1/products/bulk-update-sales-channels",
            json={"productIds": ["1"], "salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 403


# ============================================================================
# PRODUCT ROUTE TESTS
# ============================================================================

class TestProductRoutes:
    """Channel and attribute routes."""

    def test_list_sales_channels(self, client, service):
        service.list_sales_channels = AsyncMock(return_value=["Google & YouTube", "TikTok"])

        response = client.get("/api/v1/products/sales-channels")

        assert response.status_code == 200
        assert response.json() == {"salesChannels": ["Google & YouTube", "TikTok"]}

    def test_setup_error_is_503(self, client, service):
        service.list_sales_channels = AsyncMock(side_effect=SetupError("Could not load sales channels"))

        response = client.get("/api/v1/products/sales-channels")

        assert response.status_code == 503

    def test_list_products(self, client, service):
        service.list_products = AsyncMock(return_value=[
            {"id": "gid://shopify/Product/1", "title": "Tee", "tags": ["summer"], "createdAt": "2024-05-01T00:00:00Z"},
        ])

        response = client.get("/api/v1/products", params={"limit": 5})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["products"][0]["createdAt"] == "2024-05-01T00:00:00Z"
        service.list_products.assert_awaited_once_with(limit=5)

    def test_missing_channels(self, client, service):
        service.get_products_missing_channels = AsyncMock(return_value=["gid://shopify/Product/2"])

        response = client.get("/api/v1/products/missing-channels", params={"channels": ["TikTok"]})

        assert response.json() == {"productIds": ["gid://shopify/Product/2"], "count": 1}
        service.get_products_missing_channels.assert_awaited_once_with(["TikTok"])

    def test_bulk_update_partial_failure_is_200(self, client, service, auth):
        service.bulk_update_sales_channels = AsyncMock(return_value=partial_outcome())

        response = client.post(
            "/api/v1/products/bulk-update-sales-channels",
            json={"productIds": [1, "2"], "salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["updatedProducts"] == ["1"]
        assert body["failedProducts"] == ["2"]
        assert body["message"].startswith("Updated 1 products, 1 products failed")
        assert body["failureSummary"] == [{"error": "Product not found", "count": 1}]
        service.bulk_update_sales_channels.assert_awaited_once_with(["1", "2"], ["TikTok"])

    def test_bulk_update_requires_product_ids(self, client, auth):
        response = client.post(
            "/api/v1/products/bulk-update-sales-channels",
            json={"productIds": [], "salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 422

    def test_bulk_update_stream(self, client, service, auth):
        async def fake_update(product_ids, channels, on_progress=None):
            await on_progress(BatchProgress(1, 2, 1, 1, 0))
            await on_progress(BatchProgress(2, 2, 2, 1, 1))
            return partial_outcome()

        service.bulk_update_sales_channels = fake_update

        response = client.post(
            "/api/v1/products/bulk-update-sales-channels/stream",
            json={"productIds": ["1", "2"], "salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["status"] for e in events] == [
            "processing", "batch_completed", "batch_completed", "completed",
        ]
        assert events[0]["totalProducts"] == 2
        assert events[2]["failureCount"] == 1
        assert events[-1]["failedProducts"] == ["2"]

    def test_bulk_update_stream_reports_errors(self, client, service, auth):
        service.bulk_update_sales_channels = AsyncMock(side_effect=SetupError("no channels"))

        response = client.post(
            "/api/v1/products/bulk-update-sales-channels/stream",
            json={"productIds": ["1"], "salesChannels": ["TikTok"]},
            headers=auth,
        )

        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert events[-1] == {"status": "error", "message": "no channels"}

    def test_bulk_update_stream_ends_with_error_on_unexpected_failure(self, client, service, auth):
        service.bulk_update_sales_channels = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.post(
            "/api/v1/products/bulk-update-sales-channels/stream",
            json={"productIds": ["1"], "salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 200
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["status"] for e in events] == ["processing", "error"]
        assert events[-1]["message"] == "Unexpected error: boom"

    def test_bulk_update_attributes(self, client, service, auth):
        service.bulk_update_attributes = AsyncMock(return_value=BatchOutcome(succeeded_ids=("1",)))

        response = client.post(
            "/api/v1/products/bulk-update-attributes",
            json={"productIds": ["1"], "attributes": {"color": "Red", "ageGroup": "adult"}},
            headers=auth,
        )

        assert response.status_code == 200
        assert response.json()["message"] == "All 1 products updated successfully"
        attrs = service.bulk_update_attributes.await_args.args[1]
        assert attrs.color == "Red"
        assert attrs.age_group == "adult"
        assert attrs.size is None

    def test_auto_update_attributes(self, client, service, auth):
        service.auto_update_attributes = AsyncMock(return_value=BatchOutcome(succeeded_ids=("1",)))

        response = client.post(
            "/api/v1/products/auto-update-attributes",
            json={"productIds": ["1"]},
            headers=auth,
        )

        assert response.status_code == 200
        service.auto_update_attributes.assert_awaited_once_with(["1"])

    def test_get_product(self, client, service):
        service.get_product = AsyncMock(return_value={"id": "gid://shopify/Product/1", "salesChannels": []})

        response = client.get("/api/v1/products/1")

        assert response.status_code == 200
        assert response.json()["id"] == "gid://shopify/Product/1"

    def test_get_product_not_found(self, client, service):
        service.get_product = AsyncMock(return_value=None)

        assert client.get("/api/v1/products/1").status_code == 404

    def test_get_product_invalid_id(self, client, service):
        service.get_product = AsyncMock(side_effect=ValueError("Invalid entity id"))

        assert client.get("/api/v1/products/abc").status_code == 400

    def test_single_product_update_client_error(self, client, service, auth):
        service.update_product_sales_channels = AsyncMock(side_effect=ClientRequestError("Product not found"))

        response = client.post(
            "/api/v1/products/1/sales-channels",
            json={"salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Product not found"

    def test_single_product_update_remote_failure(self, client, service, auth):
        service.update_product_sales_channels = AsyncMock(side_effect=TransientRemoteError("Server error: HTTP 503"))

        response = client.post(
            "/api/v1/products/1/sales-channels",
            json={"salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 502


# ============================================================================
# BULK OPERATION ROUTE TESTS
# ============================================================================

class TestBulkOperationRoutes:
    """Catalog export routes."""

    def test_start(self, client, service, auth):
        service.start_catalog_export = AsyncMock(return_value=AsyncOperationHandle("gid://shopify/BulkOperation/1"))

        response = client.post("/api/v1/bulk-operations", headers=auth)

        assert response.status_code == 200
        assert response.json()["status"] == "RUNNING"
        service.start_catalog_export.assert_awaited_once_with(None)

    def test_status_none_is_404(self, client, service):
        service.check_catalog_export = AsyncMock(return_value=None)

        assert client.get("/api/v1/bulk-operations/status").status_code == 404

    def test_status_by_id(self, client, service):
        service.check_catalog_export = AsyncMock(return_value=AsyncOperationHandle("gid://shopify/BulkOperation/1"))

        response = client.get("/api/v1/bulk-operations/status", params={"operationId": "gid://shopify/BulkOperation/1"})

        assert response.json()["operationId"] == "gid://shopify/BulkOperation/1"
        service.check_catalog_export.assert_awaited_once_with("gid://shopify/BulkOperation/1")

    def test_process_not_ready(self, client, service, auth):
        service.process_catalog_export = AsyncMock(return_value={
            "operation": AsyncOperationHandle("gid://shopify/BulkOperation/1").to_dict(),
            "ready": False,
        })

        response = client.post(
            "/api/v1/bulk-operations/process",
            json={"operationId": "gid://shopify/BulkOperation/1", "salesChannels": ["TikTok"]},
            headers=auth,
        )

        assert response.status_code == 200
        assert response.json()["ready"] is False
        assert response.json()["result"] is None


# ============================================================================
# WEBHOOK AND HEALTH TESTS
# ============================================================================

class TestWebhooks:
    """Signed product-created deliveries."""

    def _post(self, client, payload: dict, secret: str = WEBHOOK_SECRET):
        body = json.dumps(payload).encode()
        return client.post(
            "/api/v1/webhooks/product-created",
            content=body,
            headers={
                "X-Shopify-Hmac-SHA256": compute_signature(body, secret),
                "Content-Type": "application/json",
            },
        )

    def test_valid_delivery_publishes_product(self, client, service):
        service.bulk_update_sales_channels = AsyncMock(return_value=BatchOutcome(succeeded_ids=("x",)))

        response = self._post(client, {"id": 1, "admin_graphql_api_id": "gid://shopify/Product/1"})

        assert response.status_code == 200
        assert response.json()["productId"] == "gid://shopify/Product/1"
        service.bulk_update_sales_channels.assert_awaited_once_with(
            ["gid://shopify/Product/1"], settings.get_default_sales_channels()
        )

    def test_bad_signature_rejected(self, client, service):
        service.bulk_update_sales_channels = AsyncMock()

        response = self._post(client, {"id": 1}, secret="wrong-secret")

        assert response.status_code == 401
        service.bulk_update_sales_channels.assert_not_awaited()

    def test_missing_product_id(self, client):
        assert self._post(client, {"title": "x"}).status_code == 400


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert set(body["rate_limiter"]) == {"tokens", "capacity", "rate", "tier"}
        assert body["scheduler"]["running"] is False
