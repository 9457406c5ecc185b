"""Tests for the new-product scheduler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from channelsync.sync.models import BatchOutcome
from channelsync.sync.scheduler import JOB_ID, NewProductScheduler


@pytest.fixture
def service():
    service = MagicMock()
    service.publish_new_products = AsyncMock(
        return_value=BatchOutcome(succeeded_ids=("gid://shopify/Product/1",))
    )
    return service


class TestNewProductScheduler:
    """Job execution and lifecycle."""

    async def test_run_once_uses_lookback(self, service):
        scheduler = NewProductScheduler(service=service, interval_minutes=10, lookback_minutes=15)

        ran = await scheduler.run_once()

        assert ran is True
        service.publish_new_products.assert_awaited_once_with(15)
        assert scheduler.last_result["success"] is True
        assert scheduler.last_run_at is not None

    async def test_skips_while_previous_run_in_progress(self, service):
        scheduler = NewProductScheduler(service=service)
        scheduler.job_in_progress = True

        assert await scheduler.run_once() is False
        service.publish_new_products.assert_not_awaited()

    async def test_wrapper_logs_failures(self, service):
        service.publish_new_products.side_effect = RuntimeError("store down")
        scheduler = NewProductScheduler(service=service)

        await scheduler._run_wrapper()

        assert scheduler.job_in_progress is False

    async def test_no_new_products(self, service):
        service.publish_new_products.return_value = None
        scheduler = NewProductScheduler(service=service)

        await scheduler.run_once()

        assert scheduler.last_result is None

    async def test_start_and_stop(self, service):
        scheduler = NewProductScheduler(service=service, interval_minutes=10)

        job = scheduler.start()
        try:
            assert scheduler.is_running()
            assert job.id == JOB_ID
            assert scheduler.get_status()["nextRunAt"] is not None
            assert scheduler.start() is None
        finally:
            scheduler.stop()

        assert scheduler.get_status()["running"] is False
