"""Tests for poll workers, dashboard state and the event loop thread."""

import asyncio
from unittest.mock import MagicMock

import pytest

from gpu_dashboard.api.errors import ServerError
from gpu_dashboard.data.models import APIResponse, GPUMetrics, GPUNode, parse_list
from gpu_dashboard.server.config import Config, RetryConfig
from gpu_dashboard.server.query_cache import QueryCache, QueryStatus, RetryPolicy
from gpu_dashboard.server.workers import (
    METRICS_KEY,
    DashboardState,
    EventLoopThread,
    PollWorker,
)


async def wait_for(predicate, timeout=2.0):
    """Poll until predicate() is true; fails the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def config():
    config = Config()
    config.polling.auto_refresh = False
    config.polling.metrics_interval = 3600
    config.polling.health_interval = 3600
    config.metrics_retry = RetryConfig(retries=0, delay=0)
    config.health_retry = RetryConfig(retries=0, delay=0)
    return config


@pytest.fixture
def fake_client(metrics_envelope, sample_nodes_envelope):
    client = MagicMock()
    client.get_gpu_metrics.return_value = APIResponse.from_dict(metrics_envelope, parse_list(GPUMetrics))
    client.check_health.return_value = APIResponse(success=True, data={"status": "ok"})
    client.get_gpu_nodes.return_value = APIResponse.from_dict(sample_nodes_envelope, parse_list(GPUNode))
    return client


class TestPollWorker:
    @pytest.mark.asyncio
    async def test_ticks_on_interval(self):
        cache = QueryCache()
        calls = []

        async def fetcher():
            calls.append(1)
            return len(calls)

        worker = PollWorker(cache, METRICS_KEY, fetcher, RetryPolicy(0, 0), interval=0.01)
        worker.start()
        await wait_for(lambda: len(calls) >= 3)
        await worker.stop()

        assert worker.name == "poll:gpu/metrics"
        assert worker.running is False
        assert cache.get_state(METRICS_KEY).status is QueryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_disabled_worker_does_not_start(self):
        cache = QueryCache()
        fetcher = MagicMock()
        worker = PollWorker(cache, METRICS_KEY, fetcher, RetryPolicy(0, 0), interval=0.01, enabled=False)
        worker.start()
        await asyncio.sleep(0.03)
        assert worker.running is False
        fetcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabling_lets_in_flight_request_finish(self):
        cache = QueryCache()
        gate = asyncio.Event()
        calls = []

        async def fetcher():
            calls.append(1)
            await gate.wait()
            return "snapshot"

        worker = PollWorker(cache, METRICS_KEY, fetcher, RetryPolicy(0, 0), interval=0.01)
        worker.start()
        await wait_for(lambda: len(calls) == 1)

        worker.set_enabled(False)
        gate.set()
        await wait_for(lambda: cache.peek(METRICS_KEY) == "snapshot")

        await asyncio.sleep(0.05)
        assert len(calls) == 1
        assert worker.running is False

    @pytest.mark.asyncio
    async def test_re_enable_waits_one_interval(self):
        cache = QueryCache()
        calls = []

        async def fetcher():
            calls.append(1)
            return "x"

        worker = PollWorker(cache, METRICS_KEY, fetcher, RetryPolicy(0, 0), interval=0.05, enabled=False)
        worker.set_enabled(True)
        assert worker.running is True
        assert calls == []
        await wait_for(lambda: len(calls) == 1)
        await worker.stop()

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_polling(self):
        cache = QueryCache()
        calls = []

        async def fetcher():
            calls.append(1)
            raise ServerError()

        worker = PollWorker(cache, METRICS_KEY, fetcher, RetryPolicy(0, 0), interval=0.01)
        worker.start()
        await wait_for(lambda: len(calls) >= 2)
        await worker.stop()
        assert cache.get_state(METRICS_KEY).is_error


class TestDashboardState:
    @pytest.mark.asyncio
    async def test_initial_snapshot_is_loading(self, fake_client, config):
        state = DashboardState(fake_client, config)
        snapshot = state.snapshot()
        assert snapshot["metrics"]["status"] == "loading"
        assert snapshot["stats"] is None
        assert snapshot["health"]["connected"] is False
        assert snapshot["auto_refresh"] is False

    @pytest.mark.asyncio
    async def test_refresh_populates_stats(self, fake_client, config):
        state = DashboardState(fake_client, config)
        ok, detail = await state.refresh()

        assert (ok, detail) == (True, "Refreshed.")
        snapshot = state.snapshot()
        assert snapshot["metrics"]["status"] == "success"
        assert snapshot["metrics"]["data_version"] == 1
        assert snapshot["stats"]["total_gpus"] == 2
        assert snapshot["stats"]["active_gpus"] == 1
        assert snapshot["stats"]["high_temp_gpus"] == 1
        assert snapshot["stats"]["average_utilization"] == 48.5

    @pytest.mark.asyncio
    async def test_refresh_failure_reports_error(self, fake_client, config):
        fake_client.get_gpu_metrics.side_effect = ServerError(status_code=500)
        state = DashboardState(fake_client, config)

        ok, detail = await state.refresh()

        assert ok is False
        assert detail == "Refresh failed: Server error"
        snapshot = state.snapshot()
        assert snapshot["metrics"]["status"] == "error"
        assert snapshot["metrics"]["error"]["message"] == "Server error"
        assert snapshot["stats"] is None

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_has_no_rows(self, fake_client, config):
        fake_client.get_gpu_metrics.return_value = APIResponse(success=False, error="collector offline")
        state = DashboardState(fake_client, config)
        await state.refresh()

        snapshot = state.snapshot()
        assert snapshot["metrics"]["status"] == "success"
        assert snapshot["metrics"]["envelope_error"] == "collector offline"
        assert snapshot["stats"] is None
        assert state.table_page().rows == []

    @pytest.mark.asyncio
    async def test_table_page_resets_on_new_version(self, fake_client, config):
        config.table.page_size = 1
        state = DashboardState(fake_client, config)
        await state.refresh()

        assert state.table_page(page_index=1, version=1).page_index == 1
        assert state.table_page(page_index=1, version=0).page_index == 0
        assert state.table_page(page_index=1).page_index == 1

    @pytest.mark.asyncio
    async def test_start_polls_metrics_and_health(self, fake_client, config):
        config.polling.auto_refresh = True
        state = DashboardState(fake_client, config)
        state.start()
        try:
            await wait_for(lambda: state.metrics_state().status is QueryStatus.SUCCESS)
            await wait_for(lambda: state.is_connected())
        finally:
            await state.stop()

        assert fake_client.get_gpu_metrics.call_count == 1
        assert fake_client.check_health.call_count == 1
        assert state.cache.keys() == []

    @pytest.mark.asyncio
    async def test_start_without_auto_refresh_loads_once(self, fake_client, config):
        state = DashboardState(fake_client, config)
        state.start()
        try:
            await wait_for(lambda: state.metrics_state().status is QueryStatus.SUCCESS)
            assert state.metrics_worker.running is False
            assert state.snapshot()["stats"]["total_gpus"] == 2
        finally:
            await state.stop()

        assert fake_client.get_gpu_metrics.call_count == 1

    @pytest.mark.asyncio
    async def test_request_metrics_skips_fresh_data(self, fake_client, config):
        state = DashboardState(fake_client, config)
        await state.refresh()

        state.request_metrics()
        await asyncio.sleep(0.05)

        assert fake_client.get_gpu_metrics.call_count == 1
        await state.stop()

    @pytest.mark.asyncio
    async def test_request_metrics_joins_outstanding_fetch(self, fake_client, config):
        state = DashboardState(fake_client, config)
        state.request_metrics()
        state.request_metrics()
        await asyncio.sleep(0)
        state.request_metrics()

        await wait_for(lambda: state.metrics_state().status is QueryStatus.SUCCESS)
        assert fake_client.get_gpu_metrics.call_count == 1
        await state.stop()

    @pytest.mark.asyncio
    async def test_auto_refresh_toggle(self, fake_client, config):
        state = DashboardState(fake_client, config)
        assert state.set_auto_refresh(True) is True
        assert state.metrics_worker.running is True
        assert state.set_auto_refresh(False) is False
        assert state.metrics_worker.running is False
        await state.stop()

    @pytest.mark.asyncio
    async def test_nodes_query(self, fake_client, config):
        state = DashboardState(fake_client, config)
        query_state = await state.nodes()
        payload = state.query_payload(query_state)

        assert payload["status"] == "success"
        assert payload["data"]["data"][0]["node_name"] == "gpu-node-1"

        # Served from cache while fresh
        await state.nodes()
        assert fake_client.get_gpu_nodes.call_count == 1

    @pytest.mark.asyncio
    async def test_utilization_query_error_state(self, fake_client, config):
        fake_client.get_gpu_utilization.side_effect = ServerError()
        state = DashboardState(fake_client, config)
        state.default_policy = RetryPolicy(retries=0, delay=0)

        query_state = await state.utilization()

        assert query_state.is_error
        assert state.query_payload(query_state)["error"]["kind"] == "SERVER"


class TestEventLoopThread:
    def test_runs_callables_and_coroutines_on_loop(self):
        thread = EventLoopThread()
        thread.start()
        try:
            async def answer():
                return 42

            assert thread.run_coroutine(answer(), timeout=2) == 42
            assert thread.call(lambda x: x * 2, 21, timeout=2) == 42
            assert thread.call(asyncio.get_running_loop, timeout=2) is thread.loop
        finally:
            thread.stop()
            thread.join(timeout=2)
        assert not thread.is_alive()
