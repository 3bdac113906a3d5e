"""Background polling and dashboard state.

Handles periodic metric/health polling on a single asyncio event loop and
exposes the derived view state to the HTTP layer.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar

from ..api.client import GPUApiClient
from ..data.models import dump_list
from ..data.stats import compute_stats
from ..data.table import FilterConfig, SortState, TablePage, build_table_page
from .config import Config
from .query_cache import Fetcher, QueryCache, QueryKey, QueryState, RetryPolicy, key_label

T = TypeVar("T")

HEALTH_KEY: QueryKey = ("health",)
METRICS_KEY: QueryKey = ("gpu", "metrics")
NODES_KEY: QueryKey = ("gpu", "nodes")
UTILIZATION_KEY: QueryKey = ("gpu", "utilization")


def _log(msg: str) -> None:
    """Print with flush for reliable output from the loop thread."""
    print(msg, flush=True)


def _threaded(call: Callable[[], T]) -> Callable[[], Awaitable[T]]:
    """Wrap a blocking client call so it runs off the event loop."""

    def fetcher() -> Awaitable[T]:
        return asyncio.to_thread(call)

    return fetcher


def envelope_payload(state: QueryState) -> List[Any]:
    """Records from a cached envelope; absent when the envelope failed."""
    envelope = state.data
    payload = getattr(envelope, "payload", None)
    return list(payload) if payload else []


class PollWorker:
    """Refetches one query key on a fixed interval.

    Each tick is a forced fetch through the cache, so a tick that lands while
    a request is outstanding joins it instead of issuing another. Disabling
    the worker cancels future ticks; a request already in flight completes
    and updates the cache.
    """

    def __init__(
        self,
        cache: QueryCache,
        key: QueryKey,
        fetcher: Fetcher,
        policy: RetryPolicy,
        interval: float,
        *,
        enabled: bool = True,
        run_immediately: bool = True,
    ):
        self.cache = cache
        self.key = key
        self.fetcher = fetcher
        self.policy = policy
        self.interval = max(interval, 0.01)
        self.enabled = enabled
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def name(self) -> str:
        return f"poll:{key_label(self.key)}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.enabled or self.running:
            return
        _log(f"[{self.name}] Starting (interval={self.interval}s)")
        self._task = asyncio.ensure_future(self._run(self._run_immediately))

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self.enabled:
            return
        self.enabled = enabled
        if enabled:
            # Resume on the interval; the next tick is one interval away
            _log(f"[{self.name}] Enabled")
            self._task = asyncio.ensure_future(self._run(False))
        else:
            _log(f"[{self.name}] Disabled; future ticks cancelled")
            self._cancel()

    async def stop(self) -> None:
        task = self._task
        self._cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, run_first: bool) -> None:
        if run_first:
            await self._tick()
        while True:
            await asyncio.sleep(self.interval)
            await self._tick()

    async def _tick(self) -> None:
        self.ticks += 1
        try:
            await self.cache.fetch(self.key, self.fetcher, self.policy, force=True)
        except Exception as exc:
            # Already recorded on the cache entry for the view
            _log(f"[{self.name}] Poll failed: {exc}")


class DashboardState:
    """Owns the query cache, the API client and the poll workers.

    Must be used from the event loop thread.
    """

    def __init__(self, client: GPUApiClient, config: Config, cache: Optional[QueryCache] = None):
        self.client = client
        self.config = config
        self.cache = cache or QueryCache(
            stale_time=config.cache.stale_time,
            gc_time=config.cache.gc_time,
        )
        self.metrics_policy = RetryPolicy(config.metrics_retry.retries, config.metrics_retry.delay)
        self.health_policy = RetryPolicy(config.health_retry.retries, config.health_retry.delay)
        self.default_policy = RetryPolicy()

        self.metrics_fetcher = _threaded(client.get_gpu_metrics)
        self.health_fetcher = _threaded(client.check_health)
        self.nodes_fetcher = _threaded(client.get_gpu_nodes)
        self.utilization_fetcher = _threaded(client.get_gpu_utilization)

        self.metrics_worker = PollWorker(
            self.cache,
            METRICS_KEY,
            self.metrics_fetcher,
            self.metrics_policy,
            config.polling.metrics_interval,
            enabled=config.polling.auto_refresh,
        )
        self.health_worker = PollWorker(
            self.cache,
            HEALTH_KEY,
            self.health_fetcher,
            self.health_policy,
            config.polling.health_interval,
        )
        self._unsubscribers: List[Callable[[], None]] = []
        self._background: Set[asyncio.Task] = set()
        self._started = False

    # --- Lifecycle ---

    def start(self) -> None:
        """Subscribe the view to its queries and start polling."""
        if self._started:
            return
        self._started = True
        # The dashboard is the active consumer of both polled queries
        self._unsubscribers = [
            self.cache.subscribe(METRICS_KEY, self._on_metrics_change),
            self.cache.subscribe(HEALTH_KEY, lambda state: None),
        ]
        self.metrics_worker.start()
        self.health_worker.start()
        if not self.metrics_worker.enabled:
            # Polling is off, but the table still gets its first load
            self.request_metrics()

    async def stop(self) -> None:
        await self.metrics_worker.stop()
        await self.health_worker.stop()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.cache.clear()
        self._started = False

    def _on_metrics_change(self, state: QueryState) -> None:
        if state.is_error and not state.is_fetching:
            _log(f"[dashboard] Metrics query in error state: {state.error}")

    # --- Controls ---

    @property
    def auto_refresh(self) -> bool:
        return self.metrics_worker.enabled

    def set_auto_refresh(self, enabled: bool) -> bool:
        self.metrics_worker.set_enabled(enabled)
        return self.metrics_worker.enabled

    async def refresh(self) -> Tuple[bool, str]:
        """Manual refresh of the metrics query.

        Returns:
            Tuple of (success, message)
        """
        try:
            await self.cache.refetch(METRICS_KEY, self.metrics_fetcher, self.metrics_policy)
        except Exception as exc:
            return False, f"Refresh failed: {exc}"
        return True, "Refreshed."

    async def nodes(self) -> QueryState:
        return await self._query(NODES_KEY, self.nodes_fetcher)

    async def utilization(self) -> QueryState:
        return await self._query(UTILIZATION_KEY, self.utilization_fetcher)

    def request_metrics(self) -> None:
        """Start a background metrics fetch when the cached result is stale.

        Fresh data and an outstanding request are left alone, so page views
        never add more than one request per staleness window.
        """
        if self.cache.is_fresh(METRICS_KEY) or self.metrics_state().is_fetching:
            return
        task = asyncio.ensure_future(self._query(METRICS_KEY, self.metrics_fetcher, self.metrics_policy))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _query(self, key: QueryKey, fetcher: Fetcher, policy: Optional[RetryPolicy] = None) -> QueryState:
        try:
            await self.cache.fetch(key, fetcher, policy or self.default_policy)
        except Exception as exc:
            _log(f"[dashboard] {key_label(key)} query failed: {exc}")
        return self.cache.get_state(key)

    # --- Derived view state ---

    def metrics_state(self) -> QueryState:
        return self.cache.get_state(METRICS_KEY)

    def health_state(self) -> QueryState:
        return self.cache.get_state(HEALTH_KEY)

    def is_connected(self) -> bool:
        health = self.health_state()
        return not health.is_error and bool(getattr(health.data, "success", False))

    def metrics_rows(self):
        return envelope_payload(self.metrics_state())

    def snapshot(self) -> Dict[str, Any]:
        """Current view state for the HTML page and ``/api/status``."""
        metrics = self.metrics_state()
        health = self.health_state()
        envelope = metrics.data
        payload = getattr(envelope, "payload", None)

        envelope_error = None
        if envelope is not None and not getattr(envelope, "success", True):
            envelope_error = envelope.error or envelope.message or "Request was not successful"

        return {
            "auto_refresh": self.auto_refresh,
            "metrics_interval": self.config.polling.metrics_interval,
            "health": {
                "connected": self.is_connected(),
                "state": health.to_dict(lambda env: env.to_dict()),
            },
            "metrics": {
                "status": metrics.status.value,
                "error": metrics.error_dict(),
                "is_fetching": metrics.is_fetching,
                "is_stale": metrics.is_stale,
                "updated_at": metrics.updated_at.isoformat() if metrics.updated_at else None,
                "data_version": metrics.data_version,
                "failure_count": metrics.failure_count,
                "envelope_error": envelope_error,
            },
            "stats": compute_stats(list(payload)).to_dict() if payload is not None else None,
        }

    def table_page(
        self,
        *,
        sort: Optional[SortState] = None,
        filters: Optional[FilterConfig] = None,
        page_index: int = 0,
        version: Optional[int] = None,
    ) -> TablePage:
        """Derive one table page; a stale ``version`` resets to the first page."""
        metrics = self.metrics_state()
        if version is not None and version != metrics.data_version:
            page_index = 0
        return build_table_page(
            self.metrics_rows(),
            sort=sort,
            filters=filters,
            page_index=page_index,
            page_size=self.config.table.page_size,
            version=metrics.data_version,
        )

    @staticmethod
    def query_payload(state: QueryState) -> Dict[str, Any]:
        """JSON form of a record-list query (nodes, utilization)."""
        return state.to_dict(lambda env: env.to_dict(dump_list))


class EventLoopThread(threading.Thread):
    """Runs the dashboard's asyncio loop in a daemon thread.

    HTTP handler threads hand work to the loop; the loop is the only place
    cache state is read or written.
    """

    daemon = True

    def __init__(self):
        super().__init__(name="dashboard-event-loop")
        self.loop = asyncio.new_event_loop()
        self._ready = threading.Event()

    def run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._ready.set)
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self.loop.close()
            _log("[event-loop] Stopped")

    def start(self) -> None:
        super().start()
        self._ready.wait()

    def submit(self, coro: Awaitable[T]) -> "concurrent.futures.Future[T]":
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run_coroutine(self, coro: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Run a coroutine on the loop and block the calling thread for it."""
        return self.submit(coro).result(timeout)

    def call(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        """Run a plain callable on the loop thread and return its result."""

        async def _call() -> T:
            return fn(*args)

        return self.run_coroutine(_call(), timeout)

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
