"""Per-key query cache with request de-duplication, staleness and eviction.

All methods must be called on the event loop thread. Every mutation happens
between suspension points of that loop, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..api.errors import ApiError

QueryKey = Tuple[str, ...]
Fetcher = Callable[[], Awaitable[Any]]

DEFAULT_STALE_TIME = 30.0  # seconds
DEFAULT_GC_TIME = 300.0  # seconds


def _log(msg: str) -> None:
    print(msg, flush=True)


def key_label(key: QueryKey) -> str:
    return "/".join(key)


class QueryStatus(str, Enum):
    LOADING = "loading"  # No data and no error yet
    ERROR = "error"  # The most recent fetch failed
    SUCCESS = "success"  # Data available and the most recent fetch succeeded


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry.

    ``retries`` is the number of attempts after the first one. Errors whose
    kind is not retryable (404) fail immediately.
    """

    retries: int = 3
    delay: float = 1.0

    def should_retry(self, failure_count: int, error: BaseException) -> bool:
        if isinstance(error, ApiError) and not error.retryable:
            return False
        return failure_count <= self.retries


@dataclass(frozen=True)
class QueryState:
    """Read-only view of a cache entry handed to consumers."""

    key: QueryKey
    status: QueryStatus
    data: Any = None
    error: Optional[BaseException] = None
    updated_at: Optional[datetime] = None
    is_fetching: bool = False
    is_stale: bool = True
    failure_count: int = 0
    data_version: int = 0

    @property
    def is_loading(self) -> bool:
        return self.status is QueryStatus.LOADING

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    def error_dict(self) -> Optional[Dict[str, Any]]:
        if self.error is None:
            return None
        if isinstance(self.error, ApiError):
            return self.error.to_dict()
        return {"kind": "UNKNOWN", "message": str(self.error), "status_code": None}

    def to_dict(self, dump_data: Optional[Callable[[Any], Any]] = None) -> Dict[str, Any]:
        data = self.data
        if data is not None and dump_data is not None:
            data = dump_data(data)
        return {
            "key": key_label(self.key),
            "status": self.status.value,
            "data": data,
            "error": self.error_dict(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "is_fetching": self.is_fetching,
            "is_stale": self.is_stale,
            "failure_count": self.failure_count,
            "data_version": self.data_version,
        }


Listener = Callable[[QueryState], None]


@dataclass
class QueryEntry:
    key: QueryKey
    data: Any = None
    has_data: bool = False
    error: Optional[BaseException] = None
    data_updated_at: Optional[float] = None  # clock() value
    updated_at: Optional[datetime] = None  # wall clock, for display
    invalidated: bool = False
    failure_count: int = 0
    data_version: int = 0
    task: Optional[asyncio.Task] = None
    listeners: List[Listener] = field(default_factory=list)
    gc_handle: Optional[asyncio.TimerHandle] = None


class QueryCache:
    """Explicit map from query key to (result, timestamp, in-flight task).

    - Data younger than ``stale_time`` is served without a network call.
    - At most one request per key is in flight; concurrent callers share it.
    - Entries nobody subscribes to are evicted ``gc_time`` seconds after they
      were last requested.
    """

    def __init__(
        self,
        stale_time: float = DEFAULT_STALE_TIME,
        gc_time: float = DEFAULT_GC_TIME,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_time = stale_time
        self.gc_time = gc_time
        self._clock = clock
        self._entries: Dict[QueryKey, QueryEntry] = {}

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def keys(self) -> List[QueryKey]:
        return list(self._entries)

    # --- Reads ---

    def get_state(self, key: QueryKey) -> QueryState:
        entry = self._entries.get(key)
        if entry is None:
            return QueryState(key=key, status=QueryStatus.LOADING)
        return self._state_of(entry)

    def peek(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def is_fresh(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry)

    # --- Fetching ---

    async def fetch(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        policy: Optional[RetryPolicy] = None,
        *,
        force: bool = False,
    ) -> Any:
        """Return data for ``key``, going to the network only when needed.

        Args:
            key: Stable query key
            fetcher: Coroutine factory performing the request
            policy: Retry policy for a new request
            force: Skip the freshness check (poll ticks, manual refresh)

        Raises:
            ApiError: The final failure after retries are exhausted
        """
        entry = self._entry(key)
        self._cancel_gc(entry)

        if entry.task is None:
            if not force and self._is_fresh(entry):
                self._schedule_gc(entry)
                return entry.data
            entry.task = asyncio.ensure_future(self._run(entry, fetcher, policy or RetryPolicy()))
            entry.task.add_done_callback(self._retrieve_result)
            self._notify(entry)

        # Shielded: a cancelled caller never aborts the shared request
        return await asyncio.shield(entry.task)

    async def refetch(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        policy: Optional[RetryPolicy] = None,
    ) -> Any:
        """Manual refresh: invalidate for every observer, then fetch now."""
        self.invalidate(key)
        return await self.fetch(key, fetcher, policy, force=True)

    def invalidate(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.invalidated = True
        self._notify(entry)

    async def _run(self, entry: QueryEntry, fetcher: Fetcher, policy: RetryPolicy) -> Any:
        label = key_label(entry.key)
        failures = 0
        try:
            while True:
                try:
                    data = await fetcher()
                except Exception as exc:
                    failures += 1
                    entry.failure_count = failures
                    if not policy.should_retry(failures, exc):
                        entry.error = exc
                        _log(f"[query-cache] {label} failed after {failures} attempt(s): {exc}")
                        raise
                    _log(
                        f"[query-cache] {label} failed ({exc}); "
                        f"retry {failures}/{policy.retries} in {policy.delay}s"
                    )
                    await asyncio.sleep(policy.delay)
                    continue

                entry.data = data
                entry.has_data = True
                entry.error = None
                entry.failure_count = 0
                entry.invalidated = False
                entry.data_updated_at = self._clock()
                entry.updated_at = datetime.now(timezone.utc)
                entry.data_version += 1
                return data
        finally:
            entry.task = None
            # Skipped when the entry was removed or cleared while in flight
            if self._entries.get(entry.key) is entry:
                self._notify(entry)
                self._schedule_gc(entry)

    @staticmethod
    def _retrieve_result(task: asyncio.Task) -> None:
        # Marks the exception as retrieved when every caller went away
        if not task.cancelled():
            task.exception()

    # --- Observers ---

    def subscribe(self, key: QueryKey, listener: Listener) -> Callable[[], None]:
        """Register a listener called with the new state after every change.

        Returns:
            A callable that removes the listener
        """
        entry = self._entry(key)
        self._cancel_gc(entry)
        entry.listeners.append(listener)

        def unsubscribe() -> None:
            current = self._entries.get(key)
            if current is None or listener not in current.listeners:
                return
            current.listeners.remove(listener)
            self._schedule_gc(current)

        return unsubscribe

    def _notify(self, entry: QueryEntry) -> None:
        if not entry.listeners:
            return
        state = self._state_of(entry)
        for listener in list(entry.listeners):
            try:
                listener(state)
            except Exception as exc:
                _log(f"[query-cache] Listener for {key_label(entry.key)} failed: {exc}")

    # --- Eviction ---

    def _schedule_gc(self, entry: QueryEntry) -> None:
        self._cancel_gc(entry)
        if entry.listeners or entry.task is not None:
            return
        loop = asyncio.get_running_loop()
        entry.gc_handle = loop.call_later(self.gc_time, self._evict, entry.key)

    @staticmethod
    def _cancel_gc(entry: QueryEntry) -> None:
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

    def _evict(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.listeners or entry.task is not None:
            return
        del self._entries[key]
        _log(f"[query-cache] Evicted {key_label(key)} after {self.gc_time:.0f}s unused")

    def remove(self, key: QueryKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._cancel_gc(entry)

    def clear(self) -> None:
        """Drop every entry and cancel outstanding requests (teardown)."""
        for entry in self._entries.values():
            self._cancel_gc(entry)
            if entry.task is not None:
                entry.task.cancel()
        self._entries.clear()

    # --- Internals ---

    def _entry(self, key: QueryKey) -> QueryEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key=key)
            self._entries[key] = entry
        return entry

    def _is_fresh(self, entry: QueryEntry) -> bool:
        if not entry.has_data or entry.invalidated or entry.error is not None:
            return False
        if entry.data_updated_at is None:
            return False
        return (self._clock() - entry.data_updated_at) < self.stale_time

    def _state_of(self, entry: QueryEntry) -> QueryState:
        if entry.error is not None:
            status = QueryStatus.ERROR
        elif entry.has_data:
            status = QueryStatus.SUCCESS
        else:
            status = QueryStatus.LOADING
        return QueryState(
            key=entry.key,
            status=status,
            data=entry.data,
            error=entry.error,
            updated_at=entry.updated_at,
            is_fetching=entry.task is not None,
            is_stale=not self._is_fresh(entry),
            failure_count=entry.failure_count,
            data_version=entry.data_version,
        )
