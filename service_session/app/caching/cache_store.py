"""
Keyed query cache with staleness, garbage collection and request dedup.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import (
    Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union, TYPE_CHECKING,
)

from shared.errors import CacheFetchError, is_retryable
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from .keys import QueryKey, matches_prefix

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from shared.metrics import MetricsCollector

T = TypeVar("T")
Fetcher = Callable[[], Awaitable[Any]]
EntryListener = Callable[["CacheSnapshot"], None]
KeyMatcher = Union[QueryKey, Callable[[QueryKey], bool]]


@dataclass
class CacheEntry:
    """Mutable cache slot; only ``CacheStore`` touches these."""
    key: QueryKey
    stale_at: float
    gc_at: float
    gc_time: float
    value: Any = None
    has_value: bool = False
    fetched_at: Optional[float] = None
    error: Optional[CacheFetchError] = None
    in_flight: Optional["asyncio.Task[Any]"] = None
    observer_count: int = 0
    generation: int = 0
    fetch_generation: int = 0
    listeners: List[EntryListener] = field(default_factory=list)


@dataclass(frozen=True)
class CacheSnapshot:
    """Read-only view of an entry handed to consumers."""
    key: QueryKey
    value: Any
    has_value: bool
    error: Optional[CacheFetchError]
    fetched_at: Optional[float]
    stale_at: float
    gc_at: float
    is_stale: bool
    is_fetching: bool
    observer_count: int


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Outcome of a cached read: data (possibly stale) plus the fetch error, if any."""
    data: Optional[T] = None
    error: Optional[CacheFetchError] = None
    is_stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    # Every waiter may have gone away; keep asyncio from reporting the error as unretrieved.
    if not task.cancelled():
        task.exception()


class CacheStore:
    """Process-wide cache of asynchronous results.

    A value is served without refetching until ``stale_at``. Concurrent
    requests for one key share a single in-flight fetch. Failed fetches are
    retried ``retry`` times before every waiter receives the same
    ``CacheFetchError``; the previous value is kept. Entries without
    observers are evicted once ``gc_at`` (``stale_at + gc_time``) passes,
    either by the background sweeper started in ``init()`` or lazily on the
    next access.
    """

    def __init__(
        self,
        *,
        stale_time: float = 300.0,
        gc_time: float = 600.0,
        retry: int = 1,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.stale_time = stale_time
        self.gc_time = gc_time
        self.retry = retry
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.sweep_interval = sweep_interval
        self.metrics = metrics
        self.logger = get_logger("session.cache")

        self._clock = clock
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._sweeper: Optional["asyncio.Task[None]"] = None

    @classmethod
    def from_config(cls, config: "BaseConfig", **kwargs) -> "CacheStore":
        return cls(
            stale_time=config.cache_stale_time,
            gc_time=config.cache_gc_time,
            retry=config.cache_retry,
            retry_base_delay=config.cache_retry_base_delay,
            retry_max_delay=config.cache_retry_max_delay,
            sweep_interval=config.cache_sweep_interval,
            **kwargs,
        )

    async def init(self) -> None:
        """Start the background eviction sweep."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
            self.logger.info("Cache store started", sweep_interval=self.sweep_interval)

    async def teardown(self) -> None:
        """Stop the sweeper and drop every entry."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        self.clear()
        self.logger.info("Cache store stopped")

    async def get(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        *,
        stale_time: Optional[float] = None,
        gc_time: Optional[float] = None,
        retry: Optional[int] = None,
    ) -> Any:
        """Return the cached value for ``key``, fetching it when stale or missing.

        Raises ``CacheFetchError`` once the retry budget is spent.
        """
        stale_time = self.stale_time if stale_time is None else stale_time
        gc_time = self.gc_time if gc_time is None else gc_time
        retry = self.retry if retry is None else retry

        while True:
            now = self._clock()
            entry = self._lookup(key, now) or self._create_entry(key, now, gc_time)

            if entry.has_value and now < entry.stale_at:
                self._count("cache_hits_total", key)
                return entry.value

            task = entry.in_flight
            if task is None:
                self._count("cache_misses_total", key)
                task = asyncio.get_running_loop().create_task(
                    self._fetch(entry, entry.generation, fetcher, stale_time, gc_time, retry)
                )
                task.add_done_callback(_consume_exception)
                entry.in_flight = task
                entry.fetch_generation = entry.generation
                self._notify(entry)
                break
            if entry.fetch_generation == entry.generation:
                self.logger.debug("Joining in-flight fetch", key=key)
                break

            # The running fetch was invalidated; let it settle before starting its replacement.
            self.logger.debug("Waiting for superseded fetch", key=key)
            await asyncio.wait({task})

        # Shielded: a caller that stops waiting never cancels the shared fetch.
        return await asyncio.shield(task)

    async def query(self, key: QueryKey, fetcher: Fetcher, **opts) -> QueryResult:
        """Like ``get`` but reports failure in the result, alongside any stale value."""
        try:
            value = await self.get(key, fetcher, **opts)
        except CacheFetchError as exc:
            snapshot = self.peek(key)
            return QueryResult(
                data=snapshot.value if snapshot is not None else None,
                error=exc,
                is_stale=snapshot is not None and snapshot.has_value,
            )
        return QueryResult(data=value)

    async def prefetch(self, key: QueryKey, fetcher: Fetcher, **opts) -> None:
        """Warm ``key`` ahead of use; the result and any error are discarded."""
        try:
            await self.get(key, fetcher, **opts)
        except CacheFetchError as exc:
            self.logger.debug("Prefetch failed", key=key, error=exc.message)

    def invalidate(self, target: KeyMatcher) -> int:
        """Mark every entry matching a key prefix or predicate as stale now."""
        if callable(target):
            predicate = target
        else:
            prefix = tuple(target)
            predicate = lambda key: matches_prefix(key, prefix)  # noqa: E731

        now = self._clock()
        matched = [entry for entry in self._entries.values() if predicate(entry.key)]
        for entry in matched:
            # A fetch already in flight stays attached but its result is never committed.
            entry.generation += 1
            entry.stale_at = now
            entry.gc_at = now + entry.gc_time
            self._notify(entry)

        if matched:
            self.logger.debug("Invalidated cache entries", count=len(matched))
        return len(matched)

    def set_query_data(self, key: QueryKey, value: Any, *, stale_time: Optional[float] = None) -> Any:
        """Write a value locally (optimistic update).

        ``value`` may be a function of the current value. Supersedes any
        fetch already in flight for the key.
        """
        now = self._clock()
        entry = self._lookup(key, now) or self._create_entry(key, now, self.gc_time)
        if callable(value):
            value = value(entry.value if entry.has_value else None)

        entry.generation += 1
        entry.value = value
        entry.has_value = True
        entry.error = None
        entry.fetched_at = now
        entry.stale_at = now + (self.stale_time if stale_time is None else stale_time)
        entry.gc_at = entry.stale_at + entry.gc_time
        self._notify(entry)
        return value

    def subscribe(self, key: QueryKey, listener: Optional[EntryListener] = None) -> Callable[[], None]:
        """Observe ``key``; observed entries are never evicted.

        Returns a handle that undoes this subscription exactly once.
        """
        entry = self._lookup(key, self._clock()) or self._create_entry(key, self._clock(), self.gc_time)
        entry.observer_count += 1
        if listener is not None:
            entry.listeners.append(listener)

        released = False

        def unsubscribe() -> None:
            nonlocal released
            if not released:
                released = True
                self.unsubscribe(key, listener)

        return unsubscribe

    def unsubscribe(self, key: QueryKey, listener: Optional[EntryListener] = None) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.observer_count = max(0, entry.observer_count - 1)
        if listener is not None and listener in entry.listeners:
            entry.listeners.remove(listener)

    def peek(self, key: QueryKey) -> Optional[CacheSnapshot]:
        entry = self._entries.get(key)
        return self._snapshot(entry, self._clock()) if entry is not None else None

    def remove(self, key: QueryKey) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.generation += 1
        self._update_size()
        return True

    def clear(self) -> None:
        for entry in self._entries.values():
            entry.generation += 1
        self._entries.clear()
        self._update_size()

    def sweep(self) -> int:
        """Evict unobserved entries past their GC deadline."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_collectable(entry, now)]
        for key in expired:
            self._evict(key)

        if expired:
            self.logger.debug("Evicted cache entries", count=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        entries = list(self._entries.values())
        return {
            "entries": len(entries),
            "fetching": sum(1 for e in entries if e.in_flight is not None),
            "observed": sum(1 for e in entries if e.observer_count > 0),
            "stale": sum(1 for e in entries if now >= e.stale_at),
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    async def _fetch(
        self,
        entry: CacheEntry,
        generation: int,
        fetcher: Fetcher,
        stale_time: float,
        gc_time: float,
        retry: int,
    ) -> Any:
        config = RetryConfig(
            max_attempts=retry + 1,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter=False,
        )

        try:
            value = await retry_on_exception((Exception,), config, should_retry=is_retryable)(fetcher)()
        except RetryError as exc:
            self._release(entry)
            error = CacheFetchError(entry.key, exc.last_exception, exc.attempts)
            self.logger.warning(
                "Cache fetch failed",
                key=entry.key,
                attempts=exc.attempts,
                error=error.message,
            )
            self._count("cache_fetches_total", entry.key, result="error")
            if self._is_live(entry) and entry.generation == generation:
                entry.error = error
            self._notify(entry)
            raise error from exc.last_exception
        except BaseException:
            self._release(entry)
            raise

        self._release(entry)
        self._count("cache_fetches_total", entry.key, result="success")

        if not self._is_live(entry):
            self.logger.debug("Discarding fetch result for evicted entry", key=entry.key)
            return value
        if entry.generation != generation:
            self.logger.debug("Discarding superseded fetch result", key=entry.key)
            self._notify(entry)
            return value

        now = self._clock()
        entry.value = value
        entry.has_value = True
        entry.error = None
        entry.fetched_at = now
        entry.stale_at = now + stale_time
        entry.gc_time = gc_time
        entry.gc_at = entry.stale_at + gc_time
        self._notify(entry)
        return value

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as exc:
                self.logger.error("Cache sweep failed", error=str(exc))

    def _lookup(self, key: QueryKey, now: float) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None and self._is_collectable(entry, now):
            self._evict(key)
            return None
        return entry

    def _create_entry(self, key: QueryKey, now: float, gc_time: float) -> CacheEntry:
        entry = CacheEntry(key=key, stale_at=now, gc_at=now + gc_time, gc_time=gc_time)
        self._entries[key] = entry
        self._update_size()
        return entry

    def _evict(self, key: QueryKey) -> None:
        entry = self._entries.pop(key)
        entry.generation += 1
        if self.metrics:
            self.metrics.increment_counter("cache_evictions_total")
        self._update_size()

    @staticmethod
    def _release(entry: CacheEntry) -> None:
        entry.in_flight = None

    def _is_live(self, entry: CacheEntry) -> bool:
        return self._entries.get(entry.key) is entry

    @staticmethod
    def _is_collectable(entry: CacheEntry, now: float) -> bool:
        return entry.observer_count == 0 and entry.in_flight is None and now >= entry.gc_at

    def _snapshot(self, entry: CacheEntry, now: float) -> CacheSnapshot:
        return CacheSnapshot(
            key=entry.key,
            value=entry.value,
            has_value=entry.has_value,
            error=entry.error,
            fetched_at=entry.fetched_at,
            stale_at=entry.stale_at,
            gc_at=entry.gc_at,
            is_stale=now >= entry.stale_at,
            is_fetching=entry.in_flight is not None,
            observer_count=entry.observer_count,
        )

    def _notify(self, entry: CacheEntry) -> None:
        if not entry.listeners:
            return
        snapshot = self._snapshot(entry, self._clock())
        for listener in list(entry.listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                self.logger.error("Cache listener failed", key=entry.key, error=str(exc))

    def _count(self, metric_name: str, key: QueryKey, **labels) -> None:
        if self.metrics:
            namespace = str(key[0]) if key else "default"
            self.metrics.increment_counter(metric_name, namespace=namespace, **labels)

    def _update_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self._entries))
