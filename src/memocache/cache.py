"""In-memory memoization engine with TTL expiry and bounded size.

Design:
- Entry store (insertion ordered) + access records keyed by CacheKey
- Lazy expiry on access, proactive expiry via a background sweep
- LRU / FIFO / TTL eviction after every insertion
- Single-flight: concurrent callers for one key share one computation
- One lock guards all bookkeeping; compute functions run outside it
"""

import asyncio
import copy
import functools
import inspect
import logging
import math
import sys
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, CacheConfig, ConfigurationError, load_config, merge_config
from .eviction import select_expired, select_victims
from .keys import function_identity, make_key
from .maintenance import MaintenanceScheduler
from .models import MISSING, NOT_SET, CacheEntry, CacheKey, CacheStats

logger = logging.getLogger(__name__)

# Outcomes of _begin()
_HIT = "hit"
_WAIT = "wait"
_OWNER = "owner"

# Sweep keeps running while the store is at least this full
_NEAR_CAPACITY = 0.9


def estimate_size(value: Any, _seen: Optional[set] = None) -> int:
    """Best-effort deep size of *value* in bytes.

    Follows built-in containers only; other objects count their shallow
    ``sys.getsizeof``. Shared objects are counted once.
    """
    seen = set() if _seen is None else _seen
    if id(value) in seen:
        return 0
    seen.add(id(value))
    size = sys.getsizeof(value, 0)
    if isinstance(value, dict):
        size += sum(estimate_size(k, seen) + estimate_size(v, seen) for k, v in value.items())
    elif isinstance(value, (list, tuple, set, frozenset)):
        size += sum(estimate_size(item, seen) for item in value)
    return size


def _check_ttl(ttl: Any) -> None:
    if ttl is NOT_SET or ttl is None:
        return
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or math.isnan(ttl) or ttl < 0:
        raise ConfigurationError(f"ttl must be a non-negative number of seconds or None, got {ttl!r}")


class CacheEngine:
    """Memoizing key-value store.

    Create one per process (or per subsystem), pass it to whoever needs it,
    and call :meth:`close` on shutdown to stop the maintenance timer.

    Args:
        config: Initial configuration (defaults to :data:`DEFAULT_CONFIG`)
        clock: Zero-argument callable returning the current time in seconds
        **changes: Field overrides validated on top of *config*
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        **changes: Any,
    ):
        base = config or DEFAULT_CONFIG
        self._config = merge_config(base, changes) if changes else base
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._access: Dict[CacheKey, float] = {}
        self._inflight: Dict[CacheKey, Future] = {}
        self._generation = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._maintenance = MaintenanceScheduler(self._maintenance_tick)

    @classmethod
    def from_config(cls, path: Optional[str] = None, clock: Optional[Callable[[], float]] = None) -> "CacheEngine":
        """Build an engine from a YAML file plus ``CACHE_*`` environment overrides."""
        return cls(load_config(path), clock=clock)

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def maintenance_scheduled(self) -> bool:
        return self._maintenance.scheduled

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(
        self,
        compute_fn: Callable[..., Any],
        args: Sequence[Any] = (),
        kwargs: Optional[Mapping[str, Any]] = None,
        *,
        ttl: Any = NOT_SET,
        name: Optional[str] = None,
    ) -> Any:
        """Return the cached result of ``compute_fn(*args, **kwargs)``.

        入力：
            - compute_fn：同期関数（結果は引数のみで決まる前提）
            - ttl：秒数、None は無期限、省略時は default_ttl
            - name：キーに使う関数名（省略時は関数から導出）
        副作用：ストア・アクセス記録・統計を更新
        失敗モード：compute_fn の例外はそのまま伝播し、結果はキャッシュしない

        Raises:
            TypeError: If *compute_fn* is a coroutine function (use :meth:`aexecute`).
            ConfigurationError: If *ttl* is invalid.
        """
        if inspect.iscoroutinefunction(compute_fn):
            raise TypeError("execute() needs a synchronous function; use aexecute() for coroutines")
        _check_ttl(ttl)
        key = make_key(compute_fn, args, kwargs, name)

        while True:
            state, payload, generation = self._begin(key)
            if state == _HIT:
                return self._copy(payload)
            if state == _OWNER:
                break
            try:
                shared = payload.result()
            except BaseException:
                if payload.cancelled():
                    continue
                if payload.done():
                    self._record_shared(key, hit=False)
                raise
            self._record_shared(key, hit=True)
            return self._copy(shared)

        try:
            value = compute_fn(*args, **dict(kwargs or {}))
        except BaseException as exc:
            self._abandon(key, payload, exc)
            raise
        self._complete(key, payload, generation, value, ttl)
        return value

    async def aexecute(
        self,
        compute_fn: Callable[..., Any],
        args: Sequence[Any] = (),
        kwargs: Optional[Mapping[str, Any]] = None,
        *,
        ttl: Any = NOT_SET,
        name: Optional[str] = None,
    ) -> Any:
        """Async variant of :meth:`execute`.

        Accepts plain functions and coroutine functions; any awaitable result
        is awaited before caching. Waiting for another caller's in-flight
        computation does not block the event loop.
        """
        _check_ttl(ttl)
        key = make_key(compute_fn, args, kwargs, name)

        while True:
            state, payload, generation = self._begin(key)
            if state == _HIT:
                return self._copy(payload)
            if state == _OWNER:
                break
            try:
                # shield: a cancelled waiter must not cancel the shared future
                shared = await asyncio.shield(asyncio.wrap_future(payload))
            except BaseException:
                if payload.cancelled():
                    continue
                if payload.done():
                    self._record_shared(key, hit=False)
                raise
            self._record_shared(key, hit=True)
            return self._copy(shared)

        try:
            value = compute_fn(*args, **dict(kwargs or {}))
            if inspect.isawaitable(value):
                value = await value
        except BaseException as exc:
            self._abandon(key, payload, exc)
            raise
        self._complete(key, payload, generation, value, ttl)
        return value

    def peek(
        self,
        compute_fn: Callable[..., Any],
        args: Sequence[Any] = (),
        kwargs: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> Any:
        """Return the cached value, or :data:`MISSING`.

        Read-only: statistics and access times are untouched and expired
        entries are reported as MISSING but left in place for the next
        access or sweep to remove.
        """
        key = make_key(compute_fn, args, kwargs, name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return MISSING
            value = entry.value
        return self._copy(value)

    def invalidate(
        self,
        compute_fn: Callable[..., Any],
        args: Sequence[Any] = (),
        kwargs: Optional[Mapping[str, Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> bool:
        """Remove one entry. Returns True if something was removed."""
        key = make_key(compute_fn, args, kwargs, name)
        with self._lock:
            removed = key in self._entries
            self._remove(key)
        if removed:
            logger.debug(f"Invalidated {key}")
        return removed

    def configure(self, changes: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "CacheEngine":
        """Update configuration fields; all-or-nothing.

        Already stored entries are not re-evaluated: a smaller max_size or a
        new policy takes effect on the next insertion or sweep.

        Raises:
            ConfigurationError: If any supplied field is unknown or invalid.
        """
        fields = dict(changes or {})
        fields.update(kwargs)
        with self._lock:
            old = self._config
            self._config = merge_config(old, fields)
            if (old.maintenance_interval, old.default_ttl) != (
                self._config.maintenance_interval,
                self._config.default_ttl,
            ):
                self._maintenance.cancel()
                self._arm_maintenance()
        logger.info(f"Cache configured: {', '.join(f'{k}={v!r}' for k, v in fields.items())}")
        return self

    def clear(self) -> None:
        """Drop all entries and access records. Statistics are kept.

        Computations already running when clear() is called still return
        their result to their callers but do not repopulate the store.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._access.clear()
            self._generation += 1
            self._maintenance.cancel()
        logger.debug(f"Cleared {count} entries")

    def stats(self) -> CacheStats:
        """Snapshot counters. ``size`` excludes expired entries not yet purged."""
        with self._lock:
            now = self._clock()
            size = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                size=size,
                max_size=self._config.max_size,
                in_flight=len(self._inflight),
                eviction_policy=self._config.eviction_policy,
                hit_ratio=self._hits / total if total else 0.0,
                memory_estimate=sum(estimate_size(entry.value) for entry in self._entries.values()),
            )

    def sweep(self) -> int:
        """Purge expired entries, then enforce max_size.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = select_expired(self._entries, now)
            for key in expired:
                self._remove(key)
            self._expirations += len(expired)
            evicted = self._evict(now)
        if expired or evicted:
            logger.debug(f"Sweep removed {len(expired)} expired, {evicted} evicted")
        return len(expired) + evicted

    def memoize(self, name: Optional[str] = None, ttl: Any = NOT_SET) -> Callable[[Callable], Callable]:
        """Decorator routing calls of a function through this engine.

        Coroutine functions get an async wrapper using :meth:`aexecute`.
        """
        _check_ttl(ttl)

        def decorator(fn: Callable) -> Callable:
            key_name = name or function_identity(fn)

            if inspect.iscoroutinefunction(fn):

                @functools.wraps(fn)
                async def async_wrapper(*args, **kwargs):
                    return await self.aexecute(fn, args, kwargs, ttl=ttl, name=key_name)

                return async_wrapper

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                return self.execute(fn, args, kwargs, ttl=ttl, name=key_name)

            return wrapper

        return decorator

    def close(self) -> None:
        """Stop background maintenance for good. Stored entries stay usable."""
        self._maintenance.close()
        logger.info("Cache maintenance stopped")

    def __enter__(self) -> "CacheEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Single-flight bookkeeping
    # ------------------------------------------------------------------

    def _begin(self, key: CacheKey) -> Tuple[str, Any, int]:
        """Look up *key* and either serve it, join its computation, or claim it."""
        with self._lock:
            now = self._clock()
            entry = self._lookup(key, now)
            if entry is not None:
                self._hits += 1
                self._access[key] = now
                logger.debug(f"Cache hit {key}")
                return _HIT, entry.value, self._generation

            future = self._inflight.get(key)
            if future is not None:
                return _WAIT, future, self._generation

            future = Future()
            self._inflight[key] = future
            self._misses += 1
            logger.debug(f"Cache miss {key}")
            return _OWNER, future, self._generation

    def _complete(self, key: CacheKey, future: Future, generation: int, value: Any, ttl: Any) -> None:
        try:
            stored = self._copy(value)
        except Exception as e:
            # the caller keeps its value; waiters compute their own
            logger.warning(f"Not caching {key}: result cannot be copied ({e})")
            with self._lock:
                self._inflight.pop(key, None)
            future.cancel()
            return
        with self._lock:
            self._inflight.pop(key, None)
            if generation == self._generation:
                self._insert(key, stored, ttl, self._clock())
        future.set_result(stored)

    def _abandon(self, key: CacheKey, future: Future, exc: BaseException) -> None:
        with self._lock:
            self._inflight.pop(key, None)
        if isinstance(exc, Exception):
            future.set_exception(exc)
        else:
            # interrupted, not failed: waiters retry and one of them recomputes
            future.cancel()

    def _record_shared(self, key: CacheKey, hit: bool) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    # ------------------------------------------------------------------
    # Store internals (lock held)
    # ------------------------------------------------------------------

    def _copy(self, value: Any) -> Any:
        if self._config.copy_values:
            return copy.deepcopy(value)
        return value

    def _remove(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        self._access.pop(key, None)

    def _lookup(self, key: CacheKey, now: float) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            self._remove(key)
            self._expirations += 1
            logger.debug(f"Expired {key}")
            return None
        return entry

    def _insert(self, key: CacheKey, value: Any, ttl: Any, now: float) -> None:
        if ttl is NOT_SET:
            ttl = self._config.default_ttl
        expires_at = None if ttl is None else now + ttl
        # a re-inserted key counts as newest for FIFO
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
        self._access[key] = now
        self._evict(now)
        self._arm_maintenance()

    def _evict(self, now: float) -> int:
        victims = select_victims(
            self._config.eviction_policy,
            self._entries,
            self._access,
            self._config.max_size,
            now,
        )
        for key in victims:
            self._remove(key)
        self._evictions += len(victims)
        if victims:
            logger.debug(f"Evicted {len(victims)} entries ({self._config.eviction_policy.value})")
        return len(victims)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _next_sweep_interval(self) -> Optional[float]:
        """Delay before the next sweep, or None when there is nothing to do."""
        cfg = self._config
        if cfg.maintenance_interval is None or not self._entries:
            return None
        near_capacity = len(self._entries) >= cfg.max_size * _NEAR_CAPACITY
        expiring = any(entry.expires_at is not None for entry in self._entries.values())
        if not (near_capacity or expiring):
            return None
        interval = cfg.maintenance_interval
        if cfg.default_ttl:
            interval = min(interval, cfg.default_ttl)
        return interval

    def _arm_maintenance(self) -> None:
        if self._maintenance.closed or self._maintenance.scheduled:
            return
        interval = self._next_sweep_interval()
        if interval is not None:
            self._maintenance.schedule(interval)

    def _maintenance_tick(self) -> Optional[float]:
        self.sweep()
        with self._lock:
            return self._next_sweep_interval()
