"""Interval cache for expensive derived-indicator computations.

Results are memoized per key and per recurring time window. The window is
the epoch-aligned boundary of the configured candle interval, so every
caller inside the same 15-minute slot converges on the same value no
matter when its call started:

- 10:00 first call      -> computed and cached
- 10:05 same window     -> cached value returned
- 10:07 while computing -> joins the in-flight computation
- 10:15 next window     -> recomputed, previous value dropped

Only one underlying computation runs per (key, window). It runs as its own
task, so a caller that gets cancelled never cancels the computation other
callers are waiting on.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from admission.exceptions import CacheComputationFailed

logger = logging.getLogger(__name__)

# Supported candle intervals, in minutes
INTERVAL_MINUTES: dict[str, int] = {
    "1m": 1,
    "3m": 3,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "2h": 120,
    "4h": 240,
    "6h": 360,
    "8h": 480,
}

KeyFn = Callable[..., str]
Clock = Callable[[], float]


def parse_interval(interval: str) -> int:
    """Convert a timeframe token such as '15m' to milliseconds.

    Raises:
        ValueError: If the token is not a supported interval.
    """
    minutes = INTERVAL_MINUTES.get(interval)
    if minutes is None:
        raise ValueError(
            f"Unknown cache interval '{interval}'. "
            f"Available: {', '.join(INTERVAL_MINUTES)}"
        )
    return minutes * 60 * 1000


def window_start(now_ms: int, step_ms: int) -> int:
    """Align a millisecond timestamp down to its interval boundary."""
    return (now_ms // step_ms) * step_ms


def default_key(*args: Any, **kwargs: Any) -> str:
    """Derive a cache key from call arguments."""
    if kwargs:
        return repr(args) + repr(sorted(kwargs.items()))
    return repr(args)


@dataclass
class CacheEntry:
    """Value (or pending computation) cached for one key and window."""

    key: str
    window: int
    task: asyncio.Task | None = None
    value: Any = None

    @property
    def in_flight(self) -> bool:
        return self.task is not None


@dataclass
class CacheStats:
    """Counters for observability."""

    hits: int = 0
    misses: int = 0
    joins: int = 0
    failures: int = 0


class IntervalCache:
    """Memoize an async computation per key and recurring time window.

    Parameters
    ----------
    fn : callable
        The computation. May be a coroutine function or return a plain value.
    interval : str
        Timeframe token (see ``INTERVAL_MINUTES``) defining the window size.
    key_fn : callable, optional
        Maps call arguments to a string key. Defaults to ``default_key``.
    clock : callable, optional
        Returns the current epoch time in seconds. Defaults to ``time.time``.
    max_entries : int
        Upper bound on stored keys; 0 means unbounded. When exceeded, the
        least recently stored completed entries are evicted. In-flight
        entries are never evicted.
    """

    def __init__(
        self,
        fn: Callable[..., Awaitable[Any] | Any],
        interval: str,
        key_fn: KeyFn | None = None,
        clock: Clock = time.time,
        max_entries: int = 0,
    ):
        self.fn = fn
        self.interval = interval
        self.step_ms = parse_interval(interval)
        self.key_fn = key_fn or default_key
        self.clock = clock
        self.max_entries = max_entries
        self.stats = CacheStats()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def current_window(self) -> int:
        """Return the start of the current window in epoch milliseconds."""
        return window_start(int(self.clock() * 1000), self.step_ms)

    def get_entry(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def run(self, *args: Any, **kwargs: Any) -> Any:
        """Return the value for these arguments in the current window."""
        key = self.key_fn(*args, **kwargs)
        window = self.current_window()
        entry = self._entries.get(key)

        if entry is not None and entry.window == window:
            if not entry.in_flight:
                self.stats.hits += 1
                logger.debug("Cache hit: key=%s window=%d", key, window)
                return entry.value
            self.stats.joins += 1
            logger.debug("Cache join in-flight: key=%s window=%d", key, window)
            task = entry.task
        else:
            self.stats.misses += 1
            logger.debug("Cache miss: key=%s window=%d", key, window)
            task = self._start(key, window, args, kwargs)

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise CacheComputationFailed(key, window, str(e)) from e

    def _start(
        self,
        key: str,
        window: int,
        args: tuple,
        kwargs: dict,
    ) -> asyncio.Task:
        # The task copies the caller's contextvars, so ambient lookups made
        # inside the computation see the caller's execution frame.
        task = asyncio.get_running_loop().create_task(self._compute(args, kwargs))
        entry = CacheEntry(key=key, window=window, task=task)
        self._entries[key] = entry
        self._entries.move_to_end(key)
        task.add_done_callback(functools.partial(self._on_done, entry))
        return task

    async def _compute(self, args: tuple, kwargs: dict) -> Any:
        result = self.fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _on_done(self, entry: CacheEntry, task: asyncio.Task) -> None:
        current = self._entries.get(entry.key) is entry

        if task.cancelled():
            if current:
                del self._entries[entry.key]
            return

        # Always retrieve the exception, even when nobody awaits the task.
        error = task.exception()
        if error is not None:
            self.stats.failures += 1
            logger.error(
                "Cached computation failed: key=%s window=%d: %s",
                entry.key,
                entry.window,
                error,
            )
            if current:
                del self._entries[entry.key]
            return

        # A newer window (or clear/flush) replaced this entry meanwhile.
        if not current:
            return

        entry.value = task.result()
        entry.task = None
        self._evict()

    def _evict(self) -> None:
        if self.max_entries <= 0 or len(self._entries) <= self.max_entries:
            return
        excess = len(self._entries) - self.max_entries
        for key in list(self._entries):
            if excess <= 0:
                break
            if self._entries[key].in_flight:
                continue
            del self._entries[key]
            excess -= 1
            logger.debug("Cache evicted key=%s", key)

    def clear(self, *args: Any, **kwargs: Any) -> None:
        """Drop the entry for these arguments; the next call recomputes.

        An in-flight computation keeps running for the callers already
        waiting on it, but its result is not stored.
        """
        key = self.key_fn(*args, **kwargs)
        self._entries.pop(key, None)

    def flush(self) -> None:
        """Drop every entry."""
        logger.info("Flushing interval cache (%d entries)", len(self._entries))
        self._entries.clear()


def memoize(
    fn: Callable[..., Awaitable[Any] | Any],
    *,
    interval: str,
    key_fn: KeyFn | None = None,
    clock: Clock = time.time,
    max_entries: int = 0,
) -> Callable[..., Awaitable[Any]]:
    """Wrap *fn* with an ``IntervalCache``.

    The returned coroutine function exposes the cache as ``.cache`` for
    ``clear()``, ``flush()`` and ``stats``.

    Example::

        cached_atr = memoize(compute_atr, interval="15m", key_fn=lambda s: s)
        atr = await cached_atr("BTCUSDT")  # computed
        atr = await cached_atr("BTCUSDT")  # cached until the next 15m slot
    """
    cache = IntervalCache(
        fn,
        interval,
        key_fn=key_fn,
        clock=clock,
        max_entries=max_entries,
    )
    logger.info(
        "Memoized %s on %s interval",
        getattr(fn, "__qualname__", repr(fn)),
        interval,
    )

    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        return await cache.run(*args, **kwargs)

    wrapper.cache = cache  # type: ignore[attr-defined]
    wrapper.__name__ = getattr(fn, "__name__", "memoized")
    wrapper.__doc__ = getattr(fn, "__doc__", None)
    return wrapper
