"""
Rarity Engine - Collection Stats Cache

Process-wide, read-through cache of CollectionStats keyed by collection id.

Single-flight: when several callers ask for the same uncached collection at
once, only the first one (the leader) runs the supplier. Everyone else waits
on the leader's in-flight future and receives the identical result, or the
identical error. Failures are never cached, so the next call retries.

Two flavours share the contract:
    CollectionStatsCache       thread-per-request callers (threading.Lock)
    AsyncCollectionStatsCache  a single asyncio event loop

Usage:
    cache = CollectionStatsCache()
    stats = cache.get_stats("0xabc", lambda: compute_stats(summary, supply, "0xabc"))
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from config import STATS_CACHE_MAX_AGE
from trait_stats import AggregationError, CollectionStats, RarityEngineError

logger = logging.getLogger(__name__)


class StatsUnavailable(RarityEngineError):
    """The stats supplier failed, timed out or was cancelled. Retryable."""

    def __init__(self, collection_id: str, reason: str = ""):
        self.collection_id = collection_id
        self.reason = reason
        msg = f"stats unavailable for {collection_id}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


@dataclass(frozen=True)
class FreshnessPolicy:
    """How old a cached entry may be before it is recomputed.

    max_age=None keeps entries for the life of the process.
    """
    max_age: Optional[float] = None

    def is_fresh(self, stored_at: float, now: float) -> bool:
        if self.max_age is None:
            return True
        return now - stored_at < self.max_age


def _check_result(collection_id: str, result) -> CollectionStats:
    if not isinstance(result, CollectionStats):
        raise StatsUnavailable(
            collection_id, f"supplier returned {type(result).__name__}, not CollectionStats")
    return result


def _as_unavailable(collection_id: str, exc: Exception) -> Exception:
    """Map a supplier failure onto the error every waiter will see."""
    if isinstance(exc, (AggregationError, StatsUnavailable)):
        return exc
    err = StatsUnavailable(collection_id, f"{type(exc).__name__}: {exc}")
    err.__cause__ = exc
    return err


class _CacheCounters:
    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.computations = 0
        self.failures = 0

    def snapshot(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "computations": self.computations,
            "failures": self.failures,
        }


# ─── Threaded cache ──────────────────────────────────

class CollectionStatsCache:
    def __init__(self, freshness: Optional[FreshnessPolicy] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.freshness = freshness or FreshnessPolicy(STATS_CACHE_MAX_AGE)
        self._clock = clock
        self._entries: Dict[str, Tuple[CollectionStats, float]] = {}
        self._in_flight: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._counters = _CacheCounters()

    def get_stats(self, collection_id: str,
                  supplier: Callable[[], CollectionStats],
                  freshness: Optional[FreshnessPolicy] = None,
                  wait_timeout: Optional[float] = None) -> CollectionStats:
        """Return cached stats for a collection, computing them at most once.

        Args:
            collection_id: Cache key.
            supplier: No-argument callable doing the fetch + aggregate work.
                Only called on a miss, and only by one caller at a time.
            freshness: Overrides the cache-wide FreshnessPolicy for this call.
            wait_timeout: Seconds a non-leader caller waits for the in-flight
                computation before giving up with StatsUnavailable.

        Raises:
            StatsUnavailable: supplier failed (shared by all waiters) or the
                wait timed out.
            AggregationError: supplier reported malformed input.
        """
        policy = freshness or self.freshness
        with self._lock:
            entry = self._entries.get(collection_id)
            if entry is not None:
                stats, stored_at = entry
                if policy.is_fresh(stored_at, self._clock()):
                    self._counters.hits += 1
                    return stats
                logger.debug(f"StatsCache: entry for {collection_id} expired")
            self._counters.misses += 1
            future = self._in_flight.get(collection_id)
            leader = future is None
            if leader:
                future = Future()
                self._in_flight[collection_id] = future
                self._counters.computations += 1

        if leader:
            return self._compute(collection_id, supplier, future)

        logger.debug(f"StatsCache: waiting on in-flight computation for {collection_id}")
        try:
            return future.result(timeout=wait_timeout)
        except FutureTimeoutError:
            raise StatsUnavailable(
                collection_id, f"timed out after {wait_timeout}s waiting for in-flight stats")

    def _compute(self, collection_id: str, supplier, future: Future) -> CollectionStats:
        started = time.monotonic()
        try:
            stats = _check_result(collection_id, supplier())
        except Exception as e:
            err = _as_unavailable(collection_id, e)
            with self._lock:
                self._counters.failures += 1
                self._in_flight.pop(collection_id, None)
            logger.warning(f"StatsCache: computation for {collection_id} failed: {err}")
            future.set_exception(err)
            raise err
        except BaseException:
            # Interrupted leader: waiters must not hang on the future
            with self._lock:
                self._counters.failures += 1
                self._in_flight.pop(collection_id, None)
            future.set_exception(StatsUnavailable(collection_id, "computation interrupted"))
            raise

        with self._lock:
            self._entries[collection_id] = (stats, self._clock())
            self._in_flight.pop(collection_id, None)
        future.set_result(stats)
        logger.info(f"StatsCache: cached {collection_id} "
                    f"({len(stats.trait_frequencies)} trait types, "
                    f"{time.monotonic() - started:.2f}s)")
        return stats

    def peek(self, collection_id: str) -> Optional[CollectionStats]:
        """Cached stats regardless of freshness, without computing anything."""
        with self._lock:
            entry = self._entries.get(collection_id)
        return entry[0] if entry else None

    def invalidate(self, collection_id: str) -> bool:
        """Drop one entry. In-flight computations are not affected."""
        with self._lock:
            removed = self._entries.pop(collection_id, None) is not None
        if removed:
            logger.debug(f"StatsCache: invalidated {collection_id}")
        return removed

    def clear(self) -> int:
        with self._lock:
            n = len(self._entries)
            self._entries.clear()
        logger.info(f"StatsCache: cleared {n} entries")
        return n

    def stats(self) -> dict:
        with self._lock:
            snap = self._counters.snapshot()
            snap["entries"] = len(self._entries)
            snap["in_flight"] = len(self._in_flight)
        return snap

    def __contains__(self, collection_id: str) -> bool:
        with self._lock:
            return collection_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ─── asyncio cache ───────────────────────────────────

class AsyncCollectionStatsCache:
    """Single-flight stats cache for one event loop.

    No lock is needed: the check-then-insert in get_stats contains no await,
    so it cannot interleave with another coroutine on the same loop. Not
    safe to share across loops or threads.
    """

    def __init__(self, freshness: Optional[FreshnessPolicy] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.freshness = freshness or FreshnessPolicy(STATS_CACHE_MAX_AGE)
        self._clock = clock
        self._entries: Dict[str, Tuple[CollectionStats, float]] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._counters = _CacheCounters()

    async def get_stats(self, collection_id: str,
                        supplier: Callable[[], Awaitable[CollectionStats]],
                        freshness: Optional[FreshnessPolicy] = None,
                        timeout: Optional[float] = None) -> CollectionStats:
        """Return cached stats, awaiting one shared computation on a miss.

        Args:
            supplier: Coroutine function doing the fetch + aggregate work.
            timeout: Limit on the supplier run. Only applies when this call
                starts the computation; a timeout fails every waiter.

        Cancelling a caller does not cancel the shared computation.
        """
        policy = freshness or self.freshness
        entry = self._entries.get(collection_id)
        if entry is not None and policy.is_fresh(entry[1], self._clock()):
            self._counters.hits += 1
            return entry[0]

        self._counters.misses += 1
        task = self._in_flight.get(collection_id)
        if task is None:
            self._counters.computations += 1
            task = asyncio.ensure_future(self._compute(collection_id, supplier, timeout))
            task.add_done_callback(lambda t: self._forget(collection_id, t))
            self._in_flight[collection_id] = task
        else:
            logger.debug(f"AsyncStatsCache: joining in-flight computation for {collection_id}")
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                # Cancelled before the supplier started running
                raise StatsUnavailable(collection_id, "supplier cancelled") from None
            raise

    def _forget(self, collection_id: str, task: asyncio.Task):
        if self._in_flight.get(collection_id) is task:
            del self._in_flight[collection_id]

    async def _compute(self, collection_id: str, supplier, timeout) -> CollectionStats:
        try:
            if timeout is None:
                result = await supplier()
            else:
                result = await asyncio.wait_for(supplier(), timeout)
            stats = _check_result(collection_id, result)
        except asyncio.TimeoutError as e:
            self._counters.failures += 1
            if timeout is None:
                # The supplier's own TimeoutError, e.g. from a socket
                err = _as_unavailable(collection_id, e)
            else:
                err = StatsUnavailable(collection_id, f"supplier timed out after {timeout}s")
                err.__cause__ = e
            logger.warning(f"AsyncStatsCache: computation for {collection_id} failed: {err}")
            raise err
        except asyncio.CancelledError as e:
            self._counters.failures += 1
            raise StatsUnavailable(collection_id, "supplier cancelled") from e
        except Exception as e:
            self._counters.failures += 1
            err = _as_unavailable(collection_id, e)
            logger.warning(f"AsyncStatsCache: computation for {collection_id} failed: {err}")
            raise err
        else:
            self._entries[collection_id] = (stats, self._clock())
            logger.info(f"AsyncStatsCache: cached {collection_id} "
                        f"({len(stats.trait_frequencies)} trait types)")
            return stats

    def cancel(self, collection_id: str) -> bool:
        """Cancel an in-flight computation; its waiters get StatsUnavailable."""
        task = self._in_flight.get(collection_id)
        if task is None or task.done():
            return False
        return task.cancel()

    def peek(self, collection_id: str) -> Optional[CollectionStats]:
        entry = self._entries.get(collection_id)
        return entry[0] if entry else None

    def invalidate(self, collection_id: str) -> bool:
        return self._entries.pop(collection_id, None) is not None

    def clear(self) -> int:
        n = len(self._entries)
        self._entries.clear()
        return n

    def stats(self) -> dict:
        snap = self._counters.snapshot()
        snap["entries"] = len(self._entries)
        snap["in_flight"] = len(self._in_flight)
        return snap

    def __contains__(self, collection_id: str) -> bool:
        return collection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
