"""Keyed cache of fetched query results.

Each distinct query key owns one ``CacheEntry`` snapshot. Snapshots are
immutable and replaced in a single assignment on every state transition, after
which subscribers of that key are notified with the new snapshot.

Fetch semantics:

* fresh data is served without calling the loader;
* concurrent fetches of one key share a single in-flight request;
* data older than the key's stale window is returned immediately while one
  background request refreshes it (stale-while-revalidate);
* invalidated, failed or empty entries wait for a new request;
* responses are applied in request-issue order, so a slow older request
  never overwrites the result of a newer one.

Entries without subscribers are evicted after the garbage-collection window.
"""

import asyncio
import dataclasses
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .query_keys import QueryKey


logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]
Listener = Callable[["CacheEntry"], None]

DEFAULT_STALE_TIME = 5 * 60.0
DEFAULT_GC_TIME = 10 * 60.0


class QueryStatus(Enum):
    """Lifecycle of a cache entry."""
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CacheEntry:
    """Immutable snapshot of one cached query."""

    key: QueryKey
    data: Any = None
    status: QueryStatus = QueryStatus.IDLE
    fetched_at: Optional[float] = None
    stale_after: Optional[float] = None
    error: Optional[BaseException] = None
    is_invalidated: bool = False

    @property
    def has_data(self) -> bool:
        return self.fetched_at is not None

    def is_stale(self, now: float) -> bool:
        if self.is_invalidated or self.stale_after is None:
            return True
        return now >= self.stale_after


class _Slot:
    """Mutable bookkeeping behind one key's snapshot."""

    __slots__ = ("entry", "next_seq", "applied_seq", "invalidated_seq",
                 "in_flight", "listeners", "unobserved_since", "gc_handle")

    def __init__(self, key: QueryKey, now: float):
        self.entry = CacheEntry(key=key)
        self.next_seq = 0
        self.applied_seq = 0
        self.invalidated_seq = 0
        self.in_flight: Optional[Tuple[int, "asyncio.Future"]] = None
        self.listeners: List[Listener] = []
        self.unobserved_since: Optional[float] = now
        self.gc_handle: Optional[asyncio.TimerHandle] = None


def _as_key(key: Union[QueryKey, str, Iterable]) -> QueryKey:
    if isinstance(key, str):
        return (key,)
    return tuple(key)


class QueryCache:
    """Process-wide store of query results with request coalescing."""

    def __init__(self, stale_times: Optional[Dict[str, float]] = None,
                 default_stale_time: float = DEFAULT_STALE_TIME,
                 gc_time: float = DEFAULT_GC_TIME,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            stale_times: Stale window in seconds per entity kind (first key element)
            default_stale_time: Stale window for kinds not listed
            gc_time: Seconds an unobserved entry is kept before eviction
            clock: Monotonic time source
        """
        self.stale_times = dict(stale_times or {})
        self.default_stale_time = default_stale_time
        self.gc_time = gc_time
        self.clock = clock
        self._slots: Dict[QueryKey, _Slot] = {}

    def __contains__(self, key) -> bool:
        return _as_key(key) in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def keys(self) -> List[QueryKey]:
        return list(self._slots)

    def stale_time_for(self, key: QueryKey) -> float:
        kind = key[0] if key else ""
        return self.stale_times.get(kind, self.default_stale_time)

    # Reading

    def read(self, key: QueryKey) -> CacheEntry:
        """Return the current snapshot for a key (IDLE if never fetched)."""
        key = _as_key(key)
        slot = self._slots.get(key)
        return slot.entry if slot else CacheEntry(key=key)

    def subscribe(self, key: QueryKey, listener: Listener) -> Callable[[], None]:
        """Observe every state transition of a key's entry.

        Args:
            key: Query key
            listener: Called with the new ``CacheEntry`` snapshot

        Returns:
            Callable that removes the subscription
        """
        key = _as_key(key)
        slot = self._slot(key)
        slot.listeners.append(listener)
        slot.unobserved_since = None
        self._cancel_gc(slot)

        def unsubscribe():
            # The slot may have been rebuilt by remove() since subscribing
            current = self._slots.get(key)
            if current is None or listener not in current.listeners:
                return
            current.listeners.remove(listener)
            if not current.listeners:
                current.unobserved_since = self.clock()
                self._schedule_gc(key, current)

        return unsubscribe

    # Fetching

    async def fetch(self, key: QueryKey, loader: Loader) -> Any:
        """Return data for a key, calling ``loader`` only when needed.

        Args:
            key: Query key
            loader: Coroutine function producing fresh data

        Returns:
            Cached or freshly loaded data

        Raises:
            Exception: Whatever the loader raised, when the caller had to wait
        """
        key = _as_key(key)
        slot = self._slot(key)
        entry = slot.entry
        now = self.clock()
        self._touch(key, slot, now)

        if entry.has_data and entry.error is None and not entry.is_stale(now):
            return entry.data

        serve_stale = entry.has_data and entry.error is None and not entry.is_invalidated

        if slot.in_flight is not None:
            if serve_stale:
                return entry.data
            return await asyncio.shield(slot.in_flight[1])

        task = self._start(key, slot, loader)
        if serve_stale:
            logger.debug(f"Serving stale data for {key} while revalidating")
            return entry.data
        return await asyncio.shield(task)

    async def refetch(self, key: QueryKey, loader: Loader) -> Any:
        """Issue a new request for a key regardless of cached state."""
        key = _as_key(key)
        slot = self._slot(key)
        self._touch(key, slot, self.clock())
        task = self._start(key, slot, loader)
        return await asyncio.shield(task)

    async def join(self, key: QueryKey) -> CacheEntry:
        """Wait for the key's in-flight request, if any, and return its entry.

        Failures are not raised; they are recorded on the returned entry.
        """
        key = _as_key(key)
        slot = self._slots.get(key)
        while slot is not None and slot.in_flight is not None:
            task = slot.in_flight[1]
            if task.done():
                break
            await asyncio.wait({task})
        return self.read(key)

    # Writing

    def set_data(self, key: QueryKey, data: Any) -> CacheEntry:
        """Store data directly, as if a request issued now had returned it."""
        key = _as_key(key)
        slot = self._slot(key)
        slot.next_seq += 1
        slot.applied_seq = slot.next_seq
        now = self.clock()
        return self._replace(
            slot,
            data=data,
            status=QueryStatus.FETCHING if slot.in_flight else QueryStatus.SUCCESS,
            fetched_at=now,
            stale_after=now + self.stale_time_for(key),
            error=None,
            is_invalidated=False,
        )

    def invalidate(self, prefix: Union[QueryKey, str] = ()) -> int:
        """Mark every entry whose key starts with ``prefix`` as stale.

        The next ``fetch`` of an invalidated key waits for a new request;
        requests already in flight can still store their data but do not
        make the entry fresh again.

        Returns:
            Number of entries invalidated
        """
        count = 0
        for key, slot in self._matching(prefix):
            slot.invalidated_seq = slot.next_seq
            slot.in_flight = None
            self._replace(slot, is_invalidated=True)
            count += 1
        if count:
            logger.debug(f"Invalidated {count} entries under {_as_key(prefix)}")
        return count

    def remove(self, prefix: Union[QueryKey, str] = ()) -> int:
        """Drop the data of matching entries; subscribers receive an IDLE entry.

        Keys that still have subscribers get a fresh slot carrying the same
        subscriptions, so later fetches keep notifying them. Responses to
        requests issued before the removal are discarded.
        """
        removed = 0
        for key, slot in self._matching(prefix):
            self._cancel_gc(slot)
            del self._slots[key]
            if slot.listeners:
                fresh = _Slot(key, self.clock())
                fresh.listeners = slot.listeners
                fresh.unobserved_since = None
                self._slots[key] = fresh
            self._notify(slot.listeners, CacheEntry(key=key))
            removed += 1
        return removed

    def clear(self) -> None:
        """Remove every entry (used on logout)."""
        self.remove(())

    # Garbage collection

    def collect_garbage(self) -> int:
        """Evict entries unobserved for longer than the GC window.

        Returns:
            Number of evicted entries
        """
        now = self.clock()
        evicted = 0
        for key, slot in list(self._slots.items()):
            if self._is_collectable(slot, now):
                self._cancel_gc(slot)
                del self._slots[key]
                evicted += 1
        if evicted:
            logger.debug(f"Evicted {evicted} unobserved cache entries")
        return evicted

    def teardown(self) -> None:
        """Cancel timers and in-flight requests and drop all entries."""
        for slot in self._slots.values():
            self._cancel_gc(slot)
            if slot.in_flight is not None:
                slot.in_flight[1].cancel()
        self._slots.clear()

    # Internals

    def _slot(self, key: QueryKey) -> _Slot:
        slot = self._slots.get(key)
        if slot is None:
            slot = _Slot(key, self.clock())
            self._slots[key] = slot
            self._schedule_gc(key, slot)
        return slot

    def _matching(self, prefix) -> List[Tuple[QueryKey, _Slot]]:
        prefix = _as_key(prefix)
        size = len(prefix)
        return [(key, slot) for key, slot in list(self._slots.items()) if key[:size] == prefix]

    def _touch(self, key: QueryKey, slot: _Slot, now: float) -> None:
        if not slot.listeners:
            slot.unobserved_since = now
            self._schedule_gc(key, slot)

    def _start(self, key: QueryKey, slot: _Slot, loader: Loader) -> "asyncio.Future":
        slot.next_seq += 1
        seq = slot.next_seq
        self._replace(slot, status=QueryStatus.FETCHING)
        task = asyncio.ensure_future(self._run(key, slot, seq, loader))
        task.add_done_callback(_consume_exception)
        slot.in_flight = (seq, task)
        return task

    async def _run(self, key: QueryKey, slot: _Slot, seq: int, loader: Loader) -> Any:
        try:
            data = await loader()
        except asyncio.CancelledError:
            self._abandon(key, slot, seq)
            raise
        except Exception as exc:
            self._settle(key, slot, seq, error=exc)
            raise
        return self._settle(key, slot, seq, data=data)

    def _settle(self, key: QueryKey, slot: _Slot, seq: int, data: Any = None,
                error: Optional[BaseException] = None) -> Any:
        if slot.in_flight is not None and slot.in_flight[0] == seq:
            slot.in_flight = None

        if self._slots.get(key) is not slot:
            # Entry was removed while the request was running
            return data

        if seq < slot.applied_seq:
            logger.debug(f"Discarding out-of-order response #{seq} for {key}")
            if slot.in_flight is None and slot.entry.status is QueryStatus.FETCHING:
                status = QueryStatus.ERROR if slot.entry.error else QueryStatus.SUCCESS
                self._replace(slot, status=status)
            return slot.entry.data

        slot.applied_seq = seq
        pending = QueryStatus.FETCHING if slot.in_flight is not None else None

        if error is not None:
            logger.warning(f"Fetch for {key} failed: {error}")
            self._replace(slot, status=pending or QueryStatus.ERROR, error=error)
        else:
            now = self.clock()
            self._replace(
                slot,
                data=data,
                status=pending or QueryStatus.SUCCESS,
                fetched_at=now,
                stale_after=now + self.stale_time_for(key),
                error=None,
                is_invalidated=seq <= slot.invalidated_seq,
            )

        if not slot.listeners:
            slot.unobserved_since = self.clock()
            self._schedule_gc(key, slot)
        return data

    def _abandon(self, key: QueryKey, slot: _Slot, seq: int) -> None:
        if slot.in_flight is None or slot.in_flight[0] != seq:
            return
        slot.in_flight = None
        if self._slots.get(key) is slot and slot.entry.status is QueryStatus.FETCHING:
            entry = slot.entry
            if entry.error is not None:
                status = QueryStatus.ERROR
            elif entry.has_data:
                status = QueryStatus.SUCCESS
            else:
                status = QueryStatus.IDLE
            self._replace(slot, status=status)

    def _replace(self, slot: _Slot, **changes) -> CacheEntry:
        slot.entry = dataclasses.replace(slot.entry, **changes)
        self._notify(slot.listeners, slot.entry)
        return slot.entry

    @staticmethod
    def _notify(listeners: List[Listener], entry: CacheEntry) -> None:
        for listener in list(listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.error(f"Cache listener for {entry.key} failed: {e}")

    def _is_collectable(self, slot: _Slot, now: float) -> bool:
        return (
            not slot.listeners
            and slot.in_flight is None
            and slot.unobserved_since is not None
            and now - slot.unobserved_since >= self.gc_time
        )

    def _schedule_gc(self, key: QueryKey, slot: _Slot) -> None:
        if math.isinf(self.gc_time):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_gc(slot)
        slot.gc_handle = loop.call_later(self.gc_time, self._evict_if_unobserved, key, slot)

    def _evict_if_unobserved(self, key: QueryKey, slot: _Slot) -> None:
        slot.gc_handle = None
        if self._slots.get(key) is slot and self._is_collectable(slot, self.clock()):
            del self._slots[key]
            logger.debug(f"Evicted unobserved cache entry {key}")

    @staticmethod
    def _cancel_gc(slot: _Slot) -> None:
        if slot.gc_handle is not None:
            slot.gc_handle.cancel()
            slot.gc_handle = None


def _consume_exception(task: "asyncio.Future") -> None:
    # Background revalidations may have no awaiting caller; failures are
    # already recorded on the entry.
    if not task.cancelled():
        task.exception()
