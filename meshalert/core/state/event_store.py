from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol

from meshalert.domain.events import MeshEvent, NewEvent, as_utc, utc_now
from meshalert.runtime.change_feed import ChangeFeed

_TICK = timedelta(microseconds=1)


class EventStore(Protocol):
    """
    Protocol interface for the persistent, append-only event store.

    Any store implementation can back the event log if it provides these two
    methods. Each append must be atomic and immediately visible to later
    queries and to the change feed.

    Methods
    -------
    append(ev)
        Persist a new event, assigning its id and creation time.
    query(limit, newest_first)
        Read at most ``limit`` stored events ordered by creation time.
    """

    def append(self, ev: NewEvent) -> MeshEvent:
        ...

    def query(self, limit: int, newest_first: bool = True) -> List[MeshEvent]:
        ...


def new_event_id() -> str:
    return str(uuid.uuid4())


def next_timestamp(clock: Callable[[], datetime], last: Optional[datetime]) -> datetime:
    """
    Return a creation time strictly greater than ``last``.

    Two appends within the clock's resolution still get distinct, increasing
    timestamps. The result is always timezone-aware UTC; a naive clock is
    read as local time.
    """
    ts = as_utc(clock())
    if last is not None and ts <= last:
        ts = last + _TICK
    return ts


@dataclass
class InMemoryEventStore:
    """
    In-memory event store.

    This store keeps every appended event in a list, in insertion order, and
    publishes each one to the optional change feed.

    Concurrency Model
    -----------------
    Appends and queries are guarded by a single re-entrant lock. Publishing to
    the feed happens under the same lock so every subscriber sees inserts in
    insertion order; the feed never blocks.

    Attributes
    ----------
    feed
        Change feed notified of every insert. If None, publishing is skipped.
    clock
        Time source for ``created_at``.
    """

    feed: Optional[ChangeFeed] = None
    clock: Callable[[], datetime] = utc_now

    _events: List[MeshEvent] = field(default_factory=list, init=False, repr=False)
    _last_ts: Optional[datetime] = field(default=None, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def append(self, ev: NewEvent) -> MeshEvent:
        with self._lock:
            ts = next_timestamp(self.clock, self._last_ts)
            stored = MeshEvent.from_new(ev, event_id=new_event_id(), created_at=ts)
            self._events.append(stored)
            self._last_ts = ts
            if self.feed is not None:
                self.feed.publish(stored)
            return stored

    def query(self, limit: int, newest_first: bool = True) -> List[MeshEvent]:
        if limit <= 0:
            return []
        with self._lock:
            if newest_first:
                return list(reversed(self._events[-limit:]))
            return list(self._events[:limit])

    def all(self) -> List[MeshEvent]:
        """
        Return every stored event, oldest first.
        """
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
