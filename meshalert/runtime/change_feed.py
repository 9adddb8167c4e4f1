from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from queue import Empty, Full, Queue
from typing import Iterator, List, Optional

from meshalert.domain.events import MeshEvent

_CANCELLED = object()


class Subscription:
    """
    Cancellable push subscription to a :class:`ChangeFeed`.

    Each subscription owns a bounded queue. The feed pushes newly inserted
    events into it; the owner reads them with :meth:`get` or by iterating.

    Cancellation
    ------------
    :meth:`cancel` detaches the subscription from the feed, so nothing is
    enqueued afterwards, and wakes up a blocked reader. Iteration stops at the
    next read. Events enqueued before the cancel may still be returned by
    :meth:`get` (clean-up is best-effort).

    Backpressure Policy
    -------------------
    If the queue is full the newest event is dropped for this subscriber only.
    Consumers that need completeness should re-read a snapshot from the store.
    """

    def __init__(self, feed: "ChangeFeed", max_queue: int = 5000, poll_timeout_s: float = 0.5):
        self._feed = feed
        self._q: "Queue[object]" = Queue(maxsize=max_queue)
        self._cancelled = threading.Event()
        self._poll_timeout_s = poll_timeout_s
        self.dropped = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _deliver(self, ev: MeshEvent) -> None:
        if self._cancelled.is_set():
            return
        try:
            self._q.put_nowait(ev)
        except Full:
            self.dropped += 1

    def get(self, timeout: Optional[float] = None) -> Optional[MeshEvent]:
        """
        Return the next pushed event, or None on timeout or cancellation.

        A cancelled subscription first drains what was already queued, then
        returns None immediately on every call.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._cancelled.is_set() and self._q.empty():
                return None
            wait = self._poll_timeout_s
            if deadline is not None:
                wait = min(wait, max(0.0, deadline - time.monotonic()))
            try:
                item = self._q.get(timeout=wait)
            except Empty:
                if deadline is not None and time.monotonic() >= deadline:
                    return None
                continue
            if item is _CANCELLED:
                return None
            return item  # type: ignore[return-value]

    def cancel(self) -> None:
        """
        Stop receiving events. Safe to call more than once.
        """
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._feed._remove(self)
        try:
            self._q.put_nowait(_CANCELLED)
        except Full:
            # Readers poll with a timeout and notice the flag.
            pass

    def __iter__(self) -> Iterator[MeshEvent]:
        while not self._cancelled.is_set():
            ev = self.get(timeout=self._poll_timeout_s)
            if ev is None or self._cancelled.is_set():
                continue
            yield ev

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.cancel()


@dataclass
class ChangeFeed:
    """
    In-process change feed for stored mesh events.

    The store publishes every event it inserts; every live subscription gets
    its own copy, in insertion order.

    Concurrency Model
    -----------------
    Subscribe/unsubscribe are guarded by a lock. :meth:`publish` iterates a
    snapshot of the subscriber list, so a subscriber cancelling concurrently
    never blocks the publisher. Publishing never blocks on a slow consumer.

    Attributes
    ----------
    max_queue
        Capacity of each subscription queue.
    """

    max_queue: int = 5000
    _subs: List[Subscription] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, max_queue=self.max_queue)
        with self._lock:
            self._subs.append(sub)
        return sub

    def publish(self, ev: MeshEvent) -> None:
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            sub._deliver(ev)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)
