from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Set, Union

from meshalert.core.state.event_store import new_event_id, next_timestamp
from meshalert.domain.errors import StoreUnavailable
from meshalert.domain.events import MeshEvent, NewEvent, utc_now
from meshalert.runtime.change_feed import ChangeFeed
from meshalert.transport.ndjson import decode_events, encode_event


class NdjsonEventStore:
    """
    Append-only event store backed by an NDJSON file (one event per line).

    Several processes may append to the same file. This store:
    - loads every existing line when opened,
    - appends its own events as single line writes,
    - picks up lines written by other writers via :meth:`read_new`.

    Local appends are published to the change feed immediately. Lines from
    other writers are published by whoever polls :meth:`read_new` (see
    :class:`~meshalert.runtime.store_tail_thread.StoreTailThread`), so every
    event reaches the feed exactly once per process.

    Concurrency Model
    -----------------
    All reads/writes are guarded by a single re-entrant lock. Each append is a
    single ``write`` of one complete line in append mode; partially written
    lines from other writers are left unread until their newline arrives.

    Parameters
    ----------
    path
        File location. Parent directories are created on first write.
    feed
        Change feed notified of local inserts. If None, publishing is skipped.
    clock
        Time source for ``created_at``.
    """

    def __init__(
        self,
        path: Union[str, Path],
        feed: Optional[ChangeFeed] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._path = Path(path)
        self._feed = feed
        self._clock = clock
        self._lock = threading.RLock()
        self._events: List[MeshEvent] = []
        self._ids: Set[str] = set()
        self._offset = 0
        self._last_ts: Optional[datetime] = None

        # Existing history is loaded, not published.
        self.read_new()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, ev: NewEvent) -> MeshEvent:
        """
        Persist a new event.

        Raises
        ------
        StoreUnavailable
            If the file cannot be written.
        """
        with self._lock:
            ts = next_timestamp(self._clock, self._last_ts)
            stored = MeshEvent.from_new(ev, event_id=new_event_id(), created_at=ts)
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(encode_event(stored))
            except OSError as e:
                raise StoreUnavailable(f"append to {self._path} failed: {e}") from e

            self._remember(stored)
            if self._feed is not None:
                self._feed.publish(stored)
            return stored

    def query(self, limit: int, newest_first: bool = True) -> List[MeshEvent]:
        if limit <= 0:
            return []
        with self._lock:
            ordered = sorted(self._events, key=lambda e: e.created_at, reverse=newest_first)
        return ordered[:limit]

    def read_new(self) -> List[MeshEvent]:
        """
        Read complete lines appended since the last read.

        Returns
        -------
        list of MeshEvent
            Events written by other writers, in file order, including records
            glued onto one line. Events written by this store and undecodable
            records are skipped.

        Raises
        ------
        StoreUnavailable
            If the file exists but cannot be read.
        """
        with self._lock:
            if not self._path.exists():
                return []
            try:
                with self._path.open("rb") as f:
                    f.seek(self._offset)
                    data = f.read()
            except OSError as e:
                raise StoreUnavailable(f"read of {self._path} failed: {e}") from e

            end = data.rfind(b"\n")
            if end < 0:
                return []
            self._offset += end + 1

            fresh: List[MeshEvent] = []
            for raw in data[: end + 1].splitlines():
                line = raw.decode("utf-8", errors="replace")
                if not line.strip():
                    continue
                try:
                    for ev in decode_events(line):
                        if ev.id in self._ids:
                            continue
                        self._remember(ev)
                        fresh.append(ev)
                except ValueError:
                    print("[APP][STORE] BAD LINE:", repr(line[:200]))
            return fresh

    def _remember(self, ev: MeshEvent) -> None:
        self._events.append(ev)
        self._ids.add(ev.id)
        if self._last_ts is None or ev.created_at > self._last_ts:
            self._last_ts = ev.created_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
