from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from meshalert.domain.events import MeshEvent

DEFAULT_VIEW_LIMIT = 50


@dataclass
class MergedEventView:
    """
    Consumer-facing view of recent mesh events.

    The view is the union of snapshot reads (:meth:`merge_snapshot`) and
    subscription pushes (:meth:`push`), deduplicated by event id, ordered
    newest first and capped at ``limit`` entries.

    Notes
    -----
    - Identity is by id, never by content: a local echo and a remote change
      notification for the same insert collapse into one entry, while two
      distinct events with identical content are both kept.
    - Events older than the oldest retained entry are discarded once the
      view is full.

    Concurrency Model
    -----------------
    Guarded by a lock; the subscription thread, the snapshot refresher and
    readers may call concurrently. :meth:`snapshot` returns a copy.

    Attributes
    ----------
    limit
        Maximum number of retained events.
    """

    limit: int = DEFAULT_VIEW_LIMIT
    _by_id: Dict[str, MeshEvent] = field(default_factory=dict, init=False, repr=False)
    _ordered: List[MeshEvent] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.limit <= 0:
            raise ValueError("limit must be positive")

    def push(self, ev: MeshEvent) -> bool:
        """
        Merge one pushed event.

        Returns
        -------
        bool
            True if the view changed.
        """
        return self.merge([ev])

    def merge_snapshot(self, events: Iterable[MeshEvent]) -> bool:
        """
        Merge a snapshot read (e.g. ``EventLog.recent(limit)``).
        """
        return self.merge(events)

    def merge(self, events: Iterable[MeshEvent]) -> bool:
        with self._lock:
            added = False
            for ev in events:
                if ev.id in self._by_id:
                    continue
                self._by_id[ev.id] = ev
                added = True
            if not added:
                return False

            before = [e.id for e in self._ordered]
            ordered = sorted(self._by_id.values(), key=lambda e: e.created_at, reverse=True)
            kept = ordered[: self.limit]
            self._ordered = kept
            self._by_id = {e.id: e for e in kept}
            return [e.id for e in kept] != before

    def snapshot(self) -> List[MeshEvent]:
        with self._lock:
            return list(self._ordered)

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._ordered = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._ordered)
