from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from meshalert.core.state.event_store import EventStore
from meshalert.core.state.event_view import DEFAULT_VIEW_LIMIT, MergedEventView
from meshalert.domain.errors import StoreUnavailable
from meshalert.domain.events import MeshEvent, NewEvent
from meshalert.runtime.change_feed import ChangeFeed, Subscription


@dataclass
class EventLog:
    """
    Single source of truth for what has happened during alert runs.

    'EventLog' is the facade the propagation engine and the dispatcher write
    through, and the one consumers read from:
    - :meth:`append` persists via the external store,
    - :meth:`recent` reads a newest-first snapshot,
    - :meth:`subscribe` opens a push subscription on the change feed,
    - :meth:`new_view` builds a merged, deduplicated, capped view.

    Error Policy
    ------------
    Any failure of the store during :meth:`append` surfaces as
    :class:`~meshalert.domain.errors.StoreUnavailable`. The log never retries;
    the caller's own error path decides what happens to the alert run.

    Attributes
    ----------
    store
        Append-only event store.
    feed
        Change feed the store publishes inserts to.
    view_limit
        Cap used by :meth:`recent` defaults and :meth:`new_view`.
    """

    store: EventStore
    feed: ChangeFeed = field(default_factory=ChangeFeed)
    view_limit: int = DEFAULT_VIEW_LIMIT

    def append(self, ev: NewEvent) -> MeshEvent:
        """
        Persist a new event and return its stored form.

        Raises
        ------
        StoreUnavailable
            If the store rejects the write.
        """
        try:
            return self.store.append(ev)
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"event store rejected {ev.event_type.value}: {e!r}") from e

    def recent(self, limit: int | None = None) -> List[MeshEvent]:
        """
        Return at most ``limit`` events, newest first.
        """
        n = self.view_limit if limit is None else limit
        return self.store.query(n, newest_first=True)

    def subscribe(self) -> Subscription:
        """
        Open a push subscription delivering events as they are inserted by any
        writer, in insertion order, until cancelled.
        """
        return self.feed.subscribe()

    def new_view(self) -> MergedEventView:
        """
        Build a merged view pre-filled with the current snapshot.
        """
        view = MergedEventView(limit=self.view_limit)
        view.merge_snapshot(self.recent(self.view_limit))
        return view
