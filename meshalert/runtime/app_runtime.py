from __future__ import annotations

import threading
from typing import Callable, List, Optional

from meshalert.core.event_log import EventLog
from meshalert.core.state.event_view import MergedEventView
from meshalert.core.state.ndjson_store import NdjsonEventStore
from meshalert.domain.events import MeshEvent
from meshalert.runtime.event_view_thread import EventViewThread
from meshalert.runtime.store_tail_thread import StoreTailThread


class AppRuntime:
    """
    Thread supervisor for the background observers.

    This class owns:
    - a shared stop event
    - thread lifecycles (start/stop/join)

    Thread Topology
    ---------------
    1) StoreTailThread (I/O, file-backed store only)
       - polls the NDJSON file for lines appended by other processes
       - publishes them to the change feed

    2) EventViewThread (observer)
       - consumes the change-feed subscription
       - periodically merges a store snapshot
       - keeps the merged event view current

    Alert runs have their own short-lived threads started by the propagation
    engine and are not supervised here.

    Parameters
    ----------
    log
        Event log to observe.
    tail_store
        File-backed store to tail, or None for in-memory stores.
    refresh_interval_s
        Snapshot refresh period of the view thread.
    tail_interval_s
        Poll period of the tail thread.
    on_view_change
        Optional listener for view updates.
    """

    def __init__(
        self,
        log: EventLog,
        tail_store: Optional[NdjsonEventStore] = None,
        refresh_interval_s: float = 2.0,
        tail_interval_s: float = 0.5,
        on_view_change: Optional[Callable[[List[MeshEvent]], None]] = None,
    ):
        self._stop = threading.Event()

        self._tail: Optional[StoreTailThread] = None
        if tail_store is not None:
            self._tail = StoreTailThread(
                store=tail_store,
                feed=log.feed,
                stop_event=self._stop,
                poll_interval_s=tail_interval_s,
            )

        self._viewer = EventViewThread(
            log=log,
            stop_event=self._stop,
            refresh_interval_s=refresh_interval_s,
            on_change=on_view_change,
        )

    @property
    def view(self) -> MergedEventView:
        return self._viewer.view

    def start(self) -> None:
        """
        Start all runtime threads.

        Notes
        -----
        The view subscribes before the tail thread starts publishing.
        """
        self._viewer.start()
        if self._tail is not None:
            self._tail.start()

    def stop(self) -> None:
        """
        Stop all runtime threads and wait briefly for shutdown.
        """
        self._viewer.stop()
        if self._tail is not None:
            self._tail.stop()

        self._viewer.join(timeout=2.0)
        if self._tail is not None:
            self._tail.join(timeout=2.0)
