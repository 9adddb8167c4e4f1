from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

from meshalert.core.event_log import EventLog
from meshalert.core.state.event_view import MergedEventView
from meshalert.domain.events import MeshEvent

ViewListener = Callable[[List[MeshEvent]], None]


class EventViewThread:
    """
    Consumer thread that keeps a :class:`MergedEventView` current.

    Responsibilities
    ----------------
    - Subscribe to the event log and merge every pushed event into the view.
    - Merge a fresh ``recent(limit)`` snapshot every ``refresh_interval_s``
      (covers drops on a full subscription queue).
    - Call the optional listener with the new view contents whenever it changes.

    The thread is a pure observer: it never blocks or gates the propagation
    engine or the dispatcher.

    Concurrency Model
    -----------------
    - Runs as a daemon thread.
    - Polls the subscription with a timeout to remain responsive to stop signals.
    - Any exception while refreshing or notifying is caught and logged.

    Parameters
    ----------
    log
        Event log to observe.
    view
        View to keep current. A new one is created if None.
    stop_event
        Stop signal for the thread.
    refresh_interval_s
        Period of snapshot refreshes.
    on_change
        Optional listener receiving the view contents (newest first).
    """

    def __init__(
        self,
        log: EventLog,
        stop_event: threading.Event,
        view: Optional[MergedEventView] = None,
        refresh_interval_s: float = 2.0,
        on_change: Optional[ViewListener] = None,
    ):
        self._log = log
        self._stop = stop_event
        self.view = view or MergedEventView(limit=log.view_limit)
        self._refresh_interval_s = refresh_interval_s
        self._on_change = on_change
        self._subscription = None
        self._thread = threading.Thread(target=self._run, name="event-view", daemon=True)

    def start(self) -> None:
        """
        Subscribe and start the thread if not already running.

        The subscription is opened before the first snapshot so no insert
        between the two is missed.
        """
        if self._thread.is_alive():
            return
        self._subscription = self._log.subscribe()
        self._refresh()
        self._thread.start()

    def stop(self) -> None:
        """
        Signal the thread to stop and cancel the subscription.
        """
        self._stop.set()
        if self._subscription is not None:
            self._subscription.cancel()

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def _refresh(self) -> None:
        try:
            changed = self.view.merge_snapshot(self._log.recent(self.view.limit))
        except Exception as e:
            print(f"[APP][EVENT-VIEW] snapshot refresh failed: {e!r}")
            return
        if changed:
            self._emit()

    def _emit(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.view.snapshot())
        except Exception as e:
            print(f"[APP][EVENT-VIEW] listener failed: {e!r}")

    def _run(self) -> None:
        """
        Worker loop: merge pushes, refresh snapshots periodically.
        """
        sub = self._subscription
        next_refresh = time.monotonic() + self._refresh_interval_s

        while not self._stop.is_set() and sub is not None and not sub.cancelled:
            ev = sub.get(timeout=0.2)
            if ev is not None and self.view.push(ev):
                self._emit()

            if time.monotonic() >= next_refresh:
                self._refresh()
                next_refresh = time.monotonic() + self._refresh_interval_s
