from __future__ import annotations

import threading
import traceback

from meshalert.core.state.ndjson_store import NdjsonEventStore
from meshalert.runtime.change_feed import ChangeFeed


class StoreTailThread:
    """
    Background thread that publishes inserts made by other writers.

    Responsibilities
    ----------------
    - Poll :meth:`NdjsonEventStore.read_new` every ``poll_interval_s``.
    - Publish every event another process appended to the change feed, in
      file order.

    Concurrency Model
    -----------------
    - Runs as a daemon thread.
    - Waits on the stop event between polls to remain responsive to stop signals.
    - Read errors are logged and the thread keeps polling.

    Parameters
    ----------
    store
        File-backed store shared with other processes.
    feed
        Change feed to publish foreign inserts to.
    stop_event
        Stop signal for the thread.
    poll_interval_s
        Delay between polls.
    """

    def __init__(
        self,
        store: NdjsonEventStore,
        feed: ChangeFeed,
        stop_event: threading.Event,
        poll_interval_s: float = 0.5,
    ):
        self._store = store
        self._feed = feed
        self._stop = stop_event
        self._poll_interval_s = poll_interval_s
        self._thread = threading.Thread(target=self._run, name="store-tail", daemon=True)

    def start(self) -> None:
        """
        Start the tail thread if not already running.
        """
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def poll_once(self) -> int:
        """
        Read and publish foreign inserts once.

        Returns
        -------
        int
            Number of events published.
        """
        fresh = self._store.read_new()
        for ev in fresh:
            self._feed.publish(ev)
        return len(fresh)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                print(f"[APP][STORE-TAIL] poll failed: {e!r}")
                traceback.print_exc()
            self._stop.wait(self._poll_interval_s)
