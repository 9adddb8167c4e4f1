"""
Stress tests for the change feed, the stores that publish to it and the merged
event view.

These tests validate:
- concurrent appends yield unique ids and strictly increasing creation times
- every subscriber sees every insert exactly once, in insertion order
- subscribers cancelling mid-stream never block publishers
- concurrent pushes and snapshot merges keep the view deduplicated and capped

Notes
-----
Thread stress tests are probabilistic: passing increases confidence but does not
prove the absence of races. Run repeatedly for higher confidence.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import List

import pytest

from meshalert.core.state.event_store import InMemoryEventStore
from meshalert.core.state.event_view import MergedEventView
from meshalert.core.state.ndjson_store import NdjsonEventStore
from meshalert.domain.events import MeshEvent
from meshalert.notification.payload import node_hop_event
from meshalert.runtime.change_feed import ChangeFeed

WRITERS = 8
PER_WRITER = 500


def _run_threads(targets: List[threading.Thread]) -> None:
    for t in targets:
        t.start()
    for t in targets:
        t.join(timeout=20)
    assert all(not t.is_alive() for t in targets), "A thread did not finish (possible deadlock)"


@pytest.mark.stress
def test_concurrent_appends_are_ordered_for_every_subscriber() -> None:
    feed = ChangeFeed(max_queue=WRITERS * PER_WRITER + 10)
    subs = [feed.subscribe() for _ in range(4)]
    store = InMemoryEventStore(feed=feed)
    start = threading.Barrier(WRITERS)
    errors: List[BaseException] = []

    def writer(tid: int) -> None:
        try:
            start.wait()
            for k in range(PER_WRITER):
                store.append(node_hop_event(f"a{tid}", "sensor-1", f"sensor-{k}"))
        except BaseException as e:
            errors.append(e)

    _run_threads([threading.Thread(target=writer, args=(t,)) for t in range(WRITERS)])
    if errors:
        raise AssertionError(f"Concurrency test caught exceptions: {errors!r}")

    stored = store.all()
    assert len(stored) == WRITERS * PER_WRITER
    assert len({e.id for e in stored}) == len(stored)
    for a, b in zip(stored, stored[1:]):
        assert a.created_at < b.created_at

    expected = [e.id for e in stored]
    for sub in subs:
        got = []
        while True:
            ev = sub.get(timeout=0.05)
            if ev is None:
                break
            got.append(ev.id)
        assert got == expected
        assert sub.dropped == 0


@pytest.mark.stress
def test_ndjson_concurrent_appends_from_two_stores(tmp_path: Path) -> None:
    p = tmp_path / "events.ndjson"
    a = NdjsonEventStore(p)
    b = NdjsonEventStore(p)
    errors: List[BaseException] = []

    def writer(store: NdjsonEventStore, tag: str) -> None:
        try:
            for k in range(200):
                store.append(node_hop_event(tag, "sensor-1", f"sensor-{k}"))
        except BaseException as e:
            errors.append(e)

    _run_threads([threading.Thread(target=writer, args=(a, "A")), threading.Thread(target=writer, args=(b, "B"))])
    if errors:
        raise AssertionError(f"Concurrency test caught exceptions: {errors!r}")

    a.read_new()
    b.read_new()
    reopened = NdjsonEventStore(p)

    assert len(a) == len(b) == len(reopened) == 400


@pytest.mark.stress
def test_cancelling_subscribers_never_block_publishers() -> None:
    feed = ChangeFeed(max_queue=16)
    store = InMemoryEventStore(feed=feed)
    stop = threading.Event()
    errors: List[BaseException] = []

    def churn() -> None:
        try:
            while not stop.is_set():
                with feed.subscribe() as sub:
                    sub.get(timeout=0.001)
        except BaseException as e:
            errors.append(e)

    def writer() -> None:
        try:
            for k in range(3000):
                store.append(node_hop_event("a1", "sensor-1", f"sensor-{k}"))
        except BaseException as e:
            errors.append(e)
        finally:
            stop.set()

    _run_threads([threading.Thread(target=churn) for _ in range(4)] + [threading.Thread(target=writer)])
    if errors:
        raise AssertionError(f"Concurrency test caught exceptions: {errors!r}")

    assert len(store) == 3000
    assert feed.subscriber_count == 0


@pytest.mark.stress
def test_view_concurrent_push_and_snapshot_merge() -> None:
    store = InMemoryEventStore()
    events: List[MeshEvent] = [store.append(node_hop_event("a1", "sensor-1", f"sensor-{k}")) for k in range(500)]
    view = MergedEventView(limit=50)
    start = threading.Barrier(6)
    errors: List[BaseException] = []

    def pusher(offset: int) -> None:
        try:
            start.wait()
            for ev in events[offset::3]:
                view.push(ev)
        except BaseException as e:
            errors.append(e)

    def snapshotter() -> None:
        try:
            start.wait()
            for _ in range(200):
                view.merge_snapshot(store.query(50))
                snap = view.snapshot()
                assert len(snap) <= 50
                assert len({e.id for e in snap}) == len(snap)
        except BaseException as e:
            errors.append(e)

    _run_threads(
        [threading.Thread(target=pusher, args=(i,)) for i in range(3)]
        + [threading.Thread(target=snapshotter) for _ in range(3)]
    )
    if errors:
        raise AssertionError(f"Concurrency test caught exceptions: {errors!r}")

    assert [e.id for e in view.snapshot()] == [e.id for e in reversed(events[-50:])]
