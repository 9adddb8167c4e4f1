"""
Unit tests for meshalert.services.propagation.AlertPropagationEngine.

These tests validate:
- the event sequence of a full run over the reference mesh
- creation times strictly increase and hops are at least one delay apart
- one alert in flight per engine; unknown origins are rejected up front
- empty contact snapshots complete without dispatch
- store and configuration failures end the run as FAILED, keeping partial events
- the consenting-contact snapshot is taken once, at gateway receipt

A short hop delay keeps the runs fast while still exercising real threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Set, Tuple

import pytest

from meshalert.core.config.contact_registry import ContactRegistry
from meshalert.core.event_log import EventLog
from meshalert.core.state.event_store import InMemoryEventStore
from meshalert.core.topology import default_topology
from meshalert.domain.errors import AlreadyInFlight, ConfigurationError, StoreUnavailable, UnknownNode
from meshalert.domain.events import EventType, MeshEvent, NewEvent
from meshalert.domain.models import Contact, ContactRole
from meshalert.notification.base import SendResult
from meshalert.runtime.change_feed import ChangeFeed
from meshalert.services.dispatcher import NotificationDispatcher
from meshalert.services.propagation import AlertPhase, AlertPropagationEngine, EngineState, RunStatus

DELAY = 0.02

FARMER = Contact(id="c1", name="Ravi", role=ContactRole.FARMER, phone="+15550001")
OFFICER = Contact(id="c2", name="Meena", role=ContactRole.OFFICER, phone="+15550002")


@dataclass
class FakeChannel:
    fail_phones: Set[str] = field(default_factory=set)
    configured: bool = True
    sent: List[Tuple[str, str]] = field(default_factory=list)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("Twilio credentials not configured")

    def send(self, contact: Contact, message: str) -> SendResult:
        self.sent.append((contact.phone, message))
        if contact.phone in self.fail_phones:
            return SendResult.failed("unreachable")
        return SendResult.ok(sid=f"SM{len(self.sent)}")


@dataclass
class FlakyStore:
    """
    In-memory store that fails every append after ``ok_appends`` succeeded.
    """

    ok_appends: int
    inner: InMemoryEventStore = field(default_factory=InMemoryEventStore)

    def append(self, ev: NewEvent) -> MeshEvent:
        if len(self.inner) >= self.ok_appends:
            raise OSError("disk full")
        return self.inner.append(ev)

    def query(self, limit: int, newest_first: bool = True) -> List[MeshEvent]:
        return self.inner.query(limit, newest_first)

    def all(self) -> List[MeshEvent]:
        return self.inner.all()


@dataclass
class Harness:
    engine: AlertPropagationEngine
    store: InMemoryEventStore
    channel: FakeChannel
    contacts: ContactRegistry
    transitions: List[EngineState]


def _harness(
    contacts: Optional[List[Contact]] = None,
    channel: Optional[FakeChannel] = None,
    store=None,
    delay: float = DELAY,
    on_transition=None,
) -> Harness:
    feed = ChangeFeed()
    store = store if store is not None else InMemoryEventStore(feed=feed)
    log = EventLog(store=store, feed=feed)
    registry = ContactRegistry()
    registry.load(contacts if contacts is not None else [FARMER, OFFICER])
    channel = channel or FakeChannel()
    transitions: List[EngineState] = []

    def record(state: EngineState) -> None:
        transitions.append(state)
        if on_transition is not None:
            on_transition(state, registry)

    engine = AlertPropagationEngine(
        topology=default_topology(),
        log=log,
        contacts=registry,
        dispatcher=NotificationDispatcher(channel=channel, log=log),
        hop_delay_s=delay,
        on_transition=record,
    )
    return Harness(engine, store, channel, registry, transitions)


def test_reference_run_event_sequence() -> None:
    h = _harness(channel=FakeChannel(fail_phones={OFFICER.phone}))

    outcome = h.engine.run("sensor-1", timeout=5.0)
    events = h.store.all()

    assert outcome.status == RunStatus.COMPLETED
    assert [e.event_type for e in events] == [
        EventType.ALERT_TRIGGERED,
        EventType.NODE_HOP,
        EventType.NODE_HOP,
        EventType.NODE_HOP,
        EventType.GATEWAY_RECEIVED,
        EventType.SMS_SENT,
        EventType.SMS_FAILED,
    ]
    assert [e.node_id for e in events[:5]] == ["sensor-1", "sensor-2", "sensor-3", "sensor-4", "gateway-1"]
    assert events[4].metadata.to_dict() == {"alert_id": outcome.alert_id, "contact_count": 2}
    assert events[5].metadata.contact_id == "c1"  # type: ignore[union-attr]
    assert events[6].metadata.contact_id == "c2"  # type: ignore[union-attr]
    assert {e.alert_id for e in events} == {outcome.alert_id}

    assert (outcome.dispatch.total, outcome.dispatch.sent, outcome.dispatch.failed) == (2, 1, 1)
    assert outcome.contact_count == 2
    assert not outcome.no_recipients
    assert outcome.error is None


def test_message_is_rendered_for_origin_and_alert() -> None:
    h = _harness(contacts=[FARMER])
    outcome = h.engine.run("sensor-1", timeout=5.0)

    (_, message), = h.channel.sent
    assert "sensor-1" in message
    assert outcome.alert_id in message
    assert message.startswith("\U0001F418 ELEPHANT ALERT")


def test_timestamps_increase_and_hops_are_spaced_by_delay() -> None:
    h = _harness()
    h.engine.run("sensor-1", timeout=5.0)
    events = h.store.all()

    for a, b in zip(events, events[1:]):
        assert a.created_at < b.created_at

    # trigger -> hop1 -> hop2 -> hop3 -> gateway each wait one delay
    for a, b in zip(events[:5], events[1:5]):
        assert b.created_at - a.created_at >= timedelta(seconds=DELAY)


def test_alert_ids_are_unique_per_run() -> None:
    h = _harness(contacts=[])
    first = h.engine.run("sensor-1", timeout=5.0)
    second = h.engine.run("sensor-1", timeout=5.0)

    assert first.alert_id != second.alert_id
    assert first.alert_id.startswith("alert-")


def test_trigger_while_in_flight_is_rejected() -> None:
    h = _harness(contacts=[], delay=0.05)

    run = h.engine.trigger("sensor-1")
    assert h.engine.in_flight

    with pytest.raises(AlreadyInFlight) as ei:
        h.engine.trigger("sensor-2")
    assert ei.value.alert_id == run.alert_id

    outcome = run.wait(timeout=5.0)
    assert outcome is not None and outcome.status == RunStatus.COMPLETED
    assert [e.event_type for e in h.store.all()].count(EventType.ALERT_TRIGGERED) == 1

    assert not h.engine.in_flight
    assert h.engine.run("sensor-2", timeout=5.0).status == RunStatus.COMPLETED


@pytest.mark.parametrize("origin", ["sensor-99", "gateway-1", ""])
def test_unknown_origin_is_rejected_without_events(origin: str) -> None:
    h = _harness()

    with pytest.raises(UnknownNode):
        h.engine.trigger(origin)

    assert len(h.store) == 0
    assert h.engine.state().phase == AlertPhase.IDLE
    assert h.transitions == []


def test_shortest_path_origin() -> None:
    h = _harness(contacts=[])
    outcome = h.engine.run("sensor-2", timeout=5.0)

    assert outcome.route.hops == ("sensor-3",)
    assert [e.node_id for e in h.store.all()] == ["sensor-2", "sensor-3", "gateway-1"]


def test_no_consenting_contacts_completes_without_dispatch() -> None:
    silent = Contact(id="c3", name="Arjun", role=ContactRole.FARMER, phone="+15550003", consent=False)
    h = _harness(contacts=[silent], channel=FakeChannel(configured=False))

    outcome = h.engine.run("sensor-1", timeout=5.0)
    events = h.store.all()

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.no_recipients is True
    assert outcome.dispatch.total == 0
    assert h.channel.sent == []
    assert events[-1].event_type == EventType.GATEWAY_RECEIVED
    assert events[-1].metadata.to_dict()["contact_count"] == 0


def test_configuration_error_fails_run_before_any_send() -> None:
    h = _harness(channel=FakeChannel(configured=False))

    outcome = h.engine.run("sensor-1", timeout=5.0)

    assert outcome.status == RunStatus.FAILED
    assert isinstance(outcome.error, ConfigurationError)
    assert outcome.contact_count == 2
    assert h.channel.sent == []
    assert h.store.all()[-1].event_type == EventType.GATEWAY_RECEIVED
    assert h.engine.state().phase == AlertPhase.IDLE

    with pytest.raises(ConfigurationError):
        outcome.raise_for_status()


def test_store_failure_mid_run_keeps_partial_events() -> None:
    store = FlakyStore(ok_appends=2)
    h = _harness(store=store)

    outcome = h.engine.run("sensor-1", timeout=5.0)

    assert outcome.status == RunStatus.FAILED
    assert isinstance(outcome.error, StoreUnavailable)
    assert [e.event_type for e in store.all()] == [EventType.ALERT_TRIGGERED, EventType.NODE_HOP]
    assert h.channel.sent == []
    assert not h.engine.in_flight


def test_store_failure_on_trigger_finishes_immediately() -> None:
    store = FlakyStore(ok_appends=0)
    h = _harness(store=store)

    run = h.engine.trigger("sensor-1")

    assert run.done()
    outcome = run.wait(0)
    assert outcome is not None and outcome.failed
    assert isinstance(outcome.error, StoreUnavailable)
    assert h.engine.state().phase == AlertPhase.IDLE


def test_transition_order() -> None:
    h = _harness(contacts=[FARMER])
    h.engine.run("sensor-1", timeout=5.0)

    seen = [(s.phase, s.hop_index) for s in h.transitions]
    assert seen == [
        (AlertPhase.TRIGGERED, None),
        (AlertPhase.HOPPING, 0),
        (AlertPhase.HOPPING, 1),
        (AlertPhase.HOPPING, 2),
        (AlertPhase.HOPPING, 3),
        (AlertPhase.GATEWAY_RECEIVED, None),
        (AlertPhase.DISPATCHING, None),
        (AlertPhase.COMPLETED, None),
        (AlertPhase.IDLE, None),
    ]


def test_failing_transition_listener_does_not_break_run() -> None:
    def explode(state: EngineState, registry: ContactRegistry) -> None:
        raise RuntimeError("listener bug")

    h = _harness(contacts=[FARMER], on_transition=explode)
    assert h.engine.run("sensor-1", timeout=5.0).status == RunStatus.COMPLETED


def test_consent_snapshot_taken_at_gateway_not_at_trigger() -> None:
    def revoke_on_first_hop(state: EngineState, registry: ContactRegistry) -> None:
        if state.phase == AlertPhase.HOPPING and state.hop_index == 0:
            registry.set_consent(OFFICER.id, False)

    h = _harness(on_transition=revoke_on_first_hop)
    outcome = h.engine.run("sensor-1", timeout=5.0)

    assert outcome.contact_count == 1
    assert [p for p, _ in h.channel.sent] == [FARMER.phone]


def test_consent_changes_during_dispatch_are_not_rechecked() -> None:
    @dataclass
    class RevokingChannel(FakeChannel):
        registry: Optional[ContactRegistry] = None

        def send(self, contact: Contact, message: str) -> SendResult:
            if self.registry is not None:
                self.registry.set_consent(OFFICER.id, False)
            return super().send(contact, message)

    ch = RevokingChannel()
    h = _harness(channel=ch)
    ch.registry = h.contacts

    outcome = h.engine.run("sensor-1", timeout=5.0)

    assert outcome.dispatch.sent == 2
    assert [p for p, _ in ch.sent] == [FARMER.phone, OFFICER.phone]


def test_engines_are_independent() -> None:
    a = _harness(contacts=[], delay=0.05)
    b = _harness(contacts=[], delay=0.05)

    run_a = a.engine.trigger("sensor-1")
    run_b = b.engine.trigger("sensor-1")

    out_a = run_a.wait(timeout=5.0)
    out_b = run_b.wait(timeout=5.0)
    assert out_a is not None and out_a.status == RunStatus.COMPLETED
    assert out_b is not None and out_b.status == RunStatus.COMPLETED
    assert len(a.store) == len(b.store) == 5


def test_run_timeout_raises() -> None:
    h = _harness(contacts=[], delay=0.2)
    with pytest.raises(TimeoutError):
        h.engine.run("sensor-1", timeout=0.01)


def test_negative_delay_rejected() -> None:
    with pytest.raises(ValueError):
        _harness(delay=-1.0)


def test_injected_sleep_receives_hop_delay() -> None:
    feed = ChangeFeed()
    store = InMemoryEventStore(feed=feed)
    log = EventLog(store=store, feed=feed)
    sleeps: List[float] = []
    engine = AlertPropagationEngine(
        topology=default_topology(),
        log=log,
        contacts=ContactRegistry(),
        dispatcher=NotificationDispatcher(channel=FakeChannel(), log=log),
        hop_delay_s=0.8,
        sleep=sleeps.append,
    )

    engine.run("sensor-1", timeout=5.0)

    assert sleeps == [0.8, 0.8, 0.8, 0.8]
