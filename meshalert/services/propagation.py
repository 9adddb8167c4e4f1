"""
Alert propagation state machine.

This module drives one alert at a time from the origin sensor, through the
relay hops of the topology, to the gateway, and then hands the alert to the
notification dispatcher:

    IDLE -> TRIGGERED -> HOPPING(0..n) -> GATEWAY_RECEIVED -> DISPATCHING -> COMPLETED
                                  \\_____________ any structural failure _____________> FAILED

``COMPLETED`` and ``FAILED`` are terminal for the run and immediately return
the engine to ``IDLE``. Every step appends an event to the event log; events
already appended when a run fails are kept (the log is append-only).

Only one alert may be in flight per engine instance. A trigger received while
the engine is not idle is rejected with :class:`AlreadyInFlight`, never queued.
"""

from __future__ import annotations

import threading
import time
import traceback
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from meshalert.core.config.contact_registry import ContactRegistry
from meshalert.core.event_log import EventLog
from meshalert.core.topology import Route, Topology
from meshalert.domain.errors import AlreadyInFlight, ConfigurationError, MeshAlertError, StoreUnavailable
from meshalert.notification.payload import (
    alert_triggered_event,
    gateway_received_event,
    node_hop_event,
    render_alert_message,
)
from meshalert.services.dispatcher import DispatchResult, NotificationDispatcher

DEFAULT_HOP_DELAY_S = 0.8


class AlertPhase(str, Enum):
    """
    Phase of the propagation state machine.

    Members
    -------
    IDLE : str
        No alert in flight; triggers are accepted.
    TRIGGERED : str
        Alert created at the origin sensor.
    HOPPING : str
        Relaying; ``EngineState.hop_index`` is the hop being waited for.
    GATEWAY_RECEIVED : str
        Alert reached the gateway; contact snapshot taken.
    DISPATCHING : str
        Notifications are being sent.
    COMPLETED : str
        Run finished (regardless of per-recipient outcomes).
    FAILED : str
        Run aborted by a structural failure.
    """

    IDLE = "IDLE"
    TRIGGERED = "TRIGGERED"
    HOPPING = "HOPPING"
    GATEWAY_RECEIVED = "GATEWAY_RECEIVED"
    DISPATCHING = "DISPATCHING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


IN_FLIGHT_PHASES = frozenset(
    {
        AlertPhase.TRIGGERED,
        AlertPhase.HOPPING,
        AlertPhase.GATEWAY_RECEIVED,
        AlertPhase.DISPATCHING,
    }
)


@dataclass(frozen=True)
class EngineState:
    """
    Snapshot of the engine state.

    Parameters
    ----------
    phase
        Current phase.
    alert_id
        Alert in flight (None when idle).
    origin
        Origin sensor of the alert in flight.
    hop_index
        Index into the relay path while HOPPING.
    """

    phase: AlertPhase = AlertPhase.IDLE
    alert_id: Optional[str] = None
    origin: Optional[str] = None
    hop_index: Optional[int] = None

    @property
    def in_flight(self) -> bool:
        return self.phase in IN_FLIGHT_PHASES


class RunStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AlertOutcome:
    """
    Final outcome of one alert run.

    Parameters
    ----------
    alert_id
        Alert run identifier.
    route
        Relay route that was replayed.
    status
        COMPLETED or FAILED.
    dispatch
        Dispatcher result (empty if the run failed before or during dispatch,
        or if there were no recipients).
    contact_count
        Size of the consenting-contact snapshot (0 if not reached).
    no_recipients
        True when the run completed with an empty contact snapshot. This is
        not a failure.
    error
        Structural failure that ended the run, if any.
    """

    alert_id: str
    route: Route
    status: RunStatus
    dispatch: DispatchResult = field(default_factory=DispatchResult)
    contact_count: int = 0
    no_recipients: bool = False
    error: Optional[BaseException] = None

    @property
    def origin(self) -> str:
        return self.route.origin

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def raise_for_status(self) -> None:
        """
        Re-raise the structural failure that ended the run, if any.
        """
        if self.error is not None:
            raise self.error


class AlertRun:
    """
    Handle to an alert run started by :meth:`AlertPropagationEngine.trigger`.
    """

    def __init__(self, alert_id: str, route: Route):
        self.alert_id = alert_id
        self.route = route
        self._done = threading.Event()
        self._outcome: Optional[AlertOutcome] = None

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[AlertOutcome]:
        """
        Block until the run finishes.

        Returns
        -------
        AlertOutcome or None
            The outcome, or None if ``timeout`` elapsed first.
        """
        if not self._done.wait(timeout):
            return None
        return self._outcome

    def _finish(self, outcome: AlertOutcome) -> None:
        self._outcome = outcome
        self._done.set()


def new_alert_id() -> str:
    return f"alert-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class AlertPropagationEngine:
    """
    Drives alerts through the mesh, one at a time.

    Scheduling Model
    ----------------
    :meth:`trigger` validates the origin, claims the in-flight slot and
    appends ``alert_triggered`` on the caller's thread, then continues the
    run on a dedicated daemon thread. Hops are strictly sequential: each one
    waits ``hop_delay_s`` before its event is appended, and the gateway
    receipt waits once more after the last hop.

    Concurrency Model
    -----------------
    The in-flight flag is state of this instance, guarded by a lock. Several
    engines (e.g. under test) never interfere with each other.

    Parameters
    ----------
    topology
        Mesh topology used to resolve relay routes.
    log
        Event log all events are appended to.
    contacts
        Contact registry; consenting contacts are read once per alert, at
        gateway receipt.
    dispatcher
        Notification dispatcher invoked once the gateway is reached.
    hop_delay_s
        Simulated inter-hop delay in seconds.
    sleep
        Delay function (injectable for tests).
    on_transition
        Optional listener called with every new :class:`EngineState`.
    """

    def __init__(
        self,
        topology: Topology,
        log: EventLog,
        contacts: ContactRegistry,
        dispatcher: NotificationDispatcher,
        hop_delay_s: float = DEFAULT_HOP_DELAY_S,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: Optional[Callable[[EngineState], None]] = None,
    ):
        if hop_delay_s < 0:
            raise ValueError("hop_delay_s must be >= 0")
        self._topology = topology
        self._log = log
        self._contacts = contacts
        self._dispatcher = dispatcher
        self._hop_delay_s = float(hop_delay_s)
        self._sleep = sleep
        self._on_transition = on_transition

        self._lock = threading.Lock()
        self._state = EngineState()

    @property
    def hop_delay_s(self) -> float:
        return self._hop_delay_s

    def state(self) -> EngineState:
        with self._lock:
            return self._state

    @property
    def in_flight(self) -> bool:
        return self.state().in_flight

    # --- Public API ---
    def trigger(self, origin: str) -> AlertRun:
        """
        Start an alert at sensor ``origin``.

        Parameters
        ----------
        origin
            Id of the sensor node that detected the elephant.

        Returns
        -------
        AlertRun
            Handle to wait for the outcome. If the trigger event itself could
            not be stored, the returned run is already finished as FAILED.

        Raises
        ------
        UnknownNode
            If ``origin`` is not a known sensor node (or cannot reach a gateway).
        AlreadyInFlight
            If another alert is currently propagating.
        """
        route = self._topology.route(origin)

        with self._lock:
            if self._state.phase != AlertPhase.IDLE:
                raise AlreadyInFlight(self._state.alert_id)
            alert_id = new_alert_id()
            self._state = EngineState(AlertPhase.TRIGGERED, alert_id=alert_id, origin=origin)
            entered = self._state
        self._notify(entered)

        run = AlertRun(alert_id, route)
        print(f"[APP][PROPAGATION] {alert_id} triggered at {origin}")

        try:
            self._log.append(alert_triggered_event(alert_id, origin))
        except StoreUnavailable as e:
            self._fail(run, e)
            return run

        t = threading.Thread(target=self._propagate, args=(run,), name=f"alert-{alert_id}", daemon=True)
        t.start()
        return run

    def run(self, origin: str, timeout: Optional[float] = None) -> AlertOutcome:
        """
        Trigger an alert and block until it completes or fails.

        Raises
        ------
        UnknownNode, AlreadyInFlight
            As :meth:`trigger`.
        TimeoutError
            If ``timeout`` elapses before the run finishes.
        """
        run = self.trigger(origin)
        outcome = run.wait(timeout)
        if outcome is None:
            raise TimeoutError(f"alert {run.alert_id} did not finish within {timeout}s")
        return outcome

    # --- Run loop ---
    def _propagate(self, run: AlertRun) -> None:
        route = run.route
        alert_id = run.alert_id
        contact_count = 0

        try:
            for i, hop in enumerate(route.hops):
                self._transition(AlertPhase.HOPPING, hop_index=i)
                self._sleep(self._hop_delay_s)
                self._log.append(node_hop_event(alert_id, route.origin, hop))

            self._transition(AlertPhase.HOPPING, hop_index=len(route.hops))
            self._sleep(self._hop_delay_s)

            recipients = self._contacts.list(consent=True)
            contact_count = len(recipients)
            self._transition(AlertPhase.GATEWAY_RECEIVED)
            self._log.append(gateway_received_event(alert_id, route.gateway_id, contact_count))

            self._transition(AlertPhase.DISPATCHING)
            if not recipients:
                print(f"[APP][PROPAGATION] {alert_id} reached {route.gateway_id}: no consenting contacts")
                result = DispatchResult()
            else:
                message = render_alert_message(route.origin, alert_id)
                result = self._dispatcher.dispatch(recipients, message, alert_id)

        except (StoreUnavailable, ConfigurationError) as e:
            self._fail(run, e, contact_count)
            return
        except Exception as e:
            print(f"[APP][PROPAGATION] {alert_id} unexpected error: {e!r}")
            traceback.print_exc()
            self._fail(run, e, contact_count)
            return

        outcome = AlertOutcome(
            alert_id=alert_id,
            route=route,
            status=RunStatus.COMPLETED,
            dispatch=result,
            contact_count=contact_count,
            no_recipients=contact_count == 0,
        )
        print(
            f"[APP][PROPAGATION] {alert_id} completed: "
            f"{result.sent} sent, {result.failed} failed of {result.total}"
        )
        self._end(run, AlertPhase.COMPLETED, outcome)

    def _fail(self, run: AlertRun, error: BaseException, contact_count: int = 0) -> None:
        tag = type(error).__name__ if isinstance(error, MeshAlertError) else "error"
        print(f"[APP][PROPAGATION] {run.alert_id} failed ({tag}): {error}")
        outcome = AlertOutcome(
            alert_id=run.alert_id,
            route=run.route,
            status=RunStatus.FAILED,
            contact_count=contact_count,
            error=error,
        )
        self._end(run, AlertPhase.FAILED, outcome)

    def _end(self, run: AlertRun, terminal: AlertPhase, outcome: AlertOutcome) -> None:
        # Back to IDLE before waking waiters so they can trigger again at once.
        self._transition(terminal)
        with self._lock:
            self._state = EngineState()
            idle = self._state
        self._notify(idle)
        run._finish(outcome)

    def _transition(self, phase: AlertPhase, hop_index: Optional[int] = None) -> None:
        with self._lock:
            self._state = EngineState(
                phase=phase,
                alert_id=self._state.alert_id,
                origin=self._state.origin,
                hop_index=hop_index,
            )
            entered = self._state
        self._notify(entered)

    def _notify(self, state: EngineState) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(state)
        except Exception as e:
            print(f"[APP][PROPAGATION] transition listener failed: {e!r}")
