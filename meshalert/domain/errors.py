"""
Error taxonomy for alert propagation and notification dispatch.

Structural failures (store, configuration) escalate to the caller of the
failing operation and terminate the current alert run. Per-recipient send
failures are recorded and counted but never escalate.
"""

from __future__ import annotations

from typing import Optional


class MeshAlertError(Exception):
    """Base class for all engine errors."""


class AlreadyInFlight(MeshAlertError):
    """
    A trigger was rejected because another alert is still propagating.

    Recoverable: the caller may trigger again once the current run finishes.
    """

    def __init__(self, alert_id: Optional[str] = None):
        self.alert_id = alert_id
        msg = "An alert is already in flight"
        if alert_id:
            msg = f"{msg}: {alert_id}"
        super().__init__(msg)


class UnknownNode(MeshAlertError):
    """
    A trigger referenced a node that does not exist or is not a sensor.
    """

    def __init__(self, node_id: str, reason: str = "unknown node"):
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"{reason}: {node_id!r}")


class StoreUnavailable(MeshAlertError):
    """
    The event store rejected an append.

    Events already appended before the failure are retained.
    """


class ConfigurationError(MeshAlertError):
    """
    The notification channel is missing credentials or is misconfigured.

    Raised once, before any recipient is contacted.
    """


class RecipientSendFailure(MeshAlertError):
    """
    A single recipient could not be notified.

    Only used to describe the failure in the per-recipient record; it is never
    raised out of a dispatch.
    """

    def __init__(self, contact_id: str, reason: str):
        self.contact_id = contact_id
        self.reason = reason
        super().__init__(f"send to {contact_id!r} failed: {reason}")
