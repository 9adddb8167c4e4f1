"""
Mesh event domain models.

A `MeshEvent` records *what happened* during an alert run: the trigger at the
origin sensor, every relay hop, the gateway receipt and the outcome of every
SMS send. Events are immutable once appended and are ordered by creation time.

Metadata is modelled as one tagged variant per event type so the fields each
type requires are checked statically, while still serializing to the plain
key/value mapping stored on the wire:

==================  =====================================================
event_type          metadata
==================  =====================================================
alert_triggered     alert_id, trigger_node
node_hop            alert_id, from, to
gateway_received    alert_id, contact_count
sms_sent            alert_id, contact_id, contact_name, phone, role, sms_sid?
sms_failed          alert_id, contact_id, contact_name, phone, role, error
==================  =====================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


class EventType(str, Enum):
    """
    Kind of mesh event.

    Members
    -------
    ALERT_TRIGGERED : str
        A sensor detected an elephant and started an alert.
    NODE_HOP : str
        The alert was relayed through a node.
    GATEWAY_RECEIVED : str
        The alert reached the gateway.
    SMS_SENT : str
        A recipient was notified.
    SMS_FAILED : str
        Notifying a recipient failed.
    """

    ALERT_TRIGGERED = "alert_triggered"
    NODE_HOP = "node_hop"
    GATEWAY_RECEIVED = "gateway_received"
    SMS_SENT = "sms_sent"
    SMS_FAILED = "sms_failed"


@dataclass(frozen=True)
class AlertTriggeredMetadata:
    alert_id: str
    trigger_node: str

    def to_dict(self) -> Dict[str, Any]:
        return {"alert_id": self.alert_id, "trigger_node": self.trigger_node}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AlertTriggeredMetadata":
        return cls(alert_id=str(raw["alert_id"]), trigger_node=str(raw["trigger_node"]))


@dataclass(frozen=True)
class NodeHopMetadata:
    """
    Relay hop metadata. Serialized with the wire keys ``from`` and ``to``.
    """

    alert_id: str
    from_node: str
    to_node: str

    def to_dict(self) -> Dict[str, Any]:
        return {"alert_id": self.alert_id, "from": self.from_node, "to": self.to_node}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "NodeHopMetadata":
        return cls(alert_id=str(raw["alert_id"]), from_node=str(raw["from"]), to_node=str(raw["to"]))


@dataclass(frozen=True)
class GatewayReceivedMetadata:
    alert_id: str
    contact_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"alert_id": self.alert_id, "contact_count": self.contact_count}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "GatewayReceivedMetadata":
        return cls(alert_id=str(raw["alert_id"]), contact_count=int(raw["contact_count"]))


@dataclass(frozen=True)
class SmsSentMetadata:
    alert_id: str
    contact_id: str
    contact_name: str
    phone: str
    role: str
    sms_sid: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "alert_id": self.alert_id,
            "contact_id": self.contact_id,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "role": self.role,
        }
        if self.sms_sid is not None:
            out["sms_sid"] = self.sms_sid
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SmsSentMetadata":
        sid = raw.get("sms_sid")
        return cls(
            alert_id=str(raw["alert_id"]),
            contact_id=str(raw["contact_id"]),
            contact_name=str(raw["contact_name"]),
            phone=str(raw["phone"]),
            role=str(raw["role"]),
            sms_sid=None if sid is None else str(sid),
        )


@dataclass(frozen=True)
class SmsFailedMetadata:
    alert_id: str
    contact_id: str
    contact_name: str
    phone: str
    role: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "contact_id": self.contact_id,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "role": self.role,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SmsFailedMetadata":
        return cls(
            alert_id=str(raw["alert_id"]),
            contact_id=str(raw["contact_id"]),
            contact_name=str(raw["contact_name"]),
            phone=str(raw["phone"]),
            role=str(raw["role"]),
            error=str(raw["error"]),
        )


EventMetadata = Union[
    AlertTriggeredMetadata,
    NodeHopMetadata,
    GatewayReceivedMetadata,
    SmsSentMetadata,
    SmsFailedMetadata,
]

_METADATA_BY_TYPE = {
    EventType.ALERT_TRIGGERED: AlertTriggeredMetadata,
    EventType.NODE_HOP: NodeHopMetadata,
    EventType.GATEWAY_RECEIVED: GatewayReceivedMetadata,
    EventType.SMS_SENT: SmsSentMetadata,
    EventType.SMS_FAILED: SmsFailedMetadata,
}


def metadata_from_dict(event_type: EventType, raw: Optional[Mapping[str, Any]]) -> EventMetadata:
    """
    Decode a wire metadata mapping into the variant required by ``event_type``.

    Parameters
    ----------
    event_type
        Type of the event the metadata belongs to.
    raw
        Mapping as stored on the wire.

    Returns
    -------
    EventMetadata
        Typed metadata variant.

    Raises
    ------
    ValueError
        If the mapping is missing or lacks a field required for ``event_type``.
    """
    if raw is None:
        raise ValueError(f"{event_type.value} event requires metadata")
    try:
        return _METADATA_BY_TYPE[event_type].from_dict(raw)
    except KeyError as e:
        raise ValueError(f"{event_type.value} metadata missing field {e.args[0]!r}") from e


def as_utc(ts: datetime) -> datetime:
    """
    Return ``ts`` as a timezone-aware UTC datetime.

    Naive values are taken to be local time.
    """
    return ts.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NewEvent:
    """
    Event as produced by the engine, before the store assigns id and time.

    Parameters
    ----------
    event_type
        Kind of event.
    message
        Human-readable description (used by event views/logs).
    metadata
        Typed metadata; must be the variant matching ``event_type``.
    node_id
        Mesh node the event happened at. SMS events carry no node.
    """

    event_type: EventType
    message: str
    metadata: EventMetadata
    node_id: Optional[str] = None

    def __post_init__(self) -> None:
        expected = _METADATA_BY_TYPE[self.event_type]
        if not isinstance(self.metadata, expected):
            raise TypeError(
                f"{self.event_type.value} requires {expected.__name__}, "
                f"got {type(self.metadata).__name__}"
            )


@dataclass(frozen=True)
class MeshEvent:
    """
    Event as stored and observed.

    Identity is by ``id`` only: two events with equal content but different
    ids are different events.

    Parameters
    ----------
    id
        Store-assigned unique identifier.
    event_type
        Kind of event.
    node_id
        Mesh node the event happened at, if any.
    message
        Human-readable description.
    metadata
        Typed metadata variant for ``event_type``.
    created_at
        Store-assigned creation timestamp (timezone-aware UTC).
    """

    id: str
    event_type: EventType
    node_id: Optional[str]
    message: str
    metadata: EventMetadata
    created_at: datetime

    @classmethod
    def from_new(cls, ev: NewEvent, event_id: str, created_at: datetime) -> "MeshEvent":
        return cls(
            id=event_id,
            event_type=ev.event_type,
            node_id=ev.node_id,
            message=ev.message,
            metadata=ev.metadata,
            created_at=created_at,
        )

    @property
    def alert_id(self) -> str:
        return self.metadata.alert_id

    def to_record(self) -> Dict[str, Any]:
        """
        Wire record: ``{id, event_type, node_id, message, metadata, created_at}``.
        """
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "node_id": self.node_id,
            "message": self.message,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at.isoformat(),
        }
