from __future__ import annotations

from meshalert.domain.events import (
    AlertTriggeredMetadata,
    EventType,
    GatewayReceivedMetadata,
    NewEvent,
    NodeHopMetadata,
    SmsFailedMetadata,
    SmsSentMetadata,
)
from meshalert.domain.models import Contact

ALERT_MESSAGE_TEMPLATE = (
    "\U0001F418 ELEPHANT ALERT: Elephant detected near {origin}. "
    "Please take necessary precautions. Alert ID: {alert_id}"
)


def render_alert_message(origin: str, alert_id: str) -> str:
    """
    Render the SMS body sent to every recipient of an alert.

    Parameters
    ----------
    origin
        Sensor node the alert originated at.
    alert_id
        Alert run identifier.

    Returns
    -------
    str
        Rendered message.
    """
    return ALERT_MESSAGE_TEMPLATE.format(origin=origin, alert_id=alert_id)


def alert_triggered_event(alert_id: str, origin: str) -> NewEvent:
    return NewEvent(
        event_type=EventType.ALERT_TRIGGERED,
        node_id=origin,
        message=f"Elephant detected near {origin}! Alert initiated.",
        metadata=AlertTriggeredMetadata(alert_id=alert_id, trigger_node=origin),
    )


def node_hop_event(alert_id: str, origin: str, hop: str) -> NewEvent:
    return NewEvent(
        event_type=EventType.NODE_HOP,
        node_id=hop,
        message=f"Alert relayed through {hop}",
        metadata=NodeHopMetadata(alert_id=alert_id, from_node=origin, to_node=hop),
    )


def gateway_received_event(alert_id: str, gateway_id: str, contact_count: int) -> NewEvent:
    return NewEvent(
        event_type=EventType.GATEWAY_RECEIVED,
        node_id=gateway_id,
        message="Gateway received alert! Sending SMS to contacts...",
        metadata=GatewayReceivedMetadata(alert_id=alert_id, contact_count=contact_count),
    )


def sms_sent_event(alert_id: str, contact: Contact, sid: str | None = None) -> NewEvent:
    """
    Build the ``sms_sent`` event recorded after a successful send.

    SMS events carry no node id; the recipient is identified in the metadata.
    """
    return NewEvent(
        event_type=EventType.SMS_SENT,
        message=f"SMS sent to {contact.name} ({contact.role.value})",
        metadata=SmsSentMetadata(
            alert_id=alert_id,
            contact_id=contact.id,
            contact_name=contact.name,
            phone=contact.phone,
            role=contact.role.value,
            sms_sid=sid,
        ),
    )


def sms_failed_event(alert_id: str, contact: Contact, error: str) -> NewEvent:
    return NewEvent(
        event_type=EventType.SMS_FAILED,
        message=f"SMS failed for {contact.name} ({contact.role.value}): {error}",
        metadata=SmsFailedMetadata(
            alert_id=alert_id,
            contact_id=contact.id,
            contact_name=contact.name,
            phone=contact.phone,
            role=contact.role.value,
            error=error,
        ),
    )
