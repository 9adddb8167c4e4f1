from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from meshalert.domain.models import Contact


@dataclass(frozen=True)
class SendResult:
    """
    Outcome of one outbound notification.

    Parameters
    ----------
    success
        Whether the channel accepted the message.
    reason
        Failure reason as reported by the channel (implementation-specific).
    sid
        Optional provider message identifier on success.

    Notes
    -----
    The class is frozen (immutable) so results remain stable once created,
    supporting safe logging and auditability.
    """

    success: bool
    reason: Optional[str] = None
    sid: Optional[str] = None

    @classmethod
    def ok(cls, sid: Optional[str] = None) -> "SendResult":
        return cls(success=True, sid=sid)

    @classmethod
    def failed(cls, reason: str) -> "SendResult":
        return cls(success=False, reason=reason)


class NotificationChannel(Protocol):
    """
    Protocol interface for the external notification channel (SMS or similar).

    Any channel implementation can be used if it provides these methods. This
    enables dependency inversion and makes dispatch easy to test with fakes.

    Methods
    -------
    ensure_configured()
        Raise ConfigurationError if credentials/configuration are absent or
        invalid. Called once per dispatch, before any send.
    send(contact, message)
        Deliver one message to one recipient. Return a failed SendResult for
        provider-reported failures; transport errors may be raised.
    """

    def ensure_configured(self) -> None:
        ...

    def send(self, contact: Contact, message: str) -> SendResult:
        ...
