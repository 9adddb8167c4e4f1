from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from meshalert.core.event_log import EventLog
from meshalert.domain.errors import ConfigurationError, RecipientSendFailure
from meshalert.domain.models import Contact
from meshalert.notification.base import NotificationChannel, SendResult
from meshalert.notification.payload import sms_failed_event, sms_sent_event


@dataclass(frozen=True)
class RecipientOutcome:
    """
    Result of notifying one recipient.

    Parameters
    ----------
    contact_id
        Recipient id.
    contact_name
        Recipient display name.
    phone
        Number the message was addressed to.
    success
        Whether the channel accepted the message.
    reason
        Failure reason, if any.
    sid
        Provider message id, if any.
    """

    contact_id: str
    contact_name: str
    phone: str
    success: bool
    reason: Optional[str] = None
    sid: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "contact_id": self.contact_id,
            "contact": self.contact_name,
            "phone": self.phone,
            "success": self.success,
        }
        if self.success:
            out["sid"] = self.sid
        else:
            out["error"] = self.reason
        return out


@dataclass(frozen=True)
class DispatchResult:
    """
    Aggregate outcome of one dispatch batch.

    ``sent + failed == total`` always holds; ``per_recipient`` preserves the
    order recipients were given in.
    """

    per_recipient: Tuple[RecipientOutcome, ...] = ()

    @property
    def total(self) -> int:
        return len(self.per_recipient)

    @property
    def sent(self) -> int:
        return sum(1 for r in self.per_recipient if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.per_recipient if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        """
        Response body: ``{success, results, total, sent, failed}``.
        """
        return {
            "success": True,
            "results": [r.to_dict() for r in self.per_recipient],
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
        }


@dataclass
class NotificationDispatcher:
    """
    Fan-out of one alert message to a snapshot of consenting contacts.

    Algorithm
    ---------
    - Empty recipient list: return an empty result; the channel is not touched.
    - Check channel configuration once. A :class:`ConfigurationError` aborts
      the whole batch before any send; nothing is recorded.
    - For each recipient, in order: exactly one ``channel.send`` call.
      Success appends ``sms_sent``; a failed result or a raised transport
      error appends ``sms_failed`` and processing continues.

    Isolation Guarantee
    -------------------
    One recipient's failure never aborts the batch. There are no retries, no
    backoff and no reordering. Sends are serialized.

    Structural Failures
    -------------------
    A :class:`~meshalert.domain.errors.StoreUnavailable` raised while recording
    an outcome propagates to the caller.

    Parameters
    ----------
    channel
        External notification channel.
    log
        Event log that per-recipient outcomes are appended to.
    """

    channel: NotificationChannel
    log: EventLog

    def dispatch(self, recipients: Sequence[Contact], message: str, alert_id: str) -> DispatchResult:
        """
        Send ``message`` to every recipient and record each outcome.

        Parameters
        ----------
        recipients
            Consenting-contact snapshot, in dispatch order.
        message
            Rendered alert body.
        alert_id
            Alert run identifier recorded on every event.

        Returns
        -------
        DispatchResult
            Aggregate counts plus per-recipient outcomes.

        Raises
        ------
        ConfigurationError
            If the channel is not configured.
        StoreUnavailable
            If an outcome cannot be recorded.
        """
        if not recipients:
            return DispatchResult()

        self._ensure_configured()

        print(f"[APP][SMS] Sending SMS to {len(recipients)} contacts for alert {alert_id}")

        outcomes: List[RecipientOutcome] = []
        for contact in recipients:
            result = self._send_one(contact, message)

            if result.success:
                self.log.append(sms_sent_event(alert_id, contact, sid=result.sid))
            else:
                failure = RecipientSendFailure(contact.id, result.reason or "unknown error")
                print(f"[APP][SMS] {failure}")
                self.log.append(sms_failed_event(alert_id, contact, failure.reason))

            outcomes.append(
                RecipientOutcome(
                    contact_id=contact.id,
                    contact_name=contact.name,
                    phone=contact.phone,
                    success=result.success,
                    reason=None if result.success else (result.reason or "unknown error"),
                    sid=result.sid if result.success else None,
                )
            )

        out = DispatchResult(per_recipient=tuple(outcomes))
        print(f"[APP][SMS] Batch complete: {out.sent}/{out.total} successful")
        return out

    def _ensure_configured(self) -> None:
        try:
            self.channel.ensure_configured()
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"notification channel unusable: {e!r}") from e

    def _send_one(self, contact: Contact, message: str) -> SendResult:
        try:
            return self.channel.send(contact, message)
        except Exception as e:
            return SendResult.failed(str(e) or repr(e))
