from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from meshalert.domain.errors import ConfigurationError
from meshalert.domain.models import Contact
from meshalert.notification.base import SendResult


@dataclass(frozen=True)
class TwilioConfig:
    """
    Configuration for Twilio SMS delivery.

    Parameters
    ----------
    account_sid
        Twilio account SID (also the basic-auth user).
    auth_token
        Twilio auth token (basic-auth password).
    from_number
        Sender phone number registered with Twilio.
    base_url
        API root. Overridable for test doubles.
    timeout_s
        HTTP request timeout in seconds.
    verify_tls
        Whether to verify TLS certificates.
    """

    account_sid: Optional[str]
    auth_token: Optional[str]
    from_number: Optional[str]
    base_url: str = "https://api.twilio.com"
    timeout_s: float = 10.0
    verify_tls: bool = True


class TwilioSmsChannel:
    """
    Notification channel that sends SMS through the Twilio Messages API.

    One HTTP POST is issued per recipient; there is no batching and no retry.

    Notes
    -----
    - This class performs side effects (network I/O).
    - Provider-reported failures (non-2xx) are returned as failed results
      carrying the provider's ``message``.
    - Transport errors (``requests.RequestException``) are raised to the caller.
    """

    def __init__(self, cfg: TwilioConfig):
        """
        Initialize the Twilio channel.

        Parameters
        ----------
        cfg
            Twilio configuration.
        """
        self._cfg = cfg

    @property
    def messages_url(self) -> str:
        return f"{self._cfg.base_url.rstrip('/')}/2010-04-01/Accounts/{self._cfg.account_sid}/Messages.json"

    def ensure_configured(self) -> None:
        """
        Raises
        ------
        ConfigurationError
            If the account SID, auth token or sender number is missing.
        """
        if not (self._cfg.account_sid and self._cfg.auth_token and self._cfg.from_number):
            raise ConfigurationError("Twilio credentials not configured")

    def send(self, contact: Contact, message: str) -> SendResult:
        """
        Send one SMS to ``contact.phone``.

        Parameters
        ----------
        contact
            Recipient.
        message
            Rendered alert body.

        Returns
        -------
        SendResult
            Success with the provider's message SID, or failure with its reason.

        Raises
        ------
        requests.RequestException
            For network-related errors.
        """
        r = requests.post(
            self.messages_url,
            data={
                "To": contact.phone,
                "From": self._cfg.from_number,
                "Body": message,
            },
            auth=(self._cfg.account_sid, self._cfg.auth_token),
            timeout=self._cfg.timeout_s,
            verify=self._cfg.verify_tls,
        )

        body = _json_body(r)
        if r.ok:
            sid = body.get("sid")
            return SendResult.ok(sid=None if sid is None else str(sid))

        reason = body.get("message") or f"HTTP {r.status_code}"
        return SendResult.failed(str(reason))


def _json_body(r: requests.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
