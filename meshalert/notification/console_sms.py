from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import FrozenSet

from meshalert.domain.models import Contact
from meshalert.notification.base import SendResult


@dataclass
class ConsoleSmsChannel:
    """
    Development channel that prints messages instead of sending them.

    Selected with ``sms.provider: console`` in config.yaml. Needs no
    credentials. Phone numbers listed in ``fail_numbers`` report a failure so
    the isolation path can be exercised end to end without a provider.
    """

    fail_numbers: FrozenSet[str] = field(default_factory=frozenset)

    def ensure_configured(self) -> None:
        return None

    def send(self, contact: Contact, message: str) -> SendResult:
        if contact.phone in self.fail_numbers:
            print(f"[APP][SMS][CONSOLE] {contact.phone} rejected")
            return SendResult.failed("simulated delivery failure")

        print(f"[APP][SMS][CONSOLE] -> {contact.name} ({contact.phone}): {message}")
        return SendResult.ok(sid=f"SIM-{uuid.uuid4().hex[:12]}")
