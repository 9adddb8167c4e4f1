from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from meshalert.domain.models import Contact


@dataclass
class ContactRegistry:
    """
    Registry of notification recipients.

    This class maintains an in-memory mapping from contact id to
    class: 'Contact'. It is typically populated at startup from the config
    file and may be edited at runtime by glue code (create/update/delete).

    The propagation engine only calls :meth:`list` with ``consent=True``, once
    per alert, and works on that snapshot for the rest of the run.

    Notes
    -----
    - The registry performs simple replacement on load: if a contact with the
      same id already exists, it is overwritten.
    - Listing preserves insertion order, which is the dispatch order.

    Attributes
    ----------
    _contacts
        Internal mapping of contact id to Contact.
    """

    _contacts: Dict[str, Contact] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def load(self, contacts: Iterable[Contact]) -> None:
        """
        Load or update contacts.

        Parameters
        ----------
        contacts
            Iterable of Contact objects indexed by id. Existing entries with the
            same id are replaced in place (their position is kept).
        """
        with self._lock:
            for c in contacts:
                self._contacts[c.id] = c

    def get(self, contact_id: str) -> Optional[Contact]:
        with self._lock:
            return self._contacts.get(contact_id)

    def set_consent(self, contact_id: str, consent: bool) -> Contact:
        """
        Change a contact's consent flag.

        Raises
        ------
        KeyError
            If the contact is not registered.
        """
        with self._lock:
            updated = replace(self._contacts[contact_id], consent=bool(consent))
            self._contacts[contact_id] = updated
            return updated

    def remove(self, contact_id: str) -> bool:
        with self._lock:
            return self._contacts.pop(contact_id, None) is not None

    def list(self, consent: Optional[bool] = None) -> List[Contact]:
        """
        Return registered contacts, optionally filtered by consent.

        Parameters
        ----------
        consent
            If given, only contacts whose consent flag equals this value.

        Returns
        -------
        list of Contact
            A snapshot copy; later registry edits do not affect it.
        """
        with self._lock:
            items = list(self._contacts.values())
        if consent is None:
            return items
        return [c for c in items if c.consent == consent]
