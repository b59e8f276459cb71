"""In-memory implementation of ContactStore (no DB)."""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List

from db_models import Contact


class InMemoryContactStore:
    """Stores contacts in a dict keyed by id. Ids are assigned from 1 upwards.

    Reads hand out copies, so callers never share state with the store.
    transaction() holds a re-entrant lock and restores the pre-transaction
    contents if the block raises.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._contacts: Dict[int, Contact] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = {cid: c.model_copy() for cid, c in self._contacts.items()}
            next_id = self._next_id
            try:
                yield self
            except BaseException:
                self._contacts = snapshot
                self._next_id = next_id
                raise

    def _live(self, predicate) -> List[Contact]:
        matches = [c for c in self._contacts.values() if c.deletedAt is None and predicate(c)]
        matches.sort(key=lambda c: c.seniority)
        return [c.model_copy() for c in matches]

    def find_by_email_or_phone(self, email, phone):
        if email is None and phone is None:
            return []
        return self._live(
            lambda c: (email is not None and c.email == email)
            or (phone is not None and c.phoneNumber == phone)
        )

    def find_by_ids_or_linked_ids(self, ids):
        ids = set(ids)
        return self._live(lambda c: c.id in ids or c.linkedId in ids)

    def create(self, *, email, phone_number, linked_id, link_precedence):
        now = self._clock()
        contact = Contact(
            id=self._next_id,
            email=email,
            phoneNumber=phone_number,
            linkedId=linked_id,
            linkPrecedence=link_precedence,
            createdAt=now,
            updatedAt=now,
        )
        self.insert(contact)
        return contact.model_copy()

    def update_one(self, contact_id, *, linked_id, link_precedence, updated_at):
        contact = self._contacts.get(contact_id)
        if contact is None or contact.deletedAt is not None:
            return
        contact.linkedId = linked_id
        contact.linkPrecedence = link_precedence
        contact.updatedAt = updated_at

    def update_many_by_linked_id(self, old_linked_id, *, linked_id, updated_at):
        changed = 0
        for contact in self._contacts.values():
            if contact.linkedId == old_linked_id and contact.deletedAt is None:
                contact.linkedId = linked_id
                contact.updatedAt = updated_at
                changed += 1
        return changed

    def insert(self, contact: Contact) -> None:
        """Store a fully specified contact, id included. Used to seed fixtures."""
        self._contacts[contact.id] = contact.model_copy()
        self._next_id = max(self._next_id, contact.id + 1)

    def all_contacts(self) -> List[Contact]:
        """Every stored contact, soft-deleted ones included, oldest first."""
        return sorted((c.model_copy() for c in self._contacts.values()), key=lambda c: c.seniority)
