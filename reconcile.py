"""Identity reconciliation.

identify() runs the pipeline for one submitted (email, phone) pair inside a
single store unit of work:

    find_related_contacts -> add_new_information -> consolidate_primaries -> format_identity

The stages share a ContactCluster, the in-memory view of every contact
connected to the submission. Each store write is mirrored into the cluster
as it happens, so the formatter never needs a second read.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Union

from contact_store import ContactRepository, ContactStore
from db_models import PRIMARY, SECONDARY, Contact, ContactResponse
from errors import ValidationError

logger = logging.getLogger(__name__)


class ContactCluster:
    """Contacts by id, plus primary id -> ids of the secondaries linked to it."""

    def __init__(self, contacts: Iterable[Contact] = ()) -> None:
        self.contacts: Dict[int, Contact] = {}
        self.links: Dict[int, Set[int]] = {}
        for contact in contacts:
            self.add(contact)

    def __len__(self) -> int:
        return len(self.contacts)

    def add(self, contact: Contact) -> None:
        self.contacts[contact.id] = contact
        if contact.is_primary:
            self.links.setdefault(contact.id, set())
        elif contact.linkedId is not None:
            self.links.setdefault(contact.linkedId, set()).add(contact.id)

    def ordered(self) -> List[Contact]:
        return sorted(self.contacts.values(), key=lambda c: c.seniority)

    def primaries(self) -> List[Contact]:
        return [c for c in self.ordered() if c.is_primary]

    def emails(self) -> Set[str]:
        return {c.email for c in self.contacts.values() if c.email is not None}

    def phone_numbers(self) -> Set[str]:
        return {c.phoneNumber for c in self.contacts.values() if c.phoneNumber is not None}

    def demote(self, demoted_id: int, survivor_id: int, updated_at: datetime) -> None:
        """Hang a former primary and all of its secondaries directly off survivor_id."""
        demoted = self.contacts[demoted_id]
        demoted.linkedId = survivor_id
        demoted.linkPrecedence = SECONDARY
        demoted.updatedAt = updated_at

        moved = self.links.pop(demoted_id, set())
        for contact_id in moved:
            contact = self.contacts[contact_id]
            contact.linkedId = survivor_id
            contact.updatedAt = updated_at

        survivors = self.links.setdefault(survivor_id, set())
        survivors.update(moved)
        survivors.add(demoted_id)

    def snapshot(self) -> List[dict]:
        return [c.model_dump(mode="json") for c in self.ordered()]


@dataclass(frozen=True)
class PrimaryNotFound:
    """The cluster has no primary record, so no identity view can be built."""

    contacts: List[dict]


IdentityResult = Union[ContactResponse, PrimaryNotFound]


def _require_identifier(email: Optional[str], phone: Optional[str]) -> None:
    if email is None and phone is None:
        raise ValidationError()


def find_related_contacts(repo: ContactRepository, email: Optional[str], phone: Optional[str]) -> ContactCluster:
    """Every contact sharing the email or phone, plus every member of their clusters."""
    _require_identifier(email, phone)

    direct = repo.find_by_email_or_phone(email, phone)
    if not direct:
        return ContactCluster()

    primary_ids = {c.id if c.is_primary else c.linkedId for c in direct}
    primary_ids.discard(None)

    related = repo.find_by_ids_or_linked_ids(primary_ids)
    logger.debug(
        "Found %d direct and %d related contacts across primaries %s",
        len(direct), len(related), sorted(primary_ids),
    )
    return ContactCluster(related)


def add_new_information(
    repo: ContactRepository,
    cluster: ContactCluster,
    email: Optional[str],
    phone: Optional[str],
) -> Optional[Contact]:
    """Create a record when the submission tells us something the cluster doesn't know.

    An empty cluster gets a fresh primary. A submission carrying an unseen
    email or phone gets a secondary linked to the oldest primary. Otherwise
    nothing is written and None is returned.
    """
    if not cluster:
        contact = repo.create(email=email, phone_number=phone, linked_id=None, link_precedence=PRIMARY)
        cluster.add(contact)
        logger.info("Created primary contact %s", contact.id)
        return contact

    primaries = cluster.primaries()
    primary = primaries[0] if primaries else cluster.ordered()[0]

    has_new_email = email is not None and email not in cluster.emails()
    has_new_phone = phone is not None and phone not in cluster.phone_numbers()
    if not (has_new_email or has_new_phone):
        return None

    contact = repo.create(email=email, phone_number=phone, linked_id=primary.id, link_precedence=SECONDARY)
    cluster.add(contact)
    logger.info("Created secondary contact %s linked to %s", contact.id, primary.id)
    return contact


def consolidate_primaries(
    repo: ContactRepository,
    cluster: ContactCluster,
    now: Optional[datetime] = None,
) -> List[int]:
    """Merge colliding clusters so only the oldest primary remains.

    Returns the ids of the demoted primaries, oldest first.
    """
    primaries = cluster.primaries()
    if len(primaries) <= 1:
        return []

    survivor, demoted = primaries[0], primaries[1:]
    now = now or datetime.now()
    for contact in demoted:
        repo.update_one(contact.id, linked_id=survivor.id, link_precedence=SECONDARY, updated_at=now)
        repointed = repo.update_many_by_linked_id(contact.id, linked_id=survivor.id, updated_at=now)
        cluster.demote(contact.id, survivor.id, now)
        logger.info(
            "Merged primary %s into %s, re-pointed %d secondaries",
            contact.id, survivor.id, repointed,
        )
    return [c.id for c in demoted]


def _primary_first(primary_value: Optional[str], values: Iterable[Optional[str]]) -> List[str]:
    ordered = [primary_value] if primary_value is not None else []
    for value in values:
        if value is not None and value not in ordered:
            ordered.append(value)
    return ordered


def format_identity(cluster: ContactCluster) -> IdentityResult:
    contacts = cluster.ordered()
    primary = next((c for c in contacts if c.is_primary), None)
    if primary is None:
        return PrimaryNotFound(contacts=cluster.snapshot())

    return ContactResponse(
        primaryContactId=primary.id,
        emails=_primary_first(primary.email, (c.email for c in contacts)),
        phoneNumbers=_primary_first(primary.phoneNumber, (c.phoneNumber for c in contacts)),
        secondaryContactIds=[c.id for c in contacts if not c.is_primary],
    )


def identify(store: ContactStore, email: Optional[str], phone: Optional[str]) -> IdentityResult:
    """Reconcile one submission against the store and return the caller's identity view.

    Raises ValidationError when neither identifier is given and StoreError
    when the store fails; in the latter case nothing from this call persists.
    """
    _require_identifier(email, phone)

    with store.transaction() as repo:
        cluster = find_related_contacts(repo, email, phone)
        add_new_information(repo, cluster, email, phone)
        consolidate_primaries(repo, cluster)
        return format_identity(cluster)
