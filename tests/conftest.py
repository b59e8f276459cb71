"""Shared pytest fixtures for the reconciliation tests."""

from datetime import datetime, timedelta

import pytest

from contact_store import SqliteContactStore
from memory_store import InMemoryContactStore


class TickingClock:
    """Returns a strictly increasing timestamp, one second apart, on every call."""

    def __init__(self, start=datetime(2023, 4, 1, 0, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteContactStore(str(tmp_path / "contacts.db"), timeout=5.0)
    store.init_schema()
    return store


def _find(parent, node):
    while parent[node] != node:
        parent[node] = parent[parent[node]]
        node = parent[node]
    return node


def _union(parent, a, b):
    parent[_find(parent, a)] = _find(parent, b)


@pytest.fixture
def check_invariants():
    """Assert the identity graph rules over a list of stored contacts.

    Every secondary links straight to a live primary, primaries carry no link,
    and each connected cluster (shared email, shared phone or linkedId) holds
    exactly one primary.
    """

    def check(contacts):
        live = {c.id: c for c in contacts if c.deletedAt is None}
        parent = {cid: cid for cid in live}
        first_by_email = {}
        first_by_phone = {}

        for contact in live.values():
            if contact.linkPrecedence == "secondary":
                assert contact.linkedId in live, f"contact {contact.id} links to missing {contact.linkedId}"
                assert live[contact.linkedId].linkPrecedence == "primary", (
                    f"contact {contact.id} links to secondary {contact.linkedId}"
                )
                _union(parent, contact.id, contact.linkedId)
            else:
                assert contact.linkedId is None, f"primary {contact.id} has linkedId"
            if contact.email is not None:
                _union(parent, contact.id, first_by_email.setdefault(contact.email, contact.id))
            if contact.phoneNumber is not None:
                _union(parent, contact.id, first_by_phone.setdefault(contact.phoneNumber, contact.id))

        primaries_per_cluster = {}
        for contact in live.values():
            root = _find(parent, contact.id)
            primaries_per_cluster.setdefault(root, 0)
            if contact.linkPrecedence == "primary":
                primaries_per_cluster[root] += 1
        assert all(count == 1 for count in primaries_per_cluster.values()), primaries_per_cluster

    return check
