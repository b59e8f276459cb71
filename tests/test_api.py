"""API tests. The store dependency is overridden, so no lifespan or database file is needed."""

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

import main
from errors import StoreError
from main import app, get_store
from reconcile import PrimaryNotFound


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"message": "Bitespeed API is up"}


def test_identify_fresh_contact(client):
    r = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})
    assert r.status_code == 200
    assert r.json() == {
        "contact": {
            "primaryContactId": 1,
            "emails": ["lorraine@hillvalley.edu"],
            "phoneNumbers": ["123456"],
            "secondaryContactIds": [],
        }
    }


def test_identify_links_new_information(client):
    client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})
    r = client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"})

    assert r.status_code == 200
    assert r.json()["contact"] == {
        "primaryContactId": 1,
        "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
        "phoneNumbers": ["123456"],
        "secondaryContactIds": [2],
    }


def test_identify_accepts_numeric_phone(client, store):
    r = client.post("/identify", json={"email": None, "phoneNumber": 123456})

    assert r.status_code == 200
    assert r.json()["contact"]["phoneNumbers"] == ["123456"]
    assert store.all_contacts()[0].phoneNumber == "123456"


@pytest.mark.parametrize(
    "body",
    [{}, {"email": None, "phoneNumber": None}, {"email": "", "phoneNumber": ""}],
)
def test_identify_requires_an_identifier(client, store, body):
    r = client.post("/identify", json=body)

    assert r.status_code == 400
    assert r.json() == {"error": "At least one of email or phoneNumber is required"}
    assert store.all_contacts() == []


def test_identify_rejects_malformed_body(client):
    r = client.post("/identify", json={"email": ["a@example.com"]})
    assert r.status_code == 422


class BrokenStore:
    @contextmanager
    def transaction(self):
        raise StoreError("database is locked")
        yield


def test_store_failure_is_internal_error():
    app.dependency_overrides[get_store] = lambda: BrokenStore()
    try:
        r = TestClient(app).post("/identify", json={"email": "a@example.com"})
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}


def test_missing_primary_is_internal_error(client, monkeypatch):
    monkeypatch.setattr(main, "reconcile_identity", lambda store, email, phone: PrimaryNotFound(contacts=[]))

    r = client.post("/identify", json={"email": "a@example.com"})

    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}


def test_unexpected_failure_is_internal_error(client, monkeypatch):
    def explode(store, email, phone):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(main, "reconcile_identity", explode)

    r = client.post("/identify", json={"phoneNumber": "1"})

    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}


def test_identify_end_to_end_on_sqlite(sqlite_store):
    app.dependency_overrides[get_store] = lambda: sqlite_store
    try:
        client = TestClient(app)
        client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
        client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})
        r = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "717171"})
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 200
    assert r.json()["contact"] == {
        "primaryContactId": 1,
        "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
        "phoneNumbers": ["919191", "717171"],
        "secondaryContactIds": [2],
    }
