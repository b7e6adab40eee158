# tests/conftest.py
import os
import sys
import threading

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

# make the flat modules importable when pytest runs from the repo root
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import database  # noqa: E402

PASSWORD = "Prayerful1"


class SerializedDatabase:
    """A mongomock database whose every call runs under one lock.

    mongomock is not thread-safe, while MongoDB applies each single
    operation atomically. Serializing calls reproduces that, and still lets
    a read-modify-write spread over two calls race the way it would in
    production.
    """

    def __init__(self, db):
        self._db = db
        self._lock = threading.RLock()

    def __getitem__(self, name):
        return _SerializedCollection(self._db[name], self._lock)

    def __getattr__(self, name):
        return getattr(self._db, name)


class _SerializedCollection:
    def __init__(self, collection, lock):
        self._collection = collection
        self._lock = lock

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)

        return call


@pytest.fixture()
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["prayer_board_test"]
    database.ensure_indexes(mock_db)
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(database, "backend", "mongomock")
    yield mock_db


@pytest.fixture()
def threaded_db(db, monkeypatch):
    serialized = SerializedDatabase(db)
    monkeypatch.setattr(database, "db", serialized)
    yield db


@pytest.fixture()
def client(db):
    from main import app

    with TestClient(app) as c:
        yield c


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, name, email=None, password=PASSWORD):
    email = email or f"{name.lower()}@prayerboard.org"
    response = client.post("/auth/register", json={"displayName": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    data = response.json()
    data["headers"] = auth(data["token"])
    return data


@pytest.fixture()
def member(client):
    return register(client, "Grace")


@pytest.fixture()
def other_member(client):
    return register(client, "Silas")


@pytest.fixture()
def admin(client, db):
    data = register(client, "Elder")
    db["user"].update_one({"_id": ObjectId(data["user"]["id"])}, {"$set": {"role": "admin"}})
    data["user"]["role"] = "admin"
    return data


def create_request(client, headers=None, body="Please pray for my exam tomorrow.", **extra):
    response = client.post("/requests", json={"body": body, **extra}, headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()["request"]
