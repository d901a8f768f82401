# tests/conftest.py
"""
Shared fixtures.

FakeStore is an in-memory durable store with the same surface as
sync.MongoStore. It delivers a fresh snapshot to every subscriber right after
each write, the way a live change stream would, so cloud-mode flows can be
checked without a database.
"""
from __future__ import annotations

import itertools
from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import OperationFailure

from local_cache import LocalCache
from sync import to_record
from tracker import Tracker


class FakeStore:
    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self.listeners: Dict[str, List[tuple]] = {}
        self.fail = False
        self.writes: List[tuple] = []
        self._ids = itertools.count(1)

    def _check(self):
        if self.fail:
            raise OperationFailure("remote store unavailable")

    def snapshot(self, name: str, order_by: Optional[str] = None) -> List[dict]:
        docs = [to_record({**d, "_id": k}) for k, d in self.collections.get(name, {}).items()]
        if order_by:
            docs.sort(key=lambda d: d[order_by], reverse=True)
        return docs

    def _emit(self, name: str):
        for callback, order_by in list(self.listeners.get(name, [])):
            callback(self.snapshot(name, order_by))

    def subscribe(self, name: str, on_snapshot: Callable, order_by: Optional[str] = None):
        entry = (on_snapshot, order_by)
        self.listeners.setdefault(name, []).append(entry)
        on_snapshot(self.snapshot(name, order_by))
        return lambda: self.listeners[name].remove(entry)

    def add(self, name: str, doc: dict) -> str:
        self._check()
        doc_id = f"remote-{next(self._ids)}"
        self.collections.setdefault(name, {})[doc_id] = dict(doc)
        self.writes.append(("add", name, doc_id))
        self._emit(name)
        return doc_id

    def upsert(self, name: str, doc_id: str, doc: dict) -> None:
        self._check()
        self.collections.setdefault(name, {})[doc_id] = dict(doc)
        self.writes.append(("upsert", name, doc_id))
        self._emit(name)

    def upsert_many(self, name: str, docs: Dict[str, dict]) -> None:
        self._check()
        for doc_id, doc in docs.items():
            self.collections.setdefault(name, {})[doc_id] = dict(doc)
            self.writes.append(("upsert", name, doc_id))
        self._emit(name)

    def delete(self, name: str, doc_id: str) -> None:
        self._check()
        self.collections.get(name, {}).pop(doc_id, None)
        self.writes.append(("delete", name, doc_id))
        self._emit(name)

    def collection_names(self) -> List[str]:
        return sorted(self.collections)


@pytest.fixture
def store_dir(tmp_path):
    return str(tmp_path / "store")


@pytest.fixture
def cache(store_dir):
    return LocalCache(store_dir)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def local_tracker(cache):
    tracker = Tracker(cache)
    tracker.login("teacher@x.com", False)
    return tracker


@pytest.fixture
def cloud_tracker(cache, store):
    tracker = Tracker(cache, store)
    tracker.login("teacher@x.com", False)
    tracker.start_sync()
    yield tracker
    tracker.stop_sync()


def make_client(tracker: Tracker):
    from main import app, get_tracker

    app.dependency_overrides[get_tracker] = lambda: tracker
    return TestClient(app)


@pytest.fixture
def client(cache):
    from main import app

    tracker = Tracker(cache)
    c = make_client(tracker)
    c.tracker = tracker
    yield c
    app.dependency_overrides.clear()


@pytest.fixture
def cloud_client(cache, store):
    from main import app

    tracker = Tracker(cache, store)
    tracker.start_sync()
    c = make_client(tracker)
    c.tracker = tracker
    c.store = store
    yield c
    tracker.stop_sync()
    app.dependency_overrides.clear()


def login(client, identifier="teacher@x.com", passcode=None) -> dict:
    body = {"identifier": identifier}
    if passcode is not None:
        body["adminPasscode"] = passcode
    r = client.post("/auth/login", json=body)
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
