"""
Remote sync adapter backed by MongoDB.

Every subscription pushes a full snapshot of its collection to the callback:
once when it starts, then again after every change the server reports on the
collection's change stream. Writes go straight to the collection and are not
retried; a failure raises pymongo.errors.PyMongoError to the caller.
"""
import os
import threading
from typing import Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReplaceOne
from pymongo.database import Database
from pymongo.errors import PyMongoError

from app_logger import get_logger

log = get_logger("sync")

SYNC_MAX_AWAIT_MS = int(os.getenv("SYNC_MAX_AWAIT_MS", 500))

Snapshot = List[dict]
SnapshotCallback = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]


def to_record(doc: dict) -> dict:
    """Turn a stored document into a record dict; the document key becomes `id`."""
    d = dict(doc)
    _id = d.pop("_id", None)
    if _id is not None and "id" not in d:
        d["id"] = str(_id)
    return d


class Subscription(threading.Thread):
    def __init__(self, collection, on_snapshot: SnapshotCallback, sort: Optional[Tuple[str, int]] = None):
        super().__init__(name=f"sync-{collection.name}", daemon=True)
        self.collection = collection
        self.on_snapshot = on_snapshot
        self.sort = sort
        self._stopped = threading.Event()

    def snapshot(self) -> Snapshot:
        cursor = self.collection.find({})
        if self.sort:
            cursor = cursor.sort(*self.sort)
        return [to_record(d) for d in cursor]

    def emit(self):
        docs = self.snapshot()
        try:
            self.on_snapshot(docs)
        except Exception:
            log.exception("Snapshot handler for %s failed", self.collection.name)

    def run(self):
        try:
            stream = self.collection.watch(max_await_time_ms=SYNC_MAX_AWAIT_MS)
        except PyMongoError:
            log.exception("No change stream for %s, loading it once", self.collection.name)
            stream = None
        try:
            if stream is None:
                self.emit()
                return
            # The stream is open before the first read, so no write falls between them
            with stream:
                self.emit()
                while not self._stopped.is_set() and stream.alive:
                    change = stream.try_next()
                    if change is None:
                        continue
                    self.emit()
        except PyMongoError:
            log.exception("Subscription to %s stopped", self.collection.name)

    def close(self):
        self._stopped.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout=SYNC_MAX_AWAIT_MS / 1000 * 4)
        log.info("Unsubscribed from %s", self.collection.name)


class MongoStore:
    """Durable store: live subscriptions plus document writes keyed by record id."""

    def __init__(self, db: Database):
        self.db = db

    def subscribe(self, name: str, on_snapshot: SnapshotCallback, order_by: Optional[str] = None) -> Unsubscribe:
        sort = (order_by, DESCENDING) if order_by else None
        sub = Subscription(self.db[name], on_snapshot, sort)
        sub.start()
        log.info("Subscribed to %s", name)
        return sub.close

    def add(self, name: str, doc: dict) -> str:
        doc_id = str(ObjectId())
        self.db[name].insert_one({**doc, "_id": doc_id})
        return doc_id

    def upsert(self, name: str, doc_id: str, doc: dict) -> None:
        self.db[name].replace_one({"_id": doc_id}, {**doc, "_id": doc_id}, upsert=True)

    def upsert_many(self, name: str, docs: Dict[str, dict]) -> None:
        if not docs:
            return
        ops = [ReplaceOne({"_id": k}, {**v, "_id": k}, upsert=True) for k, v in docs.items()]
        self.db[name].bulk_write(ops, ordered=False)

    def delete(self, name: str, doc_id: str) -> None:
        self.db[name].delete_one({"_id": doc_id})

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()
