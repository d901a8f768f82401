"""
Tracker state.

Holds the five collections for one session and is the only place they change.
Mutation handlers write through the remote store when one is configured
(cloud mode) and update memory directly otherwise (local mode). Every state
change, in either mode, is mirrored to the local cache.

Remote snapshots replace a collection wholesale. An empty snapshot is ignored
for students, fitness records and the duty roster but applied for discipline
records and restrictions.
"""
import threading
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol

from bson import ObjectId
from pydantic import TypeAdapter, ValidationError

from app_logger import get_logger
from defaults import default_students, initial_duty_roster
from local_cache import LocalCache
from schemas import (
    DisciplineRecord,
    DutyAssignment,
    FitnessRecord,
    FullRestore,
    NewDisciplineRecord,
    Record,
    Restriction,
    Student,
)

log = get_logger("state")

USER_KEY = "shraddha-discipline-tracker-user"
ADMIN_KEY = "shraddha-discipline-tracker-is-admin"


class DurableStore(Protocol):
    def subscribe(self, name: str, on_snapshot: Callable[[List[dict]], None],
                  order_by: Optional[str] = None) -> Callable[[], None]: ...

    def add(self, name: str, doc: dict) -> str: ...

    def upsert(self, name: str, doc_id: str, doc: dict) -> None: ...

    def upsert_many(self, name: str, docs: Dict[str, dict]) -> None: ...

    def delete(self, name: str, doc_id: str) -> None: ...


class Collection(NamedTuple):
    attr: str
    remote: str
    key: str
    model: type
    default: Callable[[], list]
    keep_on_empty: bool
    order_by: Optional[str] = None


COLLECTIONS = [
    Collection("students", "students", "shraddha-student-roster", Student, default_students, True),
    Collection("discipline_records", "discipline_records", "shraddha-discipline-records",
               DisciplineRecord, list, False, order_by="date"),
    Collection("fitness_records", "fitness_records", "shraddha-fitness-records", FitnessRecord, list, True),
    Collection("restrictions", "restrictions", "shraddha-restrictions", Restriction, list, False),
    Collection("duty_roster", "duty_roster", "shraddha-duty-roster", DutyAssignment, initial_duty_roster, True),
]
BY_REMOTE = {c.remote: c for c in COLLECTIONS}


class NotSignedIn(Exception):
    pass


class Session:
    def __init__(self, user: Optional[str] = None, is_admin: bool = False, cloud_active: bool = False):
        self.user = user
        self.is_admin = is_admin
        self.cloud_active = cloud_active


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class Tracker:
    students: List[Student]
    discipline_records: List[DisciplineRecord]
    fitness_records: List[FitnessRecord]
    restrictions: List[Restriction]
    duty_roster: List[DutyAssignment]

    def __init__(self, cache: LocalCache, store: Optional[DurableStore] = None):
        self.cache = cache
        self.store = store
        self._lock = threading.RLock()
        self._unsubscribers: List[Callable[[], None]] = []

        user = cache.load(USER_KEY)
        if not isinstance(user, str) or not user:
            user = None
        self.session = Session(user, cache.load(ADMIN_KEY) == "true", self.cloud_active)

        for c in COLLECTIONS:
            setattr(self, c.attr, self._load(c))

    @property
    def cloud_active(self) -> bool:
        return self.store is not None

    # ----------------------- Local cache -----------------------
    def _load(self, c: Collection) -> list:
        raw = self.cache.load(c.key)
        if raw is None:
            return c.default()
        try:
            return TypeAdapter(List[c.model]).validate_python(raw)
        except ValidationError as e:
            log.warning("Cached %s did not validate, using defaults: %s", c.attr, e.error_count())
            return c.default()

    def _persist(self) -> None:
        for c in COLLECTIONS:
            self.cache.save(c.key, [r.to_doc() for r in getattr(self, c.attr)])

    def _replace(self, attr: str, items: list) -> None:
        with self._lock:
            setattr(self, attr, items)
            self._persist()

    # ----------------------- Remote sync -----------------------
    def start_sync(self) -> None:
        if self.store is None or self._unsubscribers:
            return
        for c in COLLECTIONS:
            unsubscribe = self.store.subscribe(c.remote, partial(self.apply_snapshot, c.remote), order_by=c.order_by)
            self._unsubscribers.append(unsubscribe)

    def stop_sync(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def apply_snapshot(self, name: str, docs: List[dict]) -> None:
        c = BY_REMOTE[name]
        items = []
        for doc in docs:
            try:
                items.append(c.model.model_validate(doc))
            except ValidationError:
                log.warning("Skipping malformed %s document %s", name, doc.get("id"))
        if not items and c.keep_on_empty:
            log.debug("Ignoring empty %s snapshot", name)
            return
        self._replace(c.attr, items)
        log.debug("Applied %s snapshot (%d records)", name, len(items))

    # ----------------------- Session -----------------------
    def login(self, identifier: str, is_admin: bool) -> Session:
        if not identifier or not identifier.strip():
            raise ValueError("identifier must not be empty")
        self.session.user = identifier
        self.session.is_admin = is_admin
        self.cache.save(USER_KEY, identifier)
        self.cache.save(ADMIN_KEY, "true" if is_admin else "false")
        log.info("Signed in %s (admin=%s)", identifier, is_admin)
        return self.session

    def logout(self) -> None:
        self.session.user = None
        self.session.is_admin = False
        self.cache.remove(USER_KEY)
        self.cache.remove(ADMIN_KEY)

    # ----------------------- Mutation handlers -----------------------
    def add_discipline_record(self, entry: NewDisciplineRecord) -> DisciplineRecord:
        if not self.session.user:
            raise NotSignedIn("Sign in before adding records")
        data = entry.model_dump(mode="json")
        data.update(date=today(), entered_by=self.session.user)
        if self.store is not None:
            # The local list picks this up from the next snapshot
            doc = DisciplineRecord(id="", **data).model_dump(
                mode="json", by_alias=True, exclude={"id"}, exclude_none=True)
            record_id = self.store.add("discipline_records", doc)
            return DisciplineRecord(id=record_id, **data)
        record = DisciplineRecord(id=f"dr-{ObjectId()}", is_new=True, **data)
        with self._lock:
            self._replace("discipline_records", [record] + self.discipline_records)
        return record

    def save_restriction(self, restriction: Restriction) -> None:
        if self.store is not None:
            self.store.upsert("restrictions", restriction.id, restriction.to_doc())
            return
        with self._lock:
            kept = [r for r in self.restrictions if r.id != restriction.id]
            self._replace("restrictions", kept + [restriction])

    def delete_restriction(self, restriction_id: str) -> None:
        if self.store is not None:
            self.store.delete("restrictions", restriction_id)
            return
        with self._lock:
            self._replace("restrictions", [r for r in self.restrictions if r.id != restriction_id])

    def import_students(self, students: List[Student]) -> None:
        self._replace("students", list(students))
        if self.store is not None:
            self.store.upsert_many("students", {s.id: s.to_doc() for s in students})

    def clear_students(self, confirmed: bool) -> bool:
        if not confirmed:
            return False
        self._replace("students", [])
        return True

    def update_duty_roster(self, roster: List[DutyAssignment]) -> None:
        # Assignments dropped from the list stay in the remote collection
        self._replace("duty_roster", list(roster))
        if self.store is not None:
            for assignment in roster:
                self.store.upsert("duty_roster", assignment.id, assignment.to_doc())

    def update_fitness_records(self, records: List[FitnessRecord]) -> None:
        self._replace("fitness_records", list(records))

    def restore(self, data: FullRestore) -> List[str]:
        """Replace every collection present in data; the remote store is not touched."""
        restored = []
        with self._lock:
            for c in COLLECTIONS:
                items = getattr(data, c.attr)
                if items is not None:
                    setattr(self, c.attr, list(items))
                    restored.append(c.attr)
            self._persist()
        log.info("Restored %s from backup", ", ".join(restored) or "nothing")
        return restored

    def backup(self) -> FullRestore:
        with self._lock:
            return FullRestore(**{c.attr: list(getattr(self, c.attr)) for c in COLLECTIONS})

    def snapshot(self, attr: str) -> List[Record]:
        with self._lock:
            return list(getattr(self, attr))
