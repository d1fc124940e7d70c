"""
In-memory document store used by the ledger.

Each collection behaves like a small document-store table: documents are
plain dicts keyed by a numeric ``id`` handed out by a per-collection
sequence, queries match on field equality and sort by id. Collections
holding counters (members, member packages) are versioned: ``save``
refuses a document whose ``version`` no longer matches the stored one.

Mutations that touch a member's counters or packages are serialized by
``MemberLocks``. Collections are shared across members, so each one also
guards its own dict: reads iterate a snapshot taken under the collection
lock.
"""

import copy
import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional, Protocol

from .config import Settings, get_settings
from .exceptions import ConcurrentUpdateError, ConflictError, NotFoundError


DEFAULT_PACKAGE_CATALOG = [
    {"name": "Grup8", "lesson_count": 8, "price": Decimal("3000")},
    {"name": "Grup12", "lesson_count": 12, "price": Decimal("4500")},
    {"name": "Bireysel8", "lesson_count": 8, "price": Decimal("5000")},
    {"name": "Bireysel12", "lesson_count": 12, "price": Decimal("7500")},
    {"name": "Düet8", "lesson_count": 8, "price": Decimal("4000")},
    {"name": "Düet12", "lesson_count": 12, "price": Decimal("6000")},
]


class Repository(Protocol):
    """What the ledger needs from a persistence engine."""

    def find_by_id(self, doc_id: int) -> Optional[dict]: ...

    def find_many(
        self,
        where: Optional[dict] = None,
        descending: bool = False,
        predicate: Optional[Callable[[dict], bool]] = None,
    ) -> list[dict]: ...

    def find_one(self, where: Optional[dict] = None, descending: bool = False) -> Optional[dict]: ...

    def count(self, where: Optional[dict] = None) -> int: ...

    def insert(self, doc: dict) -> dict: ...

    def save(self, doc: dict) -> dict: ...

    def delete(self, doc_id: int) -> bool: ...


class Collection:
    def __init__(self, name: str, versioned: bool = False):
        self.name = name
        self.versioned = versioned
        self.documents: dict[int, dict] = {}
        self._last_id = 0
        self._lock = threading.Lock()

    def find_by_id(self, doc_id: int) -> Optional[dict]:
        with self._lock:
            doc = self.documents.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def find_many(
        self,
        where: Optional[dict] = None,
        descending: bool = False,
        predicate: Optional[Callable[[dict], bool]] = None,
    ) -> list[dict]:
        matches = [
            copy.deepcopy(doc) for doc in self._snapshot()
            if _matches(doc, where) and (predicate is None or predicate(doc))
        ]
        matches.sort(key=lambda d: d["id"], reverse=descending)
        return matches

    def find_one(self, where: Optional[dict] = None, descending: bool = False) -> Optional[dict]:
        found = self.find_many(where, descending)
        return found[0] if found else None

    def count(self, where: Optional[dict] = None) -> int:
        return sum(1 for doc in self._snapshot() if _matches(doc, where))

    def _snapshot(self) -> list[dict]:
        # Stored documents are replaced on save, never mutated in place
        with self._lock:
            return list(self.documents.values())

    def insert(self, doc: dict) -> dict:
        with self._lock:
            doc = copy.deepcopy(doc)
            doc_id = doc.get("id")
            if doc_id is None:
                self._last_id += 1
                doc_id = self._last_id
                doc["id"] = doc_id
            elif doc_id in self.documents:
                raise ConflictError(f"{self.name} document {doc_id} already exists")
            else:
                self._last_id = max(self._last_id, doc_id)
            if self.versioned:
                doc.setdefault("version", 0)
            self.documents[doc_id] = doc
            return copy.deepcopy(doc)

    def save(self, doc: dict) -> dict:
        with self._lock:
            stored = self.documents.get(doc["id"])
            if stored is None:
                raise NotFoundError(f"{self.name} document {doc['id']} not found")
            doc = copy.deepcopy(doc)
            if self.versioned:
                if doc.get("version", 0) != stored.get("version", 0):
                    raise ConcurrentUpdateError(
                        f"{self.name} document {doc['id']} was modified concurrently "
                        f"(expected version {stored.get('version', 0)}, got {doc.get('version')})"
                    )
                doc["version"] = stored.get("version", 0) + 1
            self.documents[doc["id"]] = doc
            return copy.deepcopy(doc)

    def delete(self, doc_id: int) -> bool:
        with self._lock:
            return self.documents.pop(doc_id, None) is not None


def _matches(doc: dict, where: Optional[dict]) -> bool:
    if not where:
        return True
    return all(doc.get(key) == value for key, value in where.items())


class MemberLocks:
    """One re-entrant lock per member id."""

    def __init__(self):
        self._locks: dict[Any, threading.RLock] = {}
        self._guard = threading.Lock()

    def for_member(self, member_id: Any) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(member_id)
            if lock is None:
                lock = self._locks[member_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, member_id: Any) -> Iterator[None]:
        with self.for_member(member_id):
            yield


class InMemoryStorage:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.members: Repository = Collection("members", versioned=True)
        self.member_packages: Repository = Collection("member_packages", versioned=True)
        self.lesson_attendances: Repository = Collection("lesson_attendances")
        self.attendances: Repository = Collection("attendances")
        self.lessons: Repository = Collection("lessons")
        self.member_lessons: Repository = Collection("member_lessons")
        self.ledger_entries: Repository = Collection("ledger_entries")
        self.packages: dict[str, dict] = {}
        self.locks = MemberLocks()
        if self.settings.SEED_PACKAGE_CATALOG:
            self._seed_data()

    def _seed_data(self):
        for preset in DEFAULT_PACKAGE_CATALOG:
            self.upsert_package_definition(**preset)

    def upsert_package_definition(self, name: str, lesson_count: int, price: Decimal = Decimal("0")) -> dict:
        self.packages[name] = {"name": name, "lesson_count": lesson_count, "price": Decimal(str(price))}
        return dict(self.packages[name])

    def get_package_definition(self, name: str) -> Optional[dict]:
        definition = self.packages.get(name)
        return dict(definition) if definition else None
