"""
Document store used by the earnings ledger.

The store holds schemaless documents grouped in collections and offers
point reads, filtered queries, writes, atomic numeric increments and
optimistic multi-document transactions:

- every document carries a version that is bumped on each write
- a transaction remembers the version of every document (and of every
  collection it queried) at read time
- commit fails with TransactionConflict if any of them moved, and
  run_transaction() re-runs the whole unit of work on a fresh snapshot

Field paths may be dotted ("daily_free_games_played.2024-01-31") to address
keys inside map fields.
"""

import copy
import threading
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar
from uuid import uuid4

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5


class StoreError(Exception):
    pass


class TransactionConflict(StoreError):
    pass


class DocumentNotFound(StoreError):
    pass


class DocumentExists(StoreError):
    pass


class Increment:
    """Write sentinel: add `amount` to the current numeric value (missing counts as zero)."""

    __slots__ = ("amount",)

    def __init__(self, amount):
        self.amount = amount

    def __repr__(self) -> str:
        return f"Increment({self.amount!r})"


def _get_path(doc: dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child

    if isinstance(value, Increment):
        current = target.get(parts[-1]) or 0
        if isinstance(value.amount, Decimal) and not isinstance(current, Decimal):
            current = Decimal(current)
        target[parts[-1]] = current + value.amount
    else:
        target[parts[-1]] = copy.deepcopy(value)


def _matches(doc: dict, filters: Optional[dict]) -> bool:
    if not filters:
        return True
    return all(_get_path(doc, key) == expected for key, expected in filters.items())


def _sort_key(value: Any):
    # None sorts first so that descending order puts it last
    return (value is not None, value)


class Transaction:
    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self._reads: dict[tuple[str, str], int] = {}
        self._query_reads: dict[str, int] = {}
        self._writes: list[tuple[str, str, str, Optional[dict]]] = []
        self._committed = False

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc, version = self._store._read(collection, doc_id)
        self._reads.setdefault((collection, doc_id), version)
        return doc

    def get_all(self, *refs: tuple[str, str]) -> list[Optional[dict]]:
        return [self.get(collection, doc_id) for collection, doc_id in refs]

    def query(self, collection: str, filters: Optional[dict] = None, **options) -> list[dict]:
        docs, version = self._store._query(collection, filters, **options)
        self._query_reads.setdefault(collection, version)
        return docs

    def create(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or uuid4().hex
        self._writes.append(("create", collection, doc_id, data))
        return doc_id

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        self._writes.append(("update", collection, doc_id, fields))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(("delete", collection, doc_id, None))

    def commit(self) -> None:
        if self._committed:
            raise StoreError("Transaction already committed")
        self._store._commit(self._reads, self._query_reads, self._writes)
        self._committed = True


class InMemoryDocumentStore:
    """Thread-safe in-process document store with optimistic transactions."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = defaultdict(dict)
        self._versions: dict[tuple[str, str], int] = defaultdict(int)
        self._collection_versions: dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()

    # ==================== READS ====================

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        return self._read(collection, doc_id)[0]

    def query(
        self,
        collection: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        return self._query(collection, filters, order_by=order_by, descending=descending, limit=limit)[0]

    # ==================== SINGLE WRITES ====================

    def create(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or uuid4().hex
        self._commit({}, {}, [("create", collection, doc_id, data)])
        return doc_id

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        self._commit({}, {}, [("update", collection, doc_id, fields)])

    def delete(self, collection: str, doc_id: str) -> None:
        self._commit({}, {}, [("delete", collection, doc_id, None)])

    # ==================== TRANSACTIONS ====================

    def transaction(self) -> Transaction:
        return Transaction(self)

    def run_transaction(self, func: Callable[[Transaction], T], max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> T:
        """
        Run `func` inside a transaction and commit it, retrying on conflicts.

        `func` must do all of its reads through the transaction it receives and
        must be safe to call again; domain errors it raises abort without retry.
        """
        for attempt in range(1, max_attempts + 1):
            txn = self.transaction()
            result = func(txn)
            try:
                txn.commit()
                return result
            except TransactionConflict:
                logger.debug("Transaction conflict on attempt %d/%d", attempt, max_attempts)
                if attempt == max_attempts:
                    logger.warning("Giving up transaction after %d conflicting attempts", max_attempts)
                    raise

    # ==================== INTERNALS ====================

    def _read(self, collection: str, doc_id: str) -> tuple[Optional[dict], int]:
        with self._lock:
            doc = self._collections[collection].get(doc_id)
            return copy.deepcopy(doc), self._versions[(collection, doc_id)]

    def _query(
        self,
        collection: str,
        filters: Optional[dict],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> tuple[list[dict], int]:
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collections[collection].values() if _matches(d, filters)]
            version = self._collection_versions[collection]
        if order_by:
            docs.sort(key=lambda d: _sort_key(_get_path(d, order_by)), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs, version

    def _commit(self, reads: dict, query_reads: dict, writes: list) -> None:
        with self._lock:
            for key, version in reads.items():
                if self._versions[key] != version:
                    raise TransactionConflict(f"Document {key[0]}/{key[1]} changed during transaction")
            for collection, version in query_reads.items():
                if self._collection_versions[collection] != version:
                    raise TransactionConflict(f"Collection {collection} changed during transaction")

            # Validate every write before applying any of them
            staged: dict[tuple[str, str], Optional[dict]] = {}
            for op, collection, doc_id, data in writes:
                key = (collection, doc_id)
                current = staged[key] if key in staged else self._collections[collection].get(doc_id)
                if op == "create":
                    if current is not None:
                        raise DocumentExists(f"Document {collection}/{doc_id} already exists")
                    staged[key] = {**copy.deepcopy(data), "id": doc_id}
                elif op == "update":
                    if current is None:
                        raise DocumentNotFound(f"Document {collection}/{doc_id} not found")
                    updated = copy.deepcopy(current)
                    for path, value in data.items():
                        _set_path(updated, path, value)
                    staged[key] = updated
                elif op == "delete":
                    staged[key] = None
                else:
                    raise StoreError(f"Unknown write operation {op!r}")

            for (collection, doc_id), doc in staged.items():
                if doc is None:
                    self._collections[collection].pop(doc_id, None)
                else:
                    self._collections[collection][doc_id] = doc
                self._versions[(collection, doc_id)] += 1
                self._collection_versions[collection] += 1
