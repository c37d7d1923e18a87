"""
Unit Tests for the document store
"""

import pytest
from decimal import Decimal

from earnings.store import (
    DocumentExists,
    DocumentNotFound,
    Increment,
    InMemoryDocumentStore,
    TransactionConflict,
)


class TestWrites:
    def test_create_adds_id(self):
        store = InMemoryDocumentStore()

        doc_id = store.create("users", {"name": "Ada"})

        assert store.get("users", doc_id) == {"name": "Ada", "id": doc_id}

    def test_create_existing_fails(self):
        store = InMemoryDocumentStore()
        store.create("users", {}, doc_id="ada")

        with pytest.raises(DocumentExists):
            store.create("users", {}, doc_id="ada")

    def test_update_missing_fails(self):
        store = InMemoryDocumentStore()

        with pytest.raises(DocumentNotFound):
            store.update("users", "ghost", {"name": "x"})

    def test_increments_and_dotted_paths(self):
        store = InMemoryDocumentStore()
        store.create("users", {"balance": Decimal("10"), "played": {}}, doc_id="ada")

        store.update("users", "ada", {"balance": Increment(Decimal("2.50")), "played.2024-03-15": Increment(1)})
        store.update("users", "ada", {"played.2024-03-15": Increment(1)})

        doc = store.get("users", "ada")
        assert doc["balance"] == Decimal("12.50")
        assert doc["played"] == {"2024-03-15": 2}

    def test_reads_are_copies(self):
        store = InMemoryDocumentStore()
        store.create("users", {"tags": ["a"]}, doc_id="ada")

        store.get("users", "ada")["tags"].append("b")

        assert store.get("users", "ada")["tags"] == ["a"]


class TestQueries:
    def test_filter_order_and_limit(self):
        store = InMemoryDocumentStore()
        for i, status in enumerate(["pending", "approved", "pending"]):
            store.create("requests", {"status": status, "n": i}, doc_id=f"r{i}")

        docs = store.query("requests", {"status": "pending"}, order_by="n", descending=True, limit=1)

        assert [d["id"] for d in docs] == ["r2"]


class TestTransactions:
    def test_failed_unit_of_work_writes_nothing(self):
        store = InMemoryDocumentStore()
        store.create("users", {"balance": 100}, doc_id="ada")

        def work(txn):
            txn.update("users", "ada", {"balance": Increment(-50)})
            raise ValueError("abort")

        with pytest.raises(ValueError):
            store.run_transaction(work)
        assert store.get("users", "ada")["balance"] == 100

    def test_commit_is_all_or_nothing(self):
        store = InMemoryDocumentStore()
        store.create("users", {"balance": 100}, doc_id="ada")

        txn = store.transaction()
        txn.update("users", "ada", {"balance": Increment(-50)})
        txn.update("users", "ghost", {"balance": Increment(50)})

        with pytest.raises(DocumentNotFound):
            txn.commit()
        assert store.get("users", "ada")["balance"] == 100

    def test_conflicting_write_is_retried(self):
        store = InMemoryDocumentStore()
        store.create("users", {"balance": 100}, doc_id="ada")
        attempts = []

        def work(txn):
            doc = txn.get("users", "ada")
            if not attempts:
                # Another writer lands between our read and commit
                store.update("users", "ada", {"balance": Increment(10)})
            attempts.append(doc["balance"])
            txn.update("users", "ada", {"balance": doc["balance"] - 30})

        store.run_transaction(work)

        assert attempts == [100, 110]
        assert store.get("users", "ada")["balance"] == 80

    def test_query_conflict_detected(self):
        store = InMemoryDocumentStore()
        txn = store.transaction()
        txn.query("requests", {"status": "pending"})
        store.create("requests", {"status": "pending"})
        txn.create("requests", {"status": "pending"})

        with pytest.raises(TransactionConflict):
            txn.commit()

    def test_gives_up_after_max_attempts(self):
        store = InMemoryDocumentStore()
        store.create("users", {"balance": 0}, doc_id="ada")

        def work(txn):
            txn.get("users", "ada")
            store.update("users", "ada", {"balance": Increment(1)})
            txn.update("users", "ada", {"balance": 0})

        with pytest.raises(TransactionConflict):
            store.run_transaction(work, max_attempts=3)
        assert store.get("users", "ada")["balance"] == 3
