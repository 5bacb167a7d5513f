"""Unit tests for the in-memory document store and atomic batches."""

import pytest

from src.core.document_store import ORDERS, PRODUCTS, BatchOperation, InMemoryDocumentStore
from src.core.errors import ConflictError, NotFoundError, PersistenceError


class TestInMemoryDocumentStore:
    """Tests for basic reads and writes."""

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_version(self) -> None:
        """Test that created documents get an id and version 1."""
        store = InMemoryDocumentStore()

        doc_id = await store.create(ORDERS, {"status": "pending-payment"})
        doc = await store.get(ORDERS, doc_id)

        assert doc == {"id": doc_id, "status": "pending-payment", "version": 1}

    @pytest.mark.asyncio
    async def test_get_returns_copy(self) -> None:
        """Test that mutating a read does not change the stored document."""
        store = InMemoryDocumentStore()
        store.seed(PRODUCTS, {"id": "p1", "variants": [{"color": "RED", "sizes": []}]})

        doc = await store.get(PRODUCTS, "p1")
        doc["variants"].clear()

        assert (await store.get(PRODUCTS, "p1"))["variants"] != []

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self) -> None:
        """Test that a missing document reads as None."""
        assert await InMemoryDocumentStore().get(ORDERS, "nope") is None

    @pytest.mark.asyncio
    async def test_query_filters_on_equality(self) -> None:
        """Test that query matches every filter."""
        store = InMemoryDocumentStore()
        store.seed(ORDERS, {"id": "a", "status": "pending-payment", "order_number": "ORD-1"})
        store.seed(ORDERS, {"id": "b", "status": "delivered", "order_number": "ORD-2"})

        pending = await store.query(ORDERS, status="pending-payment")
        by_number = await store.query(ORDERS, order_number="ORD-2")

        assert [d["id"] for d in pending] == ["a"]
        assert [d["id"] for d in by_number] == ["b"]
        assert await store.query(PRODUCTS) == []

    @pytest.mark.asyncio
    async def test_update_merges_and_bumps_version(self) -> None:
        """Test that update is a shallow merge that bumps the version."""
        store = InMemoryDocumentStore()
        store.seed(ORDERS, {"id": "a", "status": "pending-payment", "total": 10})

        await store.update(ORDERS, "a", {"status": "delivered"})

        assert await store.get(ORDERS, "a") == {"id": "a", "status": "delivered", "total": 10, "version": 2}

    @pytest.mark.asyncio
    async def test_ping_is_healthy(self) -> None:
        """Test that the in-memory store always reports healthy."""
        assert await InMemoryDocumentStore().ping() == {"healthy": True}


class TestAtomicBatch:
    """Tests for all-or-nothing batch commits."""

    @pytest.mark.asyncio
    async def test_commit_applies_all_operations(self) -> None:
        """Test that a batch creates and updates together."""
        store = InMemoryDocumentStore()
        store.seed(PRODUCTS, {"id": "p1", "stock": 5})

        batch = store.batch()
        batch.update(PRODUCTS, "p1", {"stock": 4}, expected_version=1)
        order_id = batch.create(ORDERS, {"status": "pending-payment"})
        await batch.commit()

        assert (await store.get(PRODUCTS, "p1"))["stock"] == 4
        assert (await store.get(ORDERS, order_id))["version"] == 1

    @pytest.mark.asyncio
    async def test_version_mismatch_applies_nothing(self) -> None:
        """Test that a stale expected_version fails the whole batch."""
        store = InMemoryDocumentStore()
        store.seed(PRODUCTS, {"id": "p1", "stock": 5})
        store.seed(PRODUCTS, {"id": "p2", "stock": 5, "version": 3})

        batch = store.batch()
        batch.update(PRODUCTS, "p1", {"stock": 4}, expected_version=1)
        batch.update(PRODUCTS, "p2", {"stock": 4}, expected_version=2)
        batch.create(ORDERS, {"status": "pending-payment"})

        with pytest.raises(ConflictError) as exc_info:
            await batch.commit()

        assert exc_info.value.document_id == "p2"
        assert (await store.get(PRODUCTS, "p1"))["stock"] == 5
        assert await store.query(ORDERS) == []

    @pytest.mark.asyncio
    async def test_update_of_missing_document_fails(self) -> None:
        """Test that updating a missing document raises NotFoundError."""
        store = InMemoryDocumentStore()
        batch = store.batch()
        batch.update(ORDERS, "ghost", {"status": "delivered"})

        with pytest.raises(NotFoundError):
            await batch.commit()

    @pytest.mark.asyncio
    async def test_duplicate_create_fails(self) -> None:
        """Test that creating an existing id raises PersistenceError."""
        store = InMemoryDocumentStore()
        store.seed(ORDERS, {"id": "a"})
        batch = store.batch()
        batch.create(ORDERS, {"status": "pending-payment"}, doc_id="a")

        with pytest.raises(PersistenceError):
            await batch.commit()

    @pytest.mark.asyncio
    async def test_metadata_fields_not_written(self) -> None:
        """Test that id and version in the payload are ignored."""
        store = InMemoryDocumentStore()
        store.seed(ORDERS, {"id": "a", "status": "pending-payment"})

        batch = store.batch()
        batch.update(ORDERS, "a", {"id": "b", "version": 99, "status": "delivered"})
        await batch.commit()

        doc = await store.get(ORDERS, "a")
        assert doc["id"] == "a"
        assert doc["version"] == 2

    @pytest.mark.asyncio
    async def test_empty_commit_is_noop(self) -> None:
        """Test that committing an empty batch does nothing."""
        await InMemoryDocumentStore().batch().commit()

    def test_operation_payload(self) -> None:
        """Test the JSON payload shape shipped to the database function."""
        op = BatchOperation("update", PRODUCTS, "p1", {"stock": 1}, expected_version=4)

        assert op.to_payload() == {
            "op": "update",
            "collection": "products",
            "id": "p1",
            "data": {"stock": 1},
            "expected_version": 4,
        }
