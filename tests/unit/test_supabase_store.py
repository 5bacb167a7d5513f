"""Unit tests for the Supabase-backed document store."""

from unittest.mock import MagicMock

import pytest

from src.core.config import Settings
from src.core.document_store import ORDERS, PRODUCTS, InMemoryDocumentStore
from src.core.errors import ConflictError, PersistenceError
from src.core.supabase import SupabaseDocumentStore, build_document_store


class DatabaseError(Exception):
    """Stands in for the PostgREST API error, which carries a SQLSTATE code."""

    def __init__(self, code: str, message: str = "error") -> None:
        super().__init__(message)
        self.code = code


@pytest.fixture
def mock_client() -> MagicMock:
    return MagicMock()


class TestSupabaseDocumentStore:
    """Tests for SupabaseDocumentStore."""

    @pytest.mark.asyncio
    async def test_get_flattens_row(self, mock_client: MagicMock) -> None:
        """Test that the jsonb data is merged with id and version."""
        chain = mock_client.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
        chain.execute.return_value = MagicMock(data={"id": "o1", "version": 3, "data": {"status": "delivered"}})

        doc = await SupabaseDocumentStore(mock_client).get(ORDERS, "o1")

        assert doc == {"id": "o1", "version": 3, "status": "delivered"}
        mock_client.table.assert_called_with("orders")

    @pytest.mark.asyncio
    async def test_get_missing_row(self, mock_client: MagicMock) -> None:
        """Test that a missing row reads as None."""
        chain = mock_client.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
        chain.execute.return_value = None

        assert await SupabaseDocumentStore(mock_client).get(ORDERS, "nope") is None

    @pytest.mark.asyncio
    async def test_query_filters_on_json_fields(self, mock_client: MagicMock) -> None:
        """Test that filters are applied to keys inside the data column."""
        select = mock_client.table.return_value.select.return_value
        select.eq.return_value.execute.return_value = MagicMock(
            data=[{"id": "o1", "version": 1, "data": {"order_number": "ORD-1"}}]
        )

        docs = await SupabaseDocumentStore(mock_client).query(ORDERS, order_number="ORD-1")

        select.eq.assert_called_once_with("data->>order_number", "ORD-1")
        assert docs == [{"id": "o1", "version": 1, "order_number": "ORD-1"}]

    @pytest.mark.asyncio
    async def test_commit_ships_batch_to_rpc(self, mock_client: MagicMock) -> None:
        """Test that a batch is sent as one function call."""
        store = SupabaseDocumentStore(mock_client)
        batch = store.batch()
        batch.update(PRODUCTS, "p1", {"variants": []}, expected_version=2)
        order_id = batch.create(ORDERS, {"status": "pending-payment"})

        await batch.commit()

        name, params = mock_client.rpc.call_args.args
        assert name == "commit_document_batch"
        assert [op["op"] for op in params["operations"]] == ["update", "create"]
        assert params["operations"][0]["expected_version"] == 2
        assert params["operations"][1]["id"] == order_id

    @pytest.mark.asyncio
    async def test_version_mismatch_becomes_conflict(self, mock_client: MagicMock) -> None:
        """Test that a serialization failure maps to ConflictError."""
        mock_client.rpc.return_value.execute.side_effect = DatabaseError("40001")
        store = SupabaseDocumentStore(mock_client)
        batch = store.batch()
        batch.update(PRODUCTS, "p1", {"variants": []}, expected_version=2)

        with pytest.raises(ConflictError) as exc_info:
            await batch.commit()

        assert exc_info.value.document_id == "p1"

    @pytest.mark.asyncio
    async def test_other_failures_become_persistence_errors(self, mock_client: MagicMock) -> None:
        """Test that any other database failure maps to PersistenceError."""
        mock_client.rpc.return_value.execute.side_effect = DatabaseError("P0002")

        with pytest.raises(PersistenceError) as exc_info:
            await SupabaseDocumentStore(mock_client).update(ORDERS, "o1", {"status": "delivered"})

        assert not isinstance(exc_info.value, ConflictError)

    @pytest.mark.asyncio
    async def test_ping(self, mock_client: MagicMock) -> None:
        """Test that ping reports connection errors instead of raising."""
        store = SupabaseDocumentStore(mock_client)
        assert await store.ping() == {"healthy": True}

        mock_client.table.return_value.select.return_value.limit.return_value.execute.side_effect = Exception("down")
        assert await store.ping() == {"healthy": False, "error": "down"}


class TestBuildDocumentStore:
    """Tests for build_document_store."""

    def test_memory_backend(self) -> None:
        """Test that the memory backend needs no database client."""
        store = build_document_store(Settings(storage_backend="memory"))

        assert isinstance(store, InMemoryDocumentStore)
