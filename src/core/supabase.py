"""Supabase client singleton and the Postgres-backed document store."""

import logging
from functools import lru_cache
from typing import Any
from uuid import uuid4

from supabase import Client, create_client

from src.core.config import Settings, get_settings
from src.core.document_store import AtomicBatch, BatchOperation, Document, InMemoryDocumentStore
from src.core.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)

# SQLSTATE raised by commit_document_batch when an expected_version does not match.
SERIALIZATION_FAILURE = "40001"


@lru_cache
def get_supabase_client() -> Client:
    """Get cached Supabase client singleton for database operations.

    Uses the secret key, which bypasses RLS at the PostgREST level. Only
    server-side code that has already authorized the caller may use it.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


class SupabaseDocumentStore:
    """Document store over Supabase tables with ``(id, version, data jsonb)`` rows.

    Reads go through PostgREST. Every write, single or batched, is shipped to
    the ``commit_document_batch`` Postgres function, which applies the batch
    inside one transaction and aborts it on the first version mismatch.
    """

    def __init__(self, client: Client) -> None:
        self.client = client

    @staticmethod
    def _to_document(row: dict[str, Any]) -> Document:
        return {**(row.get("data") or {}), "id": row["id"], "version": row["version"]}

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            response = (
                self.client.table(collection)
                .select("id, version, data")
                .eq("id", doc_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to read {collection}/{doc_id}: {e}") from e
        return self._to_document(response.data) if response and response.data else None

    async def query(self, collection: str, **filters: Any) -> list[Document]:
        request = self.client.table(collection).select("id, version, data")
        for key, value in filters.items():
            request = request.eq(f"data->>{key}", value)
        try:
            response = request.execute()
        except Exception as e:
            raise PersistenceError(f"Failed to query {collection}: {e}") from e
        return [self._to_document(row) for row in response.data or []]

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        batch = self.batch()
        doc_id = batch.create(collection, data, doc_id=data.get("id") or str(uuid4()))
        await batch.commit()
        return doc_id

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        batch = self.batch()
        batch.update(collection, doc_id, data)
        await batch.commit()

    def batch(self) -> AtomicBatch:
        return AtomicBatch(store=self)

    async def commit_batch(self, operations: list[BatchOperation]) -> None:
        payload = [op.to_payload() for op in operations]
        try:
            self.client.rpc("commit_document_batch", {"operations": payload}).execute()
        except Exception as e:
            if getattr(e, "code", None) == SERIALIZATION_FAILURE:
                conflicted = next((op for op in operations if op.expected_version is not None), operations[0])
                raise ConflictError(conflicted.collection, conflicted.id) from e
            logger.error("Batch commit of %d operations failed: %s", len(operations), e)
            raise PersistenceError(f"Atomic commit failed: {e}") from e

    async def ping(self) -> dict[str, Any]:
        """Check if database connection is healthy."""
        try:
            self.client.table("orders").select("id").limit(1).execute()
            return {"healthy": True}
        except Exception as e:
            return {"healthy": False, "error": str(e)}


def build_document_store(settings: Settings) -> SupabaseDocumentStore | InMemoryDocumentStore:
    """Create the document store selected by ``STORAGE_BACKEND``."""
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory document store; data is lost on restart")
        return InMemoryDocumentStore()
    return SupabaseDocumentStore(get_supabase_client())
