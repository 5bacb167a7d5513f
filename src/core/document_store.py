"""Document store port and an in-memory implementation.

Documents are plain dicts. Every stored document carries an ``id`` and an
integer ``version`` that is bumped on each write. Multi-document writes go
through ``AtomicBatch``: operations are staged, then applied all-or-nothing
on ``commit()``. An update staged with ``expected_version`` only applies if the
stored version still matches, which gives callers a compare-and-swap
read-modify-write across several documents.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol
from uuid import uuid4

from src.core.errors import ConflictError, NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

Document = dict[str, Any]

PRODUCTS = "products"
ORDERS = "orders"


@dataclass
class BatchOperation:
    """A single staged write."""

    op: Literal["create", "update"]
    collection: str
    id: str
    data: dict[str, Any]
    expected_version: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for transports that ship the batch as JSON."""
        return {
            "op": self.op,
            "collection": self.collection,
            "id": self.id,
            "data": self.data,
            "expected_version": self.expected_version,
        }


@dataclass
class AtomicBatch:
    """Collects writes and hands them to the store as one commit."""

    store: "DocumentStore"
    operations: list[BatchOperation] = field(default_factory=list)

    def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        """Stage a document creation and return its id."""
        doc_id = doc_id or str(uuid4())
        self.operations.append(BatchOperation("create", collection, doc_id, _strip_meta(data)))
        return doc_id

    def update(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        """Stage a shallow merge of ``data`` into an existing document."""
        self.operations.append(
            BatchOperation("update", collection, doc_id, _strip_meta(data), expected_version)
        )

    async def commit(self) -> None:
        """Apply every staged operation or none of them.

        Raises:
            ConflictError: An ``expected_version`` no longer matches.
            PersistenceError: Any other failure; nothing was applied.
        """
        if not self.operations:
            return
        await self.store.commit_batch(self.operations)


class DocumentStore(Protocol):
    """Port implemented by every persistence backend."""

    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    async def query(self, collection: str, **filters: Any) -> list[Document]: ...

    async def create(self, collection: str, data: dict[str, Any]) -> str: ...

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    def batch(self) -> AtomicBatch: ...

    async def commit_batch(self, operations: list[BatchOperation]) -> None: ...

    async def ping(self) -> dict[str, Any]: ...


def _strip_meta(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in ("id", "version")}


class InMemoryDocumentStore:
    """Process-local document store.

    Commits are serialized by an ``asyncio.Lock`` and every precondition in a
    batch is checked before any operation is applied. Reads yield to the event
    loop so concurrent tasks interleave the way they would against a remote
    store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> Document | None:
        await asyncio.sleep(0)
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(self, collection: str, **filters: Any) -> list[Document]:
        await asyncio.sleep(0)
        docs = self._collections.get(collection, {}).values()
        return [
            copy.deepcopy(doc)
            for doc in docs
            if all(doc.get(key) == value for key, value in filters.items())
        ]

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        batch = self.batch()
        doc_id = batch.create(collection, data, doc_id=data.get("id"))
        await batch.commit()
        return doc_id

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        batch = self.batch()
        batch.update(collection, doc_id, data)
        await batch.commit()

    def batch(self) -> AtomicBatch:
        return AtomicBatch(store=self)

    async def commit_batch(self, operations: list[BatchOperation]) -> None:
        async with self._lock:
            # Validate the whole batch first so a failure leaves nothing applied.
            pending_creates: set[tuple[str, str]] = set()
            for op in operations:
                docs = self._collections.get(op.collection, {})
                key = (op.collection, op.id)
                if op.op == "create":
                    if op.id in docs or key in pending_creates:
                        raise PersistenceError(f"Document {op.collection}/{op.id} already exists")
                    pending_creates.add(key)
                    continue
                current = docs.get(op.id)
                if current is None:
                    if key in pending_creates:
                        continue
                    raise NotFoundError(op.collection.rstrip("s"), op.id)
                if op.expected_version is not None and current["version"] != op.expected_version:
                    raise ConflictError(op.collection, op.id)

            for op in operations:
                docs = self._collections.setdefault(op.collection, {})
                if op.op == "create":
                    docs[op.id] = {**copy.deepcopy(op.data), "id": op.id, "version": 1}
                else:
                    current = docs[op.id]
                    current.update(copy.deepcopy(op.data))
                    current["version"] += 1

    async def ping(self) -> dict[str, Any]:
        return {"healthy": True}

    def seed(self, collection: str, doc: Document) -> str:
        """Insert a document synchronously. Intended for fixtures and local development."""
        doc_id = doc.get("id") or str(uuid4())
        self._collections.setdefault(collection, {})[doc_id] = {
            **copy.deepcopy(_strip_meta(doc)),
            "id": doc_id,
            "version": doc.get("version", 1),
        }
        return doc_id
