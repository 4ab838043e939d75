"""Document-store contract shared by the Mongo and in-memory backends."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from app.errors import InvalidArgument

T = TypeVar("T")


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class ArrayAppend:
    """Append items to a list field instead of replacing it."""

    def __init__(self, *items: Any):
        self.items = list(items)

    def __repr__(self) -> str:
        return f"ArrayAppend({self.items!r})"


@dataclass
class WriteOp:
    kind: str  # set, update, delete
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """Queued writes applied together by ``commit()`` or not at all."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: list[WriteOp] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> "WriteBatch":
        self._ops.append(WriteOp("set", collection, doc_id, dict(data), merge))
        return self

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> "WriteBatch":
        self._ops.append(WriteOp("update", collection, doc_id, dict(data)))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._ops.append(WriteOp("delete", collection, doc_id))
        return self

    async def commit(self) -> None:
        if self._committed:
            raise InvalidArgument("Batch already committed")
        if len(self._ops) > self._store.max_batch_size:
            raise InvalidArgument(
                f"Batch of {len(self._ops)} writes exceeds the limit of {self._store.max_batch_size}"
            )
        self._committed = True
        if self._ops:
            await self._store._commit_ops(self._ops)


class Transaction(ABC):
    """Read-modify-write unit handed to ``DocumentStore.run_transaction`` callbacks.

    Reads go through the transaction so conflicts can be detected; writes are
    buffered and applied when the callback returns.
    """

    def __init__(self) -> None:
        self._writes: list[WriteOp] = []

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._writes.append(WriteOp("set", collection, doc_id, dict(data), merge))

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._writes.append(WriteOp("update", collection, doc_id, dict(data)))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(WriteOp("delete", collection, doc_id))


class DocumentStore(ABC):
    """Per-document reads/writes, equality/range queries, atomic batches and transactions.

    Documents are plain dicts. Reads return a copy with the document key
    under ``"id"``.
    """

    def __init__(self, max_batch_size: int = 500, transaction_max_attempts: int = 5):
        self.max_batch_size = max_batch_size
        self.transaction_max_attempts = transaction_max_attempts

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        sort: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Query by equality and range (``$gte``, ``$gt``, ``$lte``, ``$lt``, ``$in``).

        ``sort`` is a field name, prefixed with ``-`` for descending order.
        """

    async def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._commit_ops([WriteOp("set", collection, doc_id, dict(data), merge)])

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document; raises ``NotFound`` if it does not exist."""
        await self._commit_ops([WriteOp("update", collection, doc_id, dict(data))])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._commit_ops([WriteOp("delete", collection, doc_id)])

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    @abstractmethod
    async def run_transaction(
        self,
        fn: Callable[[Transaction], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run ``fn`` and apply its writes atomically, retrying on conflict.

        Raises ``TransactionAborted`` once ``max_attempts`` is exhausted.
        """

    @abstractmethod
    async def _commit_ops(self, ops: list[WriteOp]) -> None:
        """Apply all ops atomically."""

    async def close(self) -> None:
        return None
