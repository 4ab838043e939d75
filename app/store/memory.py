"""In-process document store with the same contract as the Mongo backend.

Used for local development (``STORE_BACKEND=memory``) and the test-suite.
Every operation yields to the event loop once, so concurrent callers
interleave the way they would against a remote store.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from app.errors import NotFound, TransactionAborted
from app.store.base import (
    SERVER_TIMESTAMP,
    ArrayAppend,
    DocumentStore,
    T,
    Transaction,
    WriteOp,
)

logger = logging.getLogger(__name__)

_RANGE_OPS = {
    "$gte": lambda value, operand: value >= operand,
    "$gt": lambda value, operand: value > operand,
    "$lte": lambda value, operand: value <= operand,
    "$lt": lambda value, operand: value < operand,
}


def _matches(doc: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
    for field_name, condition in (filters or {}).items():
        value = doc.get(field_name)
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$in":
                    if value not in operand:
                        return False
                elif op in _RANGE_OPS:
                    if value is None or not _RANGE_OPS[op](value, operand):
                        return False
                else:
                    raise ValueError(f"Unsupported query operator: {op}")
        elif value != condition:
            return False
    return True


def _with_id(doc_id: str, doc: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(doc)
    out["id"] = doc_id
    return out


class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryDocumentStore"):
        super().__init__()
        self._store = store
        self._read_versions: dict[tuple[str, str], int] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        doc = await self._store.get(collection, doc_id)
        self._read_versions.setdefault((collection, doc_id), self._store._version(collection, doc_id))
        return doc

    def _is_stale(self) -> bool:
        return any(
            self._store._version(collection, doc_id) != version
            for (collection, doc_id), version in self._read_versions.items()
        )


class MemoryDocumentStore(DocumentStore):
    def __init__(self, max_batch_size: int = 500, transaction_max_attempts: int = 5):
        super().__init__(max_batch_size=max_batch_size, transaction_max_attempts=transaction_max_attempts)
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._last_timestamp: Optional[datetime] = None

    def _version(self, collection: str, doc_id: str) -> int:
        return self._versions.get((collection, doc_id), 0)

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_timestamp and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        await asyncio.sleep(0)
        doc = self._collections.get(collection, {}).get(doc_id)
        return _with_id(doc_id, doc) if doc is not None else None

    async def find(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        sort: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        docs = [
            _with_id(doc_id, doc)
            for doc_id, doc in self._collections.get(collection, {}).items()
            if _matches(doc, filters)
        ]
        if sort:
            key = sort.lstrip("-")
            docs.sort(key=lambda d: (d.get(key) is None, d.get(key)), reverse=sort.startswith("-"))
        return docs

    def _resolve(self, data: dict[str, Any], existing: Optional[dict[str, Any]], timestamp: datetime) -> dict[str, Any]:
        resolved: dict[str, Any] = {}
        for key, value in data.items():
            if key == "id":
                continue
            if value is SERVER_TIMESTAMP:
                resolved[key] = timestamp
            elif isinstance(value, ArrayAppend):
                current = list((existing or {}).get(key) or [])
                resolved[key] = current + copy.deepcopy(value.items)
            else:
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _apply_op(self, staged: dict[str, dict[str, dict[str, Any]]], op: WriteOp, timestamp: datetime) -> None:
        docs = staged.setdefault(op.collection, {})
        existing = docs.get(op.doc_id)
        if op.kind == "delete":
            docs.pop(op.doc_id, None)
        elif op.kind == "set" and not op.merge:
            docs[op.doc_id] = self._resolve(op.data, None, timestamp)
        else:
            if op.kind == "update" and existing is None:
                raise NotFound(f"No document at {op.collection}/{op.doc_id}")
            merged = dict(existing or {})
            merged.update(self._resolve(op.data, existing, timestamp))
            docs[op.doc_id] = merged

    def _apply_all(self, ops: list[WriteOp]) -> None:
        # Stage on copies so a failing op leaves nothing visible.
        staged = {name: dict(docs) for name, docs in self._collections.items()}
        timestamp = self._now()
        for op in ops:
            self._apply_op(staged, op, timestamp)
        self._collections = staged
        for op in ops:
            key = (op.collection, op.doc_id)
            self._versions[key] = self._versions.get(key, 0) + 1

    async def _commit_ops(self, ops: list[WriteOp]) -> None:
        await asyncio.sleep(0)
        self._apply_all(ops)

    async def run_transaction(
        self,
        fn: Callable[[Transaction], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        attempts = max_attempts or self.transaction_max_attempts
        for attempt in range(1, attempts + 1):
            txn = MemoryTransaction(self)
            result = await fn(txn)
            await asyncio.sleep(0)
            if not txn._is_stale():
                self._apply_all(txn._writes)
                return result
            logger.debug(f"Transaction conflict on attempt {attempt}/{attempts}; retrying")
        raise TransactionAborted(f"Transaction aborted after {attempts} attempt(s) due to concurrent writes")
