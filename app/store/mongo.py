"""MongoDB backend on Motor and Beanie.

Every collection belongs to a Beanie document registered by ``init_beanie``.
Reads go through the document classes; writes go to each document's Motor
collection so merges, server timestamps and array appends stay single
update commands. Batches and transactions run inside client sessions, which
needs a replica set. With ``use_transactions`` off (a standalone dev server)
they degrade to sequential writes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    OperationFailure,
    PyMongoError,
    WTimeoutError,
)

from app.errors import (
    Conflict,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    RecordError,
    TransactionAborted,
    Unavailable,
)
from app.models.base import StoredModel
from app.store.base import (
    SERVER_TIMESTAMP,
    ArrayAppend,
    DocumentStore,
    T,
    Transaction,
    WriteOp,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED = 13


def translate_error(exc: PyMongoError) -> RecordError:
    if isinstance(exc, (ConnectionFailure, ExecutionTimeout, WTimeoutError)):
        return Unavailable(str(exc))
    if isinstance(exc, DuplicateKeyError):
        return Conflict(str(exc))
    if isinstance(exc, OperationFailure) and exc.code == UNAUTHORIZED:
        return PermissionDenied(str(exc))
    if exc.has_error_label("TransientTransactionError") or exc.has_error_label("UnknownTransactionCommitResult"):
        return TransactionAborted(str(exc))
    return RecordError(str(exc))


def _as_dict(doc: Optional[StoredModel]) -> Optional[dict[str, Any]]:
    if doc is None:
        return None
    return doc.model_dump(exclude={"revision_id"})


def _replacement(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        if key == "id":
            continue
        if value is SERVER_TIMESTAMP:
            out[key] = datetime.now(timezone.utc)
        elif isinstance(value, ArrayAppend):
            out[key] = list(value.items)
        else:
            out[key] = value
    return out


def _update_spec(data: dict[str, Any]) -> dict[str, Any]:
    spec: dict[str, dict[str, Any]] = {}
    for key, value in data.items():
        if key == "id":
            continue
        if value is SERVER_TIMESTAMP:
            spec.setdefault("$currentDate", {})[key] = True
        elif isinstance(value, ArrayAppend):
            spec.setdefault("$push", {})[key] = {"$each": list(value.items)}
        else:
            spec.setdefault("$set", {})[key] = value
    return spec


class MongoTransaction(Transaction):
    def __init__(self, store: "MongoDocumentStore", session: Optional[AsyncIOMotorClientSession]):
        super().__init__()
        self._store = store
        self._session = session

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        model = self._store.model_for(collection)
        try:
            doc = await model.get(doc_id, session=self._session)
        except PyMongoError as e:
            raise translate_error(e) from e
        return _as_dict(doc)


class MongoDocumentStore(DocumentStore):
    def __init__(
        self,
        url: str,
        db_name: str,
        document_models: Sequence[type[StoredModel]] = (),
        use_transactions: bool = True,
        max_batch_size: int = 500,
        transaction_max_attempts: int = 5,
    ):
        super().__init__(max_batch_size=max_batch_size, transaction_max_attempts=transaction_max_attempts)
        self._client = AsyncIOMotorClient(url, tz_aware=True)
        self.database = self._client[db_name]
        self.use_transactions = use_transactions
        self._models = {model.Settings.name: model for model in document_models}

    def model_for(self, collection: str) -> type[StoredModel]:
        try:
            return self._models[collection]
        except KeyError:
            raise InvalidArgument(f"No document model is registered for collection '{collection}'") from None

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        try:
            doc = await self.model_for(collection).get(doc_id)
        except PyMongoError as e:
            raise translate_error(e) from e
        return _as_dict(doc)

    async def find(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        sort: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        query = self.model_for(collection).find(filters or {})
        if sort:
            query = query.sort(sort)
        try:
            docs = await query.to_list()
        except PyMongoError as e:
            raise translate_error(e) from e
        return [_as_dict(d) for d in docs]

    async def _apply(self, op: WriteOp, session: Optional[AsyncIOMotorClientSession]) -> None:
        coll = self.model_for(op.collection).get_motor_collection()
        key = {"_id": op.doc_id}
        if op.kind == "delete":
            await coll.delete_one(key, session=session)
        elif op.kind == "set" and not op.merge:
            await coll.replace_one(key, _replacement(op.data), upsert=True, session=session)
        else:
            result = await coll.update_one(key, _update_spec(op.data), upsert=op.kind == "set", session=session)
            if op.kind == "update" and result.matched_count == 0:
                raise NotFound(f"No document at {op.collection}/{op.doc_id}")

    async def _commit_ops(self, ops: list[WriteOp]) -> None:
        async def write_all(session: Optional[AsyncIOMotorClientSession]) -> None:
            for op in ops:
                await self._apply(op, session)

        try:
            if self.use_transactions and len(ops) > 1:
                async with await self._client.start_session() as session:
                    await session.with_transaction(write_all)
            else:
                await write_all(None)
        except PyMongoError as e:
            raise translate_error(e) from e

    async def run_transaction(
        self,
        fn: Callable[[Transaction], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run ``fn`` in a session transaction.

        The driver's ``with_transaction`` retries the whole callback on
        ``TransientTransactionError`` and the commit on
        ``UnknownTransactionCommitResult``. The callback itself gives up once
        it has run ``max_attempts`` times.
        """
        attempts = max_attempts or self.transaction_max_attempts
        started = 0

        async def callback(session: Optional[AsyncIOMotorClientSession]) -> T:
            nonlocal started
            started += 1
            if started > attempts:
                raise TransactionAborted(
                    f"Transaction aborted after {attempts} attempt(s) due to concurrent writes"
                )
            if started > 1:
                logger.debug(f"Retrying transaction, attempt {started}/{attempts}")
            txn = MongoTransaction(self, session)
            result = await fn(txn)
            for op in txn._writes:
                await self._apply(op, session)
            return result

        try:
            if not self.use_transactions:
                return await callback(None)
            async with await self._client.start_session() as session:
                return await session.with_transaction(callback)
        except DuplicateKeyError as e:
            # Two upserts raced on the same key; the caller retries from a fresh read.
            raise TransactionAborted(str(e)) from e
        except PyMongoError as e:
            raise translate_error(e) from e

    async def close(self) -> None:
        self._client.close()
