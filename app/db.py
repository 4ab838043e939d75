"""Record store lifecycle and Beanie document registration."""
from beanie import init_beanie

from app.config import settings
from app.models import DOCUMENT_MODELS
from app.store.base import DocumentStore
from app.store.memory import MemoryDocumentStore
from app.store.mongo import MongoDocumentStore


_store = None


async def db_startup():
    """Open the configured record store and initialize Beanie ODM.

    The memory backend still registers the documents, against an in-process
    mock database, because Beanie documents need a bound collection before
    they can be built.
    """
    global _store
    if settings.store_backend == "memory":
        from mongomock_motor import AsyncMongoMockClient

        database = AsyncMongoMockClient()[settings.mongodb_db_name]
        _store = MemoryDocumentStore(
            max_batch_size=settings.max_batch_size,
            transaction_max_attempts=settings.transaction_max_attempts,
        )
    else:
        _store = MongoDocumentStore(
            settings.mongodb_url,
            settings.mongodb_db_name,
            document_models=DOCUMENT_MODELS,
            use_transactions=settings.mongodb_transactions,
            max_batch_size=settings.max_batch_size,
            transaction_max_attempts=settings.transaction_max_attempts,
        )
        database = _store.database
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


async def db_shutdown():
    """Close the record store."""
    global _store
    if _store:
        await _store.close()
        _store = None


def get_store() -> DocumentStore:
    if _store is None:
        raise RuntimeError("Record store is not initialized; call db_startup() first")
    return _store
