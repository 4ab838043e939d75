"""Document-store backends."""
from app.store.base import SERVER_TIMESTAMP, ArrayAppend, DocumentStore, Transaction, WriteBatch
from app.store.memory import MemoryDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "ArrayAppend",
    "DocumentStore",
    "Transaction",
    "WriteBatch",
    "MemoryDocumentStore",
]
