import os

# Settings are read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("STORE_BACKEND", "memory")

import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from app.models import DOCUMENT_MODELS
from app.store.memory import MemoryDocumentStore


@pytest.fixture
async def beanie_models():
    """Bind the document models to a mock database so they can be built."""
    client = AsyncMongoMockClient()
    await init_beanie(database=client["school_records_test"], document_models=DOCUMENT_MODELS)


@pytest.fixture
def store(beanie_models):
    return MemoryDocumentStore()


@pytest.fixture
def roster():
    return [
        {"id": "p1", "name": "Ada Obi", "gender": "female"},
        {"id": "p2", "name": "Tunde Bello", "gender": "Male"},
        {"id": "p3", "name": "Kemi Ade", "gender": "F"},
    ]
