"""Shared fixtures: in-memory stores and a deterministic embedding generator"""

import pytest

from journal_memory.config import AppConfig
from journal_memory.services.document_store import DocumentStore
from journal_memory.services.index_queue import IndexQueue
from journal_memory.services.indexer import MemoryIndexer
from journal_memory.services.memory_service import MemoryService
from tests.helpers import FAKE_MODEL_VERSION, FakeGenerator


@pytest.fixture
def settings():
    """Configuration pointing every store at in-memory SQLite"""
    return AppConfig(
        _env_file=None,
        db_path=":memory:",
        queue_db_path=":memory:",
        embedding_model_version=FAKE_MODEL_VERSION,
        embedding_batch_size=2,
        theme_random_seed=7,
        otel_logging_enabled=False,
        otel_tracing_enabled=False,
    )


@pytest.fixture
async def store():
    store = DocumentStore(":memory:")
    await store.initialize()
    yield store
    store.close()


@pytest.fixture
async def queue():
    queue = IndexQueue(":memory:")
    await queue.initialize()
    yield queue
    queue.close()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def indexer(store, generator, queue, settings):
    return MemoryIndexer(store, generator, queue, settings)


@pytest.fixture
async def service(store, generator, indexer, settings):
    service = MemoryService(store, generator, indexer, settings=settings)
    yield service
    await service.wait_for_indexing()
