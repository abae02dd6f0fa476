"""Integration tests for the durable index queue"""

import os
import tempfile

import pytest

from journal_memory.errors import StoreUnavailableError
from journal_memory.models import EntityRef, EntityType
from journal_memory.services.index_queue import IndexQueue
from tests.helpers import write_raw_queue_rows


def message_ref(entity_id: str) -> EntityRef:
    return EntityRef(entity_type=EntityType.MESSAGE, entity_id=entity_id)


def note_ref(entity_id: str) -> EntityRef:
    return EntityRef(entity_type=EntityType.NOTE, entity_id=entity_id)


class TestIndexQueue:
    """Test queue ordering, deduplication and failure tracking"""

    @pytest.mark.asyncio
    async def test_add_deduplicates(self, queue):
        assert await queue.add(message_ref("m1")) is True
        assert await queue.add(message_ref("m1")) is False
        assert await queue.add(note_ref("m1")) is True

        assert await queue.length() == 2
        assert await queue.contains(note_ref("m1"))

    @pytest.mark.asyncio
    async def test_items_in_insertion_order(self, queue):
        for ref in (note_ref("n2"), message_ref("m1"), message_ref("m3")):
            await queue.add(ref)

        assert await queue.items() == [note_ref("n2"), message_ref("m1"), message_ref("m3")]

    @pytest.mark.asyncio
    async def test_remove(self, queue):
        await queue.add(message_ref("m1"))

        assert await queue.remove(message_ref("m1")) is True
        assert await queue.remove(message_ref("m1")) is False
        assert await queue.length() == 0

    @pytest.mark.asyncio
    async def test_failure_keeps_position(self, queue):
        await queue.add(message_ref("m1"))
        await queue.add(message_ref("m2"))

        await queue.record_failure(message_ref("m1"), "model exploded")
        await queue.record_failure(message_ref("m1"), "model exploded again")

        assert await queue.attempts(message_ref("m1")) == 2
        assert await queue.attempts(message_ref("m2")) == 0
        assert await queue.attempts(message_ref("unknown")) == 0
        assert (await queue.items())[0] == message_ref("m1")

    @pytest.mark.asyncio
    async def test_clear(self, queue):
        await queue.add(message_ref("m1"))
        await queue.add(note_ref("n1"))

        assert await queue.clear() == 2
        assert await queue.items() == []

    @pytest.mark.asyncio
    async def test_export(self, queue):
        await queue.add(message_ref("m1"))
        await queue.add(note_ref("n1"))

        assert await queue.export() == ["message:m1", "note:n1"]

    @pytest.mark.asyncio
    async def test_import_legacy(self, queue):
        await queue.add(message_ref("m1"))

        added = await queue.import_legacy(["m1", "m2", "note:n1", "photo:p1", "message:m3"])

        assert added == 3
        assert await queue.export() == ["message:m1", "message:m2", "note:n1", "message:m3"]


class TestQueueLifecycle:
    """Test persistence and availability"""

    @pytest.mark.asyncio
    async def test_use_before_initialize(self):
        queue = IndexQueue(":memory:")

        with pytest.raises(StoreUnavailableError):
            await queue.add(message_ref("m1"))

    @pytest.mark.asyncio
    async def test_survives_reopen(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = os.path.join(tmpdir, "queue.db")

            queue = IndexQueue(db_path)
            await queue.initialize()
            await queue.add(note_ref("n1"))
            await queue.add(message_ref("m1"))
            await queue.record_failure(note_ref("n1"), "timeout")
            queue.close()

            reopened = IndexQueue(db_path)
            await reopened.initialize()
            assert await reopened.items() == [note_ref("n1"), message_ref("m1")]
            assert await reopened.attempts(note_ref("n1")) == 1
            reopened.close()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, queue):
        await queue.add(message_ref("m1"))

        await queue.initialize()

        assert await queue.length() == 1


class TestLegacyRows:
    """Test queues persisted with bare message ids"""

    @pytest.mark.asyncio
    async def test_bare_rows_rewritten_on_open(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = os.path.join(tmpdir, "queue.db")
            queue = IndexQueue(db_path)
            await queue.initialize()
            queue.close()
            write_raw_queue_rows(db_path, "m1", "photo:p1", "note:n1", "message:m1")

            reopened = IndexQueue(db_path)
            await reopened.initialize()

            assert await reopened.export() == ["message:m1", "note:n1"]
            assert await reopened.add(message_ref("m1")) is False
            assert await reopened.remove(message_ref("m1")) is True
            assert await reopened.items() == [note_ref("n1")]
            reopened.close()

    @pytest.mark.asyncio
    async def test_bare_row_written_while_open(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = os.path.join(tmpdir, "queue.db")
            queue = IndexQueue(db_path)
            await queue.initialize()
            await queue.add(note_ref("n1"))
            write_raw_queue_rows(db_path, "m2")

            assert await queue.items() == [note_ref("n1"), message_ref("m2")]
            assert await queue.contains(message_ref("m2"))
            assert await queue.length() == 2
            queue.close()
