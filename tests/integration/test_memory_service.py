"""Integration tests for the memory service: search, indexing, themes and change feed"""

from unittest.mock import MagicMock

import pytest

from journal_memory.errors import StoreUnavailableError
from journal_memory.models import (
    DateRange,
    Embedding,
    EntityRef,
    EntityType,
    MemorySearchQuery,
    Message,
    MessageSearchResult,
    Note,
    NoteSearchResult,
    ThemeAnalysisOptions,
    ThemeTrend,
)
from journal_memory.services.indexer import MemoryIndexer
from journal_memory.services.memory_service import MemoryService
from journal_memory.services.theme_analyzer import ThemeAnalyzer
from tests.helpers import FAKE_MODEL_VERSION, FakeGenerator, FirstKChooser, unit_vector


async def add_message(store, entity_id: str, content: str, day_id: str = "2024-01-01"):
    return await store.messages.insert(Message(id=entity_id, day_id=day_id, content=content))


@pytest.fixture
async def indexed(service, store):
    """Three messages and a note, all embedded"""
    await add_message(store, "m1", "went hiking in the mountains", "2024-01-01")
    await add_message(store, "m2", "baked sourdough bread", "2024-01-02")
    await add_message(store, "m3", "planning another hiking trip", "2024-01-03")
    await store.notes.insert(
        Note(id="n1", day_id="2024-01-02", title="Hiking", content="gear list for the trail")
    )
    await service.rebuild_index()
    return service


class TestSearch:
    """Test semantic search over messages and notes"""

    @pytest.mark.asyncio
    async def test_exact_match_ranks_first(self, indexed):
        output = await indexed.search(MemorySearchQuery(query="went hiking in the mountains"))

        top = output.results[0]
        assert isinstance(top, MessageSearchResult)
        assert top.entity_id == "m1"
        assert top.rank == 1
        assert top.score == pytest.approx(1.0)
        assert top.message.content == "went hiking in the mountains"
        assert [r.rank for r in output.results] == list(range(1, len(output.results) + 1))
        scores = [r.score for r in output.results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_search_info(self, indexed):
        output = await indexed.search("hiking")

        assert output.search_info.original_query == "hiking"
        assert output.search_info.candidates_scored == 4
        assert output.search_info.total_results == len(output.results)
        assert output.search_info.query_time_ms >= 0

    @pytest.mark.asyncio
    async def test_min_score_filters(self, indexed):
        output = await indexed.search(
            MemorySearchQuery(query="went hiking in the mountains", min_score=0.9)
        )

        assert [r.entity_id for r in output.results] == ["m1"]

    @pytest.mark.asyncio
    async def test_limit(self, indexed):
        output = await indexed.search(MemorySearchQuery(query="hiking", limit=1))

        assert len(output.results) == 1

    @pytest.mark.asyncio
    async def test_day_filter(self, indexed):
        output = await indexed.search(MemorySearchQuery(query="hiking", day_id="2024-01-03"))

        assert [r.entity_id for r in output.results] == ["m3"]

    @pytest.mark.asyncio
    async def test_date_range_filter(self, indexed):
        query = MemorySearchQuery(
            query="hiking trail",
            date_range=DateRange(start_date="2024-01-02", end_date="2024-01-03"),
        )

        output = await indexed.search(query)

        assert output.results
        assert all("2024-01-02" <= r.day_id <= "2024-01-03" for r in output.results)
        assert "m1" not in {r.entity_id for r in output.results}

    @pytest.mark.asyncio
    async def test_notes_are_searchable(self, indexed):
        output = await indexed.search("gear list for the trail")

        top = output.results[0]
        assert isinstance(top, NoteSearchResult)
        assert top.entity_type is EntityType.NOTE
        assert top.note.title == "Hiking"

    @pytest.mark.asyncio
    async def test_deleted_entities_skipped(self, indexed, store):
        message = await store.messages.find_one("m1")
        await store.messages.upsert(message.model_copy(update={"deleted_at": 1}))

        output = await indexed.search("went hiking in the mountains")

        assert "m1" not in {r.entity_id for r in output.results}

    @pytest.mark.asyncio
    async def test_orphaned_embedding_skipped(self, indexed, store):
        await store.embeddings.insert(
            Embedding(
                entity_type=EntityType.MESSAGE,
                entity_id="ghost",
                vector=unit_vector(3),
                model_version=FAKE_MODEL_VERSION,
            )
        )

        output = await indexed.search(MemorySearchQuery(query="hiking", limit=10))

        assert "ghost" not in {r.entity_id for r in output.results}

    @pytest.mark.asyncio
    async def test_excerpt(self, service, store):
        content = "First sentence here. " + "word " * 60
        await add_message(store, "long", content)
        await service.rebuild_index()

        [result] = (await service.search(content)).results

        assert result.excerpt == "First sentence here."

    @pytest.mark.asyncio
    async def test_empty_index(self, service):
        output = await service.search("anything at all")

        assert output.results == []
        assert output.search_info.candidates_scored == 0

    @pytest.mark.asyncio
    async def test_search_logs_telemetry(self, store, generator, indexer, settings):
        telemetry = MagicMock()
        service = MemoryService(store, generator, indexer, telemetry=telemetry, settings=settings)

        await service.search(MemorySearchQuery(query="hiking", limit=3))

        kwargs = telemetry.log_operation.call_args.kwargs
        assert kwargs["operation"] == "search"
        assert kwargs["query"] == "hiking"
        assert kwargs["parameters"]["limit"] == 3
        assert kwargs["error"] is None


class TestIndexingCommands:
    """Test queue-backed indexing through the service"""

    @pytest.mark.asyncio
    async def test_index_message(self, service, store):
        message = await add_message(store, "m1", "went hiking")

        assert await service.index_message(message) is True
        await service.wait_for_indexing()

        stats = await service.get_index_stats()
        assert stats.messages.indexed == 1
        assert stats.queue_length == 0

    @pytest.mark.asyncio
    async def test_index_note(self, service, store):
        note = await store.notes.insert(Note(id="n1", day_id="2024-01-01", content="plans"))

        await service.index_note(note)
        await service.wait_for_indexing()

        assert (await service.get_index_stats()).notes.indexed == 1

    @pytest.mark.asyncio
    async def test_blank_message_not_queued(self, service, store):
        message = await add_message(store, "m1", "   ")

        assert await service.index_message(message) is False
        assert (await service.get_index_stats()).queue_length == 0

    @pytest.mark.asyncio
    async def test_queued_work_waits_for_generator(self, store, queue, settings):
        generator = FakeGenerator(ready=False)
        indexer = MemoryIndexer(store, generator, queue, settings)
        service = MemoryService(store, generator, indexer, settings=settings)
        message = await add_message(store, "m1", "went hiking")

        await service.index_message(message)
        await service.wait_for_indexing()
        assert await queue.length() == 1

        # First search loads the model and picks the deferred work back up
        await service.search("hiking")
        await service.wait_for_indexing()

        assert generator.initialize_calls == 1
        assert await queue.length() == 0
        assert await store.embeddings.count() == 1

    @pytest.mark.asyncio
    async def test_drain(self, service, store, indexer):
        await add_message(store, "m1", "went hiking")
        await indexer.enqueue(EntityType.MESSAGE, "m1")

        result = await service.drain()

        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_reindex_and_remove(self, service, store):
        await add_message(store, "m1", "went hiking")
        await store.notes.insert(Note(id="n1", day_id="2024-01-01", content="plans"))

        first = await service.reindex_message("m1")
        second = await service.reindex_message("m1")
        await service.reindex_note("n1")

        assert first.id != second.id
        assert await service.remove_from_index("m1") == 1
        assert await service.remove_note_from_index("n1") == 1
        assert await store.embeddings.count() == 0

    @pytest.mark.asyncio
    async def test_cleanup_orphans(self, indexed, store):
        await store.messages.remove("m2")

        assert await indexed.cleanup_orphans() == 1

    @pytest.mark.asyncio
    async def test_requeue_stale(self, service, store):
        await add_message(store, "m1", "went hiking")
        await store.embeddings.insert(
            Embedding(
                entity_type=EntityType.MESSAGE,
                entity_id="m1",
                vector=unit_vector(0),
                model_version="old-model@v0",
            )
        )

        assert await service.requeue_stale() == 1
        await service.wait_for_indexing()

        [embedding] = await store.embeddings.find()
        assert embedding.model_version == FAKE_MODEL_VERSION


class TestRebuildIndex:
    """Test full index rebuilds"""

    @pytest.mark.asyncio
    async def test_rebuild_reports_progress(self, service, store):
        for i in range(3):
            await add_message(store, f"m{i}", f"entry number {i}")
        await store.messages.insert(
            Message(id="gone", day_id="2024-01-01", content="deleted", deleted_at=9)
        )
        await store.notes.insert(Note(id="n1", day_id="2024-01-01", content="plans"))
        await store.embeddings.insert(
            Embedding(
                entity_type=EntityType.MESSAGE,
                entity_id="m0",
                vector=unit_vector(0),
                model_version="old-model@v0",
            )
        )
        progress = []

        generated = await service.rebuild_index(lambda done, total: progress.append((done, total)))

        assert generated == 4
        assert progress == [(2, 4), (3, 4), (4, 4)]
        embeddings = await store.embeddings.find()
        assert len(embeddings) == 4
        assert all(e.model_version == FAKE_MODEL_VERSION for e in embeddings)

    @pytest.mark.asyncio
    async def test_rebuild_empty(self, service):
        assert await service.rebuild_index() == 0


class TestThemeAnalysis:
    """Test recurring theme analysis over the indexed corpus"""

    @pytest.fixture
    def theme_service(self, store, generator, indexer, settings):
        return MemoryService(
            store,
            generator,
            indexer,
            analyzer=ThemeAnalyzer(rng=FirstKChooser()),
            settings=settings,
        )

    @pytest.fixture
    async def two_topics(self, store, theme_service):
        topics = [
            "coffee espresso morning",
            "running park miles",
            "coffee espresso latte",
            "running park trail",
            "coffee espresso beans",
            "running park sunrise",
        ]
        for i, content in enumerate(topics):
            await add_message(store, f"m{i}", content, f"2024-01-0{i + 1}")
        await theme_service.rebuild_index()
        return theme_service

    @pytest.mark.asyncio
    async def test_two_recurring_themes(self, two_topics):
        analysis = await two_topics.analyze_recurring_themes()

        assert len(analysis.themes) == 2
        for theme in analysis.themes:
            assert theme.frequency == 3
            contents = {ref.entity_id for ref in theme.members}
            assert contents in ({"m0", "m2", "m4"}, {"m1", "m3", "m5"})

        assert len(analysis.insights) == 2
        assert len(analysis.summary) == 2
        assert all(line.endswith("(3×)") for line in analysis.summary)
        assert len(analysis.temporal_patterns) == 2
        assert all(p.frequency == 3 for p in analysis.temporal_patterns)
        assert analysis.trends == {t.id: ThemeTrend.STABLE for t in analysis.themes}

    @pytest.mark.asyncio
    async def test_deleted_entities_excluded(self, two_topics, store):
        message = await store.messages.find_one("m0")
        await store.messages.upsert(message.model_copy(update={"deleted_at": 1}))

        analysis = await two_topics.analyze_recurring_themes()

        deleted = EntityRef(entity_type=EntityType.MESSAGE, entity_id="m0")
        assert all(deleted not in theme.members for theme in analysis.themes)
        assert sum(theme.frequency for theme in analysis.themes) <= 5

    @pytest.mark.asyncio
    async def test_options(self, two_topics):
        analysis = await two_topics.analyze_recurring_themes(
            ThemeAnalysisOptions(min_frequency=4)
        )

        # 6 // 4 = 1 cluster holding everything
        assert len(analysis.themes) == 1
        assert analysis.themes[0].frequency == 6

    @pytest.mark.asyncio
    async def test_empty_corpus(self, theme_service):
        analysis = await theme_service.analyze_recurring_themes()

        assert analysis.themes == []
        assert analysis.insights == []
        assert analysis.summary == []


class TestChangeFeed:
    """Test that entity writes keep the index in step"""

    @pytest.mark.asyncio
    async def test_insert_is_indexed(self, service, store, generator):
        stop = service.watch_entities()

        await add_message(store, "m1", "went hiking")
        await store.notes.insert(Note(id="n1", day_id="2024-01-01", content="plans"))
        await service.wait_for_indexing()
        stop()

        assert await store.embeddings.count() == 2
        assert sorted(generator.embedded) == ["plans", "went hiking"]

    @pytest.mark.asyncio
    async def test_text_edit_reindexes(self, service, store, generator):
        service.watch_entities()
        message = await add_message(store, "m1", "went hiking")
        await service.wait_for_indexing()

        await store.messages.upsert(message.model_copy(update={"content": "went swimming"}))
        await service.wait_for_indexing()

        assert generator.embedded == ["went hiking", "went swimming"]
        assert await store.embeddings.count() == 1

    @pytest.mark.asyncio
    async def test_metadata_edit_ignored(self, service, store, generator):
        service.watch_entities()
        message = await add_message(store, "m1", "went hiking")
        await service.wait_for_indexing()

        await store.messages.upsert(message.model_copy(update={"categories": ["outdoors"]}))
        await service.wait_for_indexing()

        assert generator.embedded == ["went hiking"]

    @pytest.mark.asyncio
    async def test_soft_delete_and_restore(self, service, store):
        service.watch_entities()
        message = await add_message(store, "m1", "went hiking")
        await service.wait_for_indexing()

        await store.messages.upsert(message.model_copy(update={"deleted_at": 5}))
        assert await store.embeddings.count() == 0

        await store.messages.upsert(message)
        await service.wait_for_indexing()
        assert await store.embeddings.count() == 1

    @pytest.mark.asyncio
    async def test_remove(self, service, store):
        service.watch_entities()
        await add_message(store, "m1", "went hiking")
        await service.wait_for_indexing()

        await store.messages.remove("m1")

        assert await store.embeddings.count() == 0

    @pytest.mark.asyncio
    async def test_stop_watching(self, service, store):
        stop = service.watch_entities()
        stop()

        await add_message(store, "m1", "went hiking")
        await service.wait_for_indexing()

        assert await store.embeddings.count() == 0


class TestClose:
    """Test shutdown"""

    @pytest.mark.asyncio
    async def test_close_releases_resources(self, service, store, generator):
        service.watch_entities()
        await add_message(store, "m1", "went hiking")

        await service.close()

        assert generator.disposed is True
        assert await store.health_check() is False
        with pytest.raises(StoreUnavailableError):
            await service.get_index_stats()
