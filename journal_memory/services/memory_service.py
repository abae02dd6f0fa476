"""Memory service: semantic search, indexing commands and theme analysis"""

import asyncio
import logging
import time
from collections.abc import Callable

from journal_memory.config import AppConfig, config
from journal_memory.models.embedding import Embedding
from journal_memory.models.entities import JournalEntity, Message, Note
from journal_memory.models.queue import EntityRef, EntityType
from journal_memory.models.search_result import (
    MemorySearchOutput,
    MemorySearchQuery,
    MemorySearchResult,
    MessageSearchResult,
    NoteSearchResult,
    SearchInfo,
)
from journal_memory.models.stats import DrainResult, IndexStats
from journal_memory.models.themes import ThemeAnalysis, ThemeAnalysisOptions
from journal_memory.services.document_store import (
    ChangeEvent,
    ChangeOperation,
    DocumentStore,
)
from journal_memory.services.embedder import EmbeddingGenerator, FastEmbedGenerator
from journal_memory.services.index_queue import IndexQueue
from journal_memory.services.indexer import MemoryIndexer
from journal_memory.services.patterns import (
    analyze_theme_evolution,
    detect_temporal_patterns,
    insights_from_themes,
    summary_from_themes,
)
from journal_memory.services.similarity import Candidate, top_k
from journal_memory.services.telemetry import TelemetryService, tracer
from journal_memory.services.theme_analyzer import ThemeAnalyzer
from journal_memory.utils.text import extract_excerpt

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class MemoryService:
    """
    Entry point for everything memory related

    Indexing commands only queue work; queued entities are embedded by
    background drains that are started once the generator is ready.
    """

    def __init__(
        self,
        store: DocumentStore,
        generator: EmbeddingGenerator,
        indexer: MemoryIndexer,
        analyzer: ThemeAnalyzer | None = None,
        telemetry: TelemetryService | None = None,
        settings: AppConfig | None = None,
    ):
        self.config = settings or config
        self.store = store
        self.generator = generator
        self.indexer = indexer
        self.analyzer = analyzer or ThemeAnalyzer(
            seed=self.config.theme_random_seed,
            max_iterations=self.config.theme_max_iterations,
        )
        self.telemetry = telemetry or TelemetryService(self.config)
        self._background: set[asyncio.Task] = set()
        self._unsubscribers: list[Callable[[], None]] = []

    @classmethod
    async def create(cls, settings: AppConfig | None = None) -> "MemoryService":
        """Build and initialize a service backed by the configured databases"""
        settings = settings or config

        store = DocumentStore(settings.db_path)
        await store.initialize()
        await store.migrate_legacy_embeddings()

        queue = IndexQueue(settings.queue_db_path)
        await queue.initialize()

        generator = FastEmbedGenerator(settings)
        indexer = MemoryIndexer(store, generator, queue, settings)
        return cls(store, generator, indexer, settings=settings)

    # -- background drains --------------------------------------------------

    def _schedule_drain(self) -> None:
        """Start a queue drain without waiting for it"""
        task = asyncio.create_task(self._drain_in_background())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _drain_in_background(self) -> DrainResult | None:
        try:
            return await self.indexer.drain_queue()
        except Exception as e:
            logger.error(f"Background queue drain failed: {e}", exc_info=True)
            return None

    async def wait_for_indexing(self) -> None:
        """Wait until every background drain started so far has finished"""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def drain(self) -> DrainResult:
        """Drain the queue in the foreground, initializing the generator first"""
        await self._ensure_generator_ready(schedule=False)
        start_time = time.time()
        error: Exception | None = None
        result: DrainResult | None = None
        try:
            result = await self.indexer.drain_queue()
            return result
        except Exception as e:
            error = e
            raise
        finally:
            self.telemetry.log_operation(
                operation="drain_queue",
                query=None,
                parameters={},
                response=result.model_dump() if result else None,
                error=error,
                metadata={"duration_ms": (time.time() - start_time) * 1000},
            )

    async def _ensure_generator_ready(self, schedule: bool = True) -> None:
        if self.generator.status().is_ready:
            return

        logger.info("Initializing embedding generator...")
        await self.generator.initialize()

        # Work queued while the generator was loading was deferred
        if schedule and await self.indexer.queue_length() > 0:
            self._schedule_drain()

    # -- search -------------------------------------------------------------

    async def search(self, query: MemorySearchQuery | str) -> MemorySearchOutput:
        """
        Semantic search over messages and notes

        Args:
            query: Search parameters, or bare query text with default limits

        Returns:
            MemorySearchOutput: Ranked results (empty when nothing qualifies)
        """
        if isinstance(query, str):
            query = MemorySearchQuery(
                query=query,
                limit=self.config.search_default_limit,
                min_score=self.config.search_min_score,
            )

        error: Exception | None = None
        response = None

        with tracer.start_as_current_span("memory.search") as span:
            span.set_attribute("query.limit", query.limit)
            try:
                output = await self._search(query)
                span.set_attribute("response.result_count", len(output.results))
                response = output.model_dump()
                return output
            except Exception as e:
                error = e
                span.record_exception(e)
                raise
            finally:
                self.telemetry.log_operation(
                    operation="search",
                    query=query.query,
                    parameters={
                        "limit": query.limit,
                        "min_score": query.min_score,
                        "day_id": query.day_id,
                    },
                    response=response,
                    error=error,
                )

    async def _search(self, query: MemorySearchQuery) -> MemorySearchOutput:
        start_time = time.time()

        await self._ensure_generator_ready()
        query_embedding = await self.generator.embed(query.query)

        embeddings = await self.store.embeddings.find()
        candidates = [
            Candidate(id=e.id, vector=e.vector, metadata={"ref": e.ref}) for e in embeddings
        ]

        # Over-fetch so that filtering still leaves enough results
        scored = [
            s
            for s in top_k(query_embedding.vector, candidates, k=query.limit * 2)
            if s.score >= query.min_score
        ]

        entities = await self._resolve_entities([s.metadata["ref"] for s in scored])

        results: list[MemorySearchResult] = []
        seen: set[EntityRef] = set()

        for candidate in scored:
            if len(results) >= query.limit:
                break

            ref: EntityRef = candidate.metadata["ref"]
            entity = entities.get(ref)
            if entity is None or entity.is_deleted or ref in seen:
                continue
            if query.day_id and entity.day_id != query.day_id:
                continue
            if query.date_range and not query.date_range.contains(entity.day_id):
                continue

            seen.add(ref)
            results.append(self._build_result(entity, candidate.score, len(results) + 1))

        query_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Search returned {len(results)} results from {len(candidates)} embeddings "
            f"({query_time_ms:.1f}ms)"
        )

        return MemorySearchOutput(
            results=results,
            search_info=SearchInfo(
                original_query=query.query,
                total_results=len(results),
                candidates_scored=len(candidates),
                query_time_ms=query_time_ms,
            ),
        )

    def _build_result(self, entity: JournalEntity, score: float, rank: int) -> MemorySearchResult:
        excerpt = extract_excerpt(entity.content, self.config.excerpt_max_length)
        if isinstance(entity, Note):
            return NoteSearchResult(
                entity_id=entity.id,
                note=entity,
                score=score,
                excerpt=excerpt,
                day_id=entity.day_id,
                rank=rank,
            )
        return MessageSearchResult(
            entity_id=entity.id,
            message=entity,
            score=score,
            excerpt=excerpt,
            day_id=entity.day_id,
            rank=rank,
        )

    async def _resolve_entities(self, refs: list[EntityRef]) -> dict[EntityRef, JournalEntity]:
        """Fetch the entities behind a set of references, one query per type"""
        resolved: dict[EntityRef, JournalEntity] = {}
        for entity_type in EntityType:
            ids = list({ref.entity_id for ref in refs if ref.entity_type is entity_type})
            if not ids:
                continue
            for entity in await self.store.entities(entity_type).find({"id": {"$in": ids}}):
                resolved[EntityRef(entity_type=entity_type, entity_id=entity.id)] = entity
        return resolved

    # -- indexing commands --------------------------------------------------

    async def _index(self, entity_type: EntityType, entity: JournalEntity) -> bool:
        if not entity.embedding_text.strip():
            logger.debug(f"Skipping {entity_type.value} {entity.id} with no text")
            return False

        added = await self.indexer.enqueue(entity_type, entity.id)
        self._schedule_drain()
        return added

    async def index_message(self, message: Message) -> bool:
        """Queue a message for indexing and start a background drain"""
        return await self._index(EntityType.MESSAGE, message)

    async def index_note(self, note: Note) -> bool:
        """Queue a note for indexing and start a background drain"""
        return await self._index(EntityType.NOTE, note)

    async def reindex_message(self, message_id: str) -> Embedding:
        return await self.indexer.reindex(EntityType.MESSAGE, message_id)

    async def reindex_note(self, note_id: str) -> Embedding:
        return await self.indexer.reindex(EntityType.NOTE, note_id)

    async def remove_from_index(self, message_id: str) -> int:
        return await self.indexer.remove(EntityType.MESSAGE, message_id)

    async def remove_note_from_index(self, note_id: str) -> int:
        return await self.indexer.remove(EntityType.NOTE, note_id)

    async def get_index_stats(self) -> IndexStats:
        return await self.indexer.stats()

    async def cleanup_orphans(self) -> int:
        return await self.indexer.cleanup_orphans()

    async def requeue_stale(self) -> int:
        """Queue regeneration of embeddings made by another model version"""
        await self._ensure_generator_ready(schedule=False)
        queued = await self.indexer.queue_stale()
        if queued:
            self._schedule_drain()
        return queued

    async def rebuild_index(self, on_progress: ProgressCallback | None = None) -> int:
        """
        Regenerate every embedding from scratch

        Clears all embeddings, then batch-embeds every live message followed
        by every live note.

        Args:
            on_progress: Called with (current, total) as entities are processed

        Returns:
            Number of embeddings generated
        """
        start_time = time.time()
        error: Exception | None = None
        generated = 0

        with tracer.start_as_current_span("memory.rebuild_index") as span:
            try:
                await self._ensure_generator_ready(schedule=False)

                message_ids = [m.id for m in await self.store.messages.find() if not m.is_deleted]
                note_ids = [n.id for n in await self.store.notes.find() if not n.is_deleted]
                total = len(message_ids) + len(note_ids)
                span.set_attribute("rebuild.total", total)

                logger.info(
                    f"Rebuilding index for {len(message_ids)} messages and {len(note_ids)} notes..."
                )

                cleared = await self.store.embeddings.remove_where()
                logger.info(f"Cleared {cleared} existing embeddings")

                if total == 0:
                    logger.info("No messages or notes to index")
                    return 0

                def report(offset: int) -> Callable[[int], None]:
                    def callback(done: int) -> None:
                        if on_progress:
                            on_progress(offset + done, total)

                    return callback

                generated += await self.indexer.drain_batch(
                    message_ids, entity_type=EntityType.MESSAGE, on_progress=report(0)
                )
                generated += await self.indexer.drain_batch(
                    note_ids, entity_type=EntityType.NOTE, on_progress=report(len(message_ids))
                )

                span.set_attribute("rebuild.generated", generated)
                logger.info(f"Index rebuild complete: {generated}/{total} embeddings generated")
                return generated
            except Exception as e:
                error = e
                span.record_exception(e)
                raise
            finally:
                self.telemetry.log_operation(
                    operation="rebuild_index",
                    query=None,
                    parameters={},
                    error=error,
                    metadata={
                        "generated": generated,
                        "duration_ms": (time.time() - start_time) * 1000,
                    },
                )

    # -- theme analysis -----------------------------------------------------

    async def analyze_recurring_themes(
        self, options: ThemeAnalysisOptions | None = None
    ) -> ThemeAnalysis:
        """
        Cluster the indexed corpus into recurring themes

        Returns:
            ThemeAnalysis: Themes with insights, summary lines, temporal
            patterns and trends (empty when nothing is indexed)
        """
        options = options or ThemeAnalysisOptions(
            min_frequency=self.config.theme_min_frequency,
            max_themes=self.config.theme_max_themes,
        )

        live = await self._live_entities()
        embeddings = [e for e in await self.store.embeddings.find() if e.ref in live]
        if not embeddings:
            return ThemeAnalysis()

        themes = self.analyzer.identify_recurring_themes(
            embeddings,
            {e.id: e.ref for e in embeddings},
            min_frequency=options.min_frequency,
            max_themes=options.max_themes,
        )

        texts = {ref: entity.embedding_text for ref, entity in live.items()}
        phrase_length = self.config.key_phrase_max_length

        return ThemeAnalysis(
            themes=themes,
            insights=insights_from_themes(themes, texts, phrase_length),
            summary=summary_from_themes(
                themes, texts, self.config.theme_summary_size, phrase_length
            ),
            temporal_patterns=detect_temporal_patterns(themes, live),
            trends=analyze_theme_evolution(themes, live),
        )

    async def _live_entities(self) -> dict[EntityRef, JournalEntity]:
        live: dict[EntityRef, JournalEntity] = {}
        for entity_type in EntityType:
            for entity in await self.store.entities(entity_type).find():
                if not entity.is_deleted:
                    live[EntityRef(entity_type=entity_type, entity_id=entity.id)] = entity
        return live

    # -- change feed ----------------------------------------------------------

    def watch_entities(self) -> Callable[[], None]:
        """
        Keep the index in step with message and note writes

        Inserts are queued, edits to the text (or restores) are re-queued,
        and soft deletes or removals drop the embeddings.

        Returns:
            Callable that stops watching
        """
        unsubscribers = [
            self.store.messages.subscribe(self._on_entity_change),
            self.store.notes.subscribe(self._on_entity_change),
        ]
        self._unsubscribers.extend(unsubscribers)

        def stop() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return stop

    async def _on_entity_change(self, event: ChangeEvent) -> None:
        entity_type = EntityType.NOTE if event.collection == "notes" else EntityType.MESSAGE
        document = event.document
        previous = event.previous

        if event.operation is ChangeOperation.REMOVE:
            await self.indexer.remove(entity_type, event.document_id)
            return

        if document is None or document.is_deleted:
            if previous is None or not previous.is_deleted:
                await self.indexer.remove(entity_type, event.document_id)
            return

        if event.operation is ChangeOperation.INSERT:
            await self._index(entity_type, document)
            return

        restored = previous is not None and previous.is_deleted
        text_changed = previous is None or previous.embedding_text != document.embedding_text
        if restored or text_changed:
            await self.indexer.remove(entity_type, event.document_id)
            await self._index(entity_type, document)

    async def close(self) -> None:
        """Stop watching, wait for background drains, release resources"""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        await self.wait_for_indexing()
        await self.generator.dispose()
        self.indexer.queue.close()
        self.store.close()
        self.telemetry.shutdown()
