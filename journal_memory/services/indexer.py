"""Memory indexer: keeps embedding records in step with journal entities"""

import logging
from collections.abc import Callable, Sequence

from journal_memory.config import AppConfig, config
from journal_memory.errors import EntityNotFoundError, StoreUnavailableError
from journal_memory.models.embedding import Embedding
from journal_memory.models.entities import JournalEntity
from journal_memory.models.queue import EntityRef, EntityType
from journal_memory.models.stats import DrainResult, EntityIndexStats, IndexStats
from journal_memory.services.document_store import DocumentStore
from journal_memory.services.embedder import EmbeddingGenerator
from journal_memory.services.index_queue import IndexQueue

logger = logging.getLogger(__name__)


class MemoryIndexer:
    """
    Manages the lifecycle of embeddings: queueing, processing, and cleanup

    Work items live in a durable queue and are drained one at a time in
    insertion order. Only one drain runs at a time; items that fail stay
    queued for the next drain.
    """

    def __init__(
        self,
        store: DocumentStore,
        generator: EmbeddingGenerator,
        queue: IndexQueue,
        settings: AppConfig | None = None,
    ):
        self.store = store
        self.generator = generator
        self.queue = queue
        self.config = settings or config
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def enqueue(self, entity_type: EntityType, entity_id: str) -> bool:
        """
        Queue an entity for embedding generation

        Re-queuing an entity that is already waiting is a no-op. Does not
        start processing.

        Returns:
            True if the entity was newly queued
        """
        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        added = await self.queue.add(ref)
        if added:
            logger.info(
                f"Queued {ref} for embedding (queue size: {await self.queue.length()})"
            )
        return added

    async def queue_length(self) -> int:
        return await self.queue.length()

    async def clear_queue(self) -> int:
        removed = await self.queue.clear()
        logger.info(f"Cleared index queue ({removed} items removed)")
        return removed

    async def drain_queue(self) -> DrainResult:
        """
        Generate embeddings for every queued entity

        Returns immediately when another drain is running, or when the
        generator is not ready (the queue is left untouched for a later
        drain). A failing item is logged and kept in place; the remaining
        items are still processed.
        """
        # No await between the check and the set, so this is atomic on the loop
        if self._processing:
            logger.info("Queue processing already in progress")
            return DrainResult(already_running=True)
        self._processing = True

        try:
            if not self.generator.status().is_ready:
                logger.info("Embedding generator not ready yet. Deferring queue processing.")
                return DrainResult(deferred=True)

            items = await self.queue.items()
            if not items:
                logger.debug("Queue is empty, nothing to process")
                return DrainResult()

            logger.info(f"Processing {len(items)} queued entities...")
            result = DrainResult()

            for ref in items:
                try:
                    if await self.has_embedding(ref.entity_type, ref.entity_id):
                        logger.debug(f"{ref} already has embedding, skipping")
                        await self.queue.remove(ref)
                        result.skipped += 1
                        continue

                    entity = await self._fetch_live_entity(ref)
                    if entity is None:
                        logger.warning(f"{ref} not found, removing from queue")
                        await self.queue.remove(ref)
                        result.skipped += 1
                        continue

                    await self._generate_and_store(ref, entity)
                    await self.queue.remove(ref)
                    result.succeeded += 1
                except StoreUnavailableError:
                    raise
                except Exception as e:
                    logger.error(f"Failed to process {ref}: {e}", exc_info=True)
                    await self.queue.record_failure(ref, str(e))
                    result.failed += 1

            logger.info(
                f"Queue processing complete: {result.succeeded} succeeded, "
                f"{result.failed} failed, {result.skipped} skipped"
            )
            return result
        finally:
            self._processing = False

    async def drain_batch(
        self,
        entity_ids: Sequence[str],
        batch_size: int | None = None,
        entity_type: EntityType = EntityType.MESSAGE,
        on_progress: Callable[[int], None] | None = None,
    ) -> int:
        """
        Generate embeddings for many entities using the batch API

        Used for bulk (re)indexing. Does not check for existing embeddings.
        A failed chunk is logged and skipped.

        Args:
            entity_ids: Entities to embed
            batch_size: Entities per generator call (default from config)
            entity_type: Collection the ids belong to
            on_progress: Called after each chunk with the number of ids handled so far

        Returns:
            Number of embeddings generated
        """
        await self._ensure_generator_ready()

        batch_size = batch_size or self.config.embedding_batch_size
        collection = self.store.entities(entity_type)
        total_batches = (len(entity_ids) + batch_size - 1) // batch_size
        generated = 0

        logger.info(
            f"Starting batch processing for {len(entity_ids)} {entity_type.value}s "
            f"(batch size: {batch_size})"
        )

        for i in range(0, len(entity_ids), batch_size):
            batch_ids = list(entity_ids[i : i + batch_size])
            batch_number = i // batch_size + 1

            try:
                entities = await collection.find({"id": {"$in": batch_ids}})
                entities = [
                    e for e in entities if not e.is_deleted and e.embedding_text.strip()
                ]

                if not entities:
                    logger.warning(f"No indexable entities found for batch {batch_number}")
                else:
                    results = await self.generator.embed_batch(
                        [e.embedding_text for e in entities]
                    )
                    records = [
                        Embedding(
                            entity_type=entity_type,
                            entity_id=entity.id,
                            vector=result.vector,
                            model_version=result.model_version,
                        )
                        for entity, result in zip(entities, results, strict=True)
                    ]
                    await self.store.embeddings.bulk_insert(records)
                    generated += len(records)
                    logger.info(f"Batch {batch_number}/{total_batches} complete")
            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Failed to process batch {batch_number}: {e}", exc_info=True)

            if on_progress:
                on_progress(min(i + batch_size, len(entity_ids)))

        logger.info(f"Batch processing complete: {generated} embeddings generated")
        return generated

    async def has_embedding(self, entity_type: EntityType, entity_id: str) -> bool:
        existing = await self.store.embeddings.find(
            {"entity_type": entity_type, "entity_id": entity_id}
        )
        return len(existing) > 0

    async def index_immediate(self, entity_type: EntityType, entity_id: str) -> Embedding:
        """
        Index a single entity now, bypassing the queue

        Returns:
            The new embedding, or the existing one if already indexed

        Raises:
            EntityNotFoundError: If the entity does not exist
        """
        await self._ensure_generator_ready()

        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        existing = await self.store.embeddings.find(
            {"entity_type": entity_type, "entity_id": entity_id}
        )
        if existing:
            logger.info(f"{ref} already has embedding")
            return existing[0]

        entity = await self._fetch_live_entity(ref)
        if entity is None:
            raise EntityNotFoundError(entity_type.value, entity_id)

        embedding = await self._generate_and_store(ref, entity)
        await self.queue.remove(ref)
        logger.info(f"Indexed {ref} immediately")
        return embedding

    async def reindex(self, entity_type: EntityType, entity_id: str) -> Embedding:
        """Delete every embedding of the entity, then index it again from scratch"""
        removed = await self.remove(entity_type, entity_id)
        logger.info(f"Removed {removed} existing embeddings for {entity_type.value} {entity_id}")
        return await self.index_immediate(entity_type, entity_id)

    async def remove(self, entity_type: EntityType, entity_id: str) -> int:
        """Delete every embedding of the entity and drop it from the queue"""
        removed = await self.store.embeddings.remove_where(
            {"entity_type": entity_type, "entity_id": entity_id}
        )
        await self.queue.remove(EntityRef(entity_type=entity_type, entity_id=entity_id))
        return removed

    async def cleanup_orphans(self) -> int:
        """
        Remove embeddings whose entity no longer exists

        Returns:
            Number of embeddings removed
        """
        logger.info("Starting orphan cleanup...")

        all_embeddings = await self.store.embeddings.find()
        live_ids = {
            entity_type: await self._live_ids(entity_type) for entity_type in EntityType
        }

        orphan_ids = [
            e.id for e in all_embeddings if e.entity_id not in live_ids[e.entity_type]
        ]
        logger.info(f"Found {len(orphan_ids)} orphaned embeddings")

        if not orphan_ids:
            return 0

        removed = await self.store.embeddings.remove_where({"id": {"$in": orphan_ids}})
        logger.info(f"Cleanup complete: removed {removed} orphaned embeddings")
        return removed

    async def queue_stale(self, current_version: str | None = None) -> int:
        """
        Queue regeneration of embeddings produced by another model version

        Stale records are deleted and their entities queued.

        Returns:
            Number of stale embeddings found
        """
        version = current_version or self.generator.status().version
        stale = await self.store.embeddings.find({"model_version": {"$ne": version}})

        for embedding in stale:
            await self.store.embeddings.remove(embedding.id)
            await self.enqueue(embedding.entity_type, embedding.entity_id)

        if stale:
            logger.info(f"Queued {len(stale)} embeddings for regeneration with {version}")
        return len(stale)

    async def stats(self) -> IndexStats:
        """Index coverage per entity type plus queue state"""
        all_embeddings = await self.store.embeddings.find()

        per_type: dict[EntityType, EntityIndexStats] = {}
        for entity_type in EntityType:
            live_ids = await self._live_ids(entity_type)
            embedded_ids = {e.entity_id for e in all_embeddings if e.entity_type is entity_type}
            per_type[entity_type] = EntityIndexStats(
                total=len(live_ids),
                indexed=sum(1 for e in all_embeddings if e.entity_type is entity_type),
                pending=len(live_ids - embedded_ids),
            )

        stats = IndexStats(
            messages=per_type[EntityType.MESSAGE],
            notes=per_type[EntityType.NOTE],
            queue_length=await self.queue.length(),
            is_processing=self._processing,
        )

        if all_embeddings:
            latest = max(all_embeddings, key=lambda e: e.created_at)
            stats.last_updated = latest.created_at
            stats.model_version = latest.model_version

        return stats

    async def _ensure_generator_ready(self) -> None:
        if not self.generator.status().is_ready:
            logger.info("Initializing embedding generator...")
            await self.generator.initialize()

    async def _fetch_live_entity(self, ref: EntityRef) -> JournalEntity | None:
        entity = await self.store.entities(ref.entity_type).find_one(ref.entity_id)
        if entity is None or entity.is_deleted:
            return None
        return entity

    async def _live_ids(self, entity_type: EntityType) -> set[str]:
        entities = await self.store.entities(entity_type).find()
        return {e.id for e in entities if not e.is_deleted}

    async def _generate_and_store(self, ref: EntityRef, entity: JournalEntity) -> Embedding:
        result = await self.generator.embed(entity.embedding_text)

        embedding = await self.store.embeddings.insert(
            Embedding(
                entity_type=ref.entity_type,
                entity_id=ref.entity_id,
                vector=result.vector,
                model_version=result.model_version,
            )
        )

        logger.info(
            f"Generated embedding for {ref} ({result.processing_time_ms:.0f}ms)"
        )
        return embedding
