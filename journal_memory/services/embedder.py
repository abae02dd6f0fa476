"""Embedding generation using local models via fastembed"""

import asyncio
import logging
import time
from typing import Protocol, runtime_checkable

from fastembed import TextEmbedding

from journal_memory.config import AppConfig, config
from journal_memory.errors import DimensionMismatchError, EmptyInputError, InitializationError
from journal_memory.models.embedding import EmbeddingResult, GeneratorStatus
from journal_memory.services.similarity import normalize

logger = logging.getLogger(__name__)

# ~256 tokens; longer input is truncated by the model
LONG_TEXT_CHARS = 1500


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Contract the memory engine expects from an embedding generator"""

    async def initialize(self) -> None: ...

    def status(self) -> GeneratorStatus: ...

    async def embed(self, text: str) -> EmbeddingResult: ...

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]: ...

    async def dispose(self) -> None: ...


class FastEmbedGenerator:
    """Generate unit-length embeddings with a local fastembed model"""

    def __init__(self, settings: AppConfig | None = None):
        self.config = settings or config
        self.model: TextEmbedding | None = None
        self._is_loading = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Load the embedding model (idempotent)

        Concurrent callers wait for the same load. A failed load can be retried.

        Raises:
            InitializationError: If the model cannot be loaded
        """
        if self.model is not None:
            return

        async with self._init_lock:
            if self.model is not None:
                return

            self._is_loading = True
            start_time = time.perf_counter()
            logger.info(f"Loading embedding model: {self.config.embedding_model}")
            try:
                self.model = await asyncio.to_thread(
                    TextEmbedding,
                    model_name=self.config.embedding_model,
                    cache_dir=self.config.fastembed_cache_dir,
                    threads=self.config.embedding_threads,
                )
            except Exception as e:
                raise InitializationError(
                    f"Failed to load embedding model {self.config.embedding_model}: {e}"
                ) from e
            finally:
                self._is_loading = False

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                f"Embedding model ready in {elapsed_ms:.0f}ms "
                f"(version {self.config.embedding_model_version})"
            )

    def status(self) -> GeneratorStatus:
        return GeneratorStatus(
            is_ready=self.model is not None,
            is_loading=self._is_loading,
            device="cpu",
            model=self.config.embedding_model,
            version=self.config.embedding_model_version,
        )

    def _require_model(self) -> TextEmbedding:
        if self.model is None:
            raise InitializationError(
                "Embedding generator not initialized. Call initialize() first."
            )
        return self.model

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate an embedding for a single text

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult: 384-dimensional unit vector plus version metadata

        Raises:
            EmptyInputError: If text is blank
            InitializationError: If the model is not loaded
            DimensionMismatchError: If the model output has an unexpected length
        """
        if not text or not text.strip():
            raise EmptyInputError("Cannot generate embedding for empty text")

        return (await self._generate([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """
        Generate embeddings for multiple texts, in input order

        Raises:
            EmptyInputError: If texts is empty or any text is blank
            InitializationError: If the model is not loaded
            DimensionMismatchError: If the model output has an unexpected length
        """
        if not texts:
            raise EmptyInputError("Cannot generate embeddings for empty array")
        if any(not text or not text.strip() for text in texts):
            raise EmptyInputError("Cannot generate embedding for empty text")

        return await self._generate(texts)

    async def _generate(self, texts: list[str]) -> list[EmbeddingResult]:
        model = self._require_model()

        for text in texts:
            if len(text) > LONG_TEXT_CHARS:
                logger.warning(
                    f"Text length ({len(text)} chars) may exceed model limit "
                    f"and will be truncated"
                )

        start_time = time.perf_counter()
        # fastembed returns generator, convert to list off the event loop
        vectors = await asyncio.to_thread(
            lambda: list(model.embed(texts, batch_size=self.config.embedding_batch_size))
        )
        for vector in vectors:
            if len(vector) != self.config.embedding_dimension:
                raise DimensionMismatchError(self.config.embedding_dimension, len(vector))

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        per_item_ms = elapsed_ms / len(texts)

        return [
            EmbeddingResult(
                vector=normalize(vector),
                model_version=self.config.embedding_model_version,
                processing_time_ms=per_item_ms,
            )
            for vector in vectors
        ]

    async def dispose(self) -> None:
        """Release the model"""
        self.model = None
        self._is_loading = False
        logger.info("Embedding generator disposed")

    def download_model(self) -> None:
        """
        Pre-download model to cache directory

        Subsequent runs will use the cached model without re-downloading.
        """
        logger.info(f"Downloading embedding model {self.config.embedding_model}...")
        _ = TextEmbedding(
            model_name=self.config.embedding_model, cache_dir=self.config.fastembed_cache_dir
        )
        logger.info(
            f"Model {self.config.embedding_model} cached in {self.config.fastembed_cache_dir}"
        )
