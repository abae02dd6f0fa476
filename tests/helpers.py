"""Test helpers: deterministic vectors and a fake embedding generator"""

import hashlib
import re
import sqlite3

import numpy as np

from journal_memory.errors import EmptyInputError, InitializationError
from journal_memory.models.embedding import EMBEDDING_DIMENSION, EmbeddingResult, GeneratorStatus

FAKE_MODEL_VERSION = "fake-model@v1"

WORD = re.compile(r"[a-z0-9']+")


def unit_vector(*indices: int, dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    """Unit vector with equal weight on the given components"""
    vector = np.zeros(dimension)
    for index in indices:
        vector[index] += 1.0
    return (vector / np.linalg.norm(vector)).tolist()


def bag_of_words(text: str) -> list[float]:
    """Deterministic embedding: each distinct word hashes to one component"""
    vector = np.zeros(EMBEDDING_DIMENSION)
    for word in WORD.findall(text.lower()):
        digest = hashlib.md5(word.encode()).hexdigest()
        vector[int(digest, 16) % EMBEDDING_DIMENSION] += 1.0
    norm = np.linalg.norm(vector)
    if norm == 0:
        vector[0] = 1.0
        return vector.tolist()
    return (vector / norm).tolist()


class FakeGenerator:
    """In-process stand-in for FastEmbedGenerator"""

    def __init__(self, ready: bool = True, fail_on: set[str] | None = None):
        self.ready = ready
        self.fail_on = fail_on or set()
        self.initialize_calls = 0
        self.embedded: list[str] = []
        self.batch_sizes: list[int] = []
        self.disposed = False

    async def initialize(self) -> None:
        self.initialize_calls += 1
        self.ready = True

    def status(self) -> GeneratorStatus:
        return GeneratorStatus(
            is_ready=self.ready, model="fake-model", version=FAKE_MODEL_VERSION
        )

    def _result(self, text: str) -> EmbeddingResult:
        if text in self.fail_on:
            raise RuntimeError(f"generation failed for {text!r}")
        self.embedded.append(text)
        return EmbeddingResult(vector=bag_of_words(text), model_version=FAKE_MODEL_VERSION)

    async def embed(self, text: str) -> EmbeddingResult:
        if not self.ready:
            raise InitializationError("Embedding generator not initialized")
        if not text or not text.strip():
            raise EmptyInputError("Cannot generate embedding for empty text")
        return self._result(text)

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        if not self.ready:
            raise InitializationError("Embedding generator not initialized")
        if not texts:
            raise EmptyInputError("Cannot generate embeddings for empty array")
        self.batch_sizes.append(len(texts))
        return [self._result(text) for text in texts]

    async def dispose(self) -> None:
        self.disposed = True
        self.ready = False


class FirstKChooser:
    """Random source that always picks the first k indices"""

    def choice(self, n, size, replace=False):
        return np.arange(size)


def write_raw_queue_rows(db_path: str, *keys: str) -> None:
    """Write index queue rows directly, bypassing key formatting"""
    conn = sqlite3.connect(db_path)
    conn.executemany(
        "INSERT INTO index_queue (item_key, queued_at) VALUES (?, ?)",
        [(key, "2024-01-01T00:00:00+00:00") for key in keys],
    )
    conn.commit()
    conn.close()
