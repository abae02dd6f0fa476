"""Clustering of the embedding corpus into recurring themes"""

import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

import numpy as np

from journal_memory.errors import DimensionMismatchError
from journal_memory.models.queue import EntityRef
from journal_memory.models.themes import RecurringTheme, ThemeCluster

logger = logging.getLogger(__name__)


class VectorRecord(Protocol):
    """Anything with an id and a vector (Embedding satisfies this)"""

    id: str
    vector: list[float]


def similarity_matrix(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity between the rows of a and the rows of b"""
    norms_a = np.linalg.norm(a, axis=1)
    norms_b = np.linalg.norm(b, axis=1)
    denominators = np.outer(norms_a, norms_b)
    dots = a @ b.T
    sims = np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators != 0)
    return np.clip(sims, -1.0, 1.0)


def _unit(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def cohesion(vectors: np.ndarray) -> float:
    """Mean pairwise cosine similarity (1.0 for fewer than two vectors)"""
    count = len(vectors)
    if count < 2:
        return 1.0
    sims = similarity_matrix(vectors, vectors)
    upper = np.triu_indices(count, k=1)
    return float(sims[upper].mean())


def most_central(vectors: np.ndarray) -> int:
    """Index of the vector with the highest mean similarity to the others"""
    count = len(vectors)
    if count < 2:
        return 0
    sims = similarity_matrix(vectors, vectors)
    mean_to_others = (sims.sum(axis=1) - np.diag(sims)) / (count - 1)
    return int(np.argmax(mean_to_others))


class ThemeAnalyzer:
    """
    Cosine k-means over embeddings

    Vectors are assigned to the centroid of maximum cosine similarity and
    centroids are kept at unit length. Centroid seeding draws from an
    injectable numpy Generator so runs can be made reproducible.
    """

    def __init__(
        self,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
        max_iterations: int = 10,
    ):
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.max_iterations = max_iterations

    def _as_matrix(self, embeddings: Sequence[VectorRecord]) -> np.ndarray:
        dimension = len(embeddings[0].vector)
        for embedding in embeddings:
            if len(embedding.vector) != dimension:
                raise DimensionMismatchError(dimension, len(embedding.vector))
        return np.asarray([e.vector for e in embeddings], dtype=np.float64)

    def cluster(
        self,
        embeddings: Sequence[VectorRecord],
        k: int = 5,
        max_iterations: int | None = None,
    ) -> list[ThemeCluster]:
        """
        Group embeddings into at most k clusters

        Empty clusters keep their previous centroid and are left out of the
        result.

        Args:
            embeddings: Records to cluster
            k: Requested number of clusters (reduced to len(embeddings) if larger)
            max_iterations: Iteration cap (default from the analyzer)

        Returns:
            Non-empty clusters, largest first
        """
        if max_iterations is None:
            max_iterations = self.max_iterations
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        if not embeddings or k <= 0:
            return []

        vectors = self._as_matrix(embeddings)
        k = min(k, len(embeddings))

        initial = self.rng.choice(len(embeddings), size=k, replace=False)
        centroids = vectors[np.asarray(initial)].copy()

        # -1 = unassigned, so the first pass always counts as a change
        assignments = np.full(len(embeddings), -1)
        iterations = 0

        while iterations < max_iterations:
            new_assignments = np.argmax(similarity_matrix(vectors, centroids), axis=1)
            iterations += 1

            if np.array_equal(new_assignments, assignments):
                break
            assignments = new_assignments

            for index in range(k):
                members = vectors[assignments == index]
                if len(members) == 0:
                    continue
                centroids[index] = _unit(members.mean(axis=0))

        logger.debug(
            f"Clustering of {len(embeddings)} embeddings stopped after {iterations} iterations"
        )

        clusters: list[ThemeCluster] = []
        for index in range(k):
            member_indices = np.flatnonzero(assignments == index)
            if len(member_indices) == 0:
                continue

            clusters.append(
                ThemeCluster(
                    id=f"cluster-{index}",
                    embedding_ids=[embeddings[i].id for i in member_indices],
                    centroid=centroids[index].tolist(),
                    cohesion=cohesion(vectors[member_indices]),
                    size=len(member_indices),
                )
            )

        return sorted(clusters, key=lambda c: c.size, reverse=True)

    def identify_recurring_themes(
        self,
        embeddings: Sequence[VectorRecord],
        entity_ref_map: Mapping[str, EntityRef],
        min_frequency: int = 3,
        max_themes: int = 10,
    ) -> list[RecurringTheme]:
        """
        Find clusters large enough to count as recurring themes

        Args:
            embeddings: Records to analyze
            entity_ref_map: Embedding id -> source entity
            min_frequency: Minimum members per theme
            max_themes: Maximum themes returned

        Returns:
            Themes sorted by frequency, most common first
        """
        if min_frequency < 1:
            raise ValueError(f"min_frequency must be at least 1, got {min_frequency}")
        if not embeddings or len(embeddings) < min_frequency:
            return []

        num_clusters = min(max_themes, len(embeddings) // min_frequency)
        clusters = self.cluster(embeddings, num_clusters)
        vectors_by_id = {e.id: e.vector for e in embeddings}

        themes: list[RecurringTheme] = []
        for cluster in clusters:
            if cluster.size < min_frequency:
                continue

            members = [
                entity_ref_map[embedding_id]
                for embedding_id in cluster.embedding_ids
                if embedding_id in entity_ref_map
            ]
            if len(members) < min_frequency:
                continue

            member_vectors = np.asarray(
                [vectors_by_id[embedding_id] for embedding_id in cluster.embedding_ids],
                dtype=np.float64,
            )
            central_id = cluster.embedding_ids[most_central(member_vectors)]
            representative = entity_ref_map.get(central_id)
            if representative is None:
                continue

            themes.append(
                RecurringTheme(
                    id=cluster.id,
                    frequency=cluster.size,
                    strength=cluster.cohesion,
                    members=members,
                    representative=representative,
                )
            )

        themes.sort(key=lambda t: t.frequency, reverse=True)
        return themes[:max_themes]
