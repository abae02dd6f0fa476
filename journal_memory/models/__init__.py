"""Data models for the journal memory engine"""

from journal_memory.models.embedding import (
    EMBEDDING_DIMENSION,
    Embedding,
    EmbeddingResult,
    GeneratorStatus,
)
from journal_memory.models.entities import JournalEntity, Message, Note
from journal_memory.models.maintenance import MaintenanceResult
from journal_memory.models.queue import EntityRef, EntityType
from journal_memory.models.search_result import (
    DateRange,
    MemorySearchOutput,
    MemorySearchQuery,
    MemorySearchResult,
    MessageSearchResult,
    NoteSearchResult,
    SearchInfo,
)
from journal_memory.models.stats import DrainResult, EntityIndexStats, IndexStats
from journal_memory.models.themes import (
    InsightType,
    PatternInsight,
    RecurringTheme,
    TemporalPattern,
    ThemeAnalysis,
    ThemeAnalysisOptions,
    ThemeCluster,
    ThemeTrend,
    TimeRange,
)

__all__ = [
    "EMBEDDING_DIMENSION",
    "Embedding",
    "EmbeddingResult",
    "GeneratorStatus",
    "JournalEntity",
    "Message",
    "Note",
    "MaintenanceResult",
    "EntityRef",
    "EntityType",
    "DateRange",
    "MemorySearchOutput",
    "MemorySearchQuery",
    "MemorySearchResult",
    "MessageSearchResult",
    "NoteSearchResult",
    "SearchInfo",
    "DrainResult",
    "EntityIndexStats",
    "IndexStats",
    "InsightType",
    "PatternInsight",
    "RecurringTheme",
    "TemporalPattern",
    "ThemeAnalysis",
    "ThemeAnalysisOptions",
    "ThemeCluster",
    "ThemeTrend",
    "TimeRange",
]
