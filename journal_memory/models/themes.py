"""Theme analysis models"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from journal_memory.models.queue import EntityRef


class ThemeCluster(BaseModel):
    """A group of embeddings produced by clustering"""

    id: str = Field(description="Cluster identifier (cluster-<index>)")
    embedding_ids: list[str] = Field(description="Member embedding ids")
    centroid: list[float] = Field(description="Unit-length centroid vector")
    cohesion: float = Field(description="Mean pairwise cosine similarity among members")
    size: int = Field(ge=1, description="Number of members")


class RecurringTheme(BaseModel):
    """A cluster large enough to represent a recurring topic"""

    id: str = Field(description="Theme identifier")
    frequency: int = Field(ge=1, description="Number of entries related to this theme")
    strength: float = Field(description="Cohesion of the underlying cluster")
    members: list[EntityRef] = Field(description="Entities belonging to this theme")
    representative: EntityRef = Field(description="Most central entity of the theme")

    @property
    def entity_ids(self) -> list[str]:
        return [ref.entity_id for ref in self.members]


class InsightType(str, Enum):
    """Kind of pattern insight"""

    RECURRING_THEME = "recurring_theme"
    TEMPORAL_PATTERN = "temporal_pattern"
    SENTIMENT_SHIFT = "sentiment_shift"


class PatternInsight(BaseModel):
    """Human-readable insight derived from a theme"""

    id: str = Field(description="Insight identifier")
    type: InsightType = Field(description="Type of insight")
    description: str = Field(description="Human-readable description")
    confidence: float = Field(description="Strength of the pattern")
    related: list[EntityRef] = Field(description="Entities supporting the insight")
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When the insight was generated"
    )


class TimeRange(BaseModel):
    start: int = Field(description="Earliest timestamp (epoch ms)")
    end: int = Field(description="Latest timestamp (epoch ms)")


class TemporalPattern(BaseModel):
    """Days on which a theme appears"""

    id: str = Field(description="Pattern identifier")
    day_ids: list[str] = Field(description="Sorted distinct days where the theme appears")
    time_range: TimeRange = Field(description="Span of the theme's entries")
    frequency: int = Field(ge=0, description="Number of distinct days")


class ThemeTrend(str, Enum):
    """Direction a theme is moving over time"""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class ThemeAnalysisOptions(BaseModel):
    """Parameters for recurring theme analysis"""

    min_frequency: int = Field(default=3, ge=1, description="Minimum entries per theme")
    max_themes: int = Field(default=10, ge=1, le=50, description="Maximum themes returned")


class ThemeAnalysis(BaseModel):
    """Result of recurring theme analysis"""

    themes: list[RecurringTheme] = Field(default_factory=list)
    insights: list[PatternInsight] = Field(default_factory=list)
    summary: list[str] = Field(default_factory=list)
    temporal_patterns: list[TemporalPattern] = Field(
        default_factory=list, description="Days on which each theme appears"
    )
    trends: dict[str, ThemeTrend] = Field(
        default_factory=dict, description="Theme id -> recent direction"
    )
