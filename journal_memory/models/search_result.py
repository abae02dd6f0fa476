"""Search query and result models"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator

from journal_memory.models.entities import DAY_ID_PATTERN, Message, Note
from journal_memory.models.queue import EntityType


class DateRange(BaseModel):
    """Inclusive range of journal days"""

    start_date: str | None = Field(
        default=None, pattern=DAY_ID_PATTERN, description="First day included (YYYY-MM-DD)"
    )
    end_date: str | None = Field(
        default=None, pattern=DAY_ID_PATTERN, description="Last day included (YYYY-MM-DD)"
    )

    def contains(self, day_id: str) -> bool:
        # Day ids are YYYY-MM-DD, so string order is calendar order
        if self.start_date and day_id < self.start_date:
            return False
        if self.end_date and day_id > self.end_date:
            return False
        return True


class MemorySearchQuery(BaseModel):
    """Semantic search request over journal messages and notes"""

    query: str = Field(min_length=1, description="Text to embed and search for")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum number of results")
    min_score: float = Field(
        default=0.0, ge=-1.0, le=1.0, description="Minimum cosine similarity to include"
    )
    day_id: str | None = Field(
        default=None, pattern=DAY_ID_PATTERN, description="Restrict results to one day"
    )
    date_range: DateRange | None = Field(default=None, description="Restrict results to a range")

    @model_validator(mode="after")
    def query_not_blank(self) -> "MemorySearchQuery":
        if not self.query.strip():
            raise ValueError("Search query must not be blank")
        return self


class MessageSearchResult(BaseModel):
    """A message matched by semantic search"""

    entity_type: Literal[EntityType.MESSAGE] = EntityType.MESSAGE
    entity_id: str = Field(description="Identifier of the matched message")
    message: Message = Field(description="The matched message")
    score: float = Field(ge=-1.0, le=1.0, description="Cosine similarity to the query")
    excerpt: str = Field(description="Short preview of the content")
    day_id: str = Field(description="Journal day of the message")
    rank: int = Field(ge=1, description="Position in result list (1-indexed)")


class NoteSearchResult(BaseModel):
    """A note matched by semantic search"""

    entity_type: Literal[EntityType.NOTE] = EntityType.NOTE
    entity_id: str = Field(description="Identifier of the matched note")
    note: Note = Field(description="The matched note")
    score: float = Field(ge=-1.0, le=1.0, description="Cosine similarity to the query")
    excerpt: str = Field(description="Short preview of the content")
    day_id: str = Field(description="Journal day of the note")
    rank: int = Field(ge=1, description="Position in result list (1-indexed)")


MemorySearchResult = Annotated[
    MessageSearchResult | NoteSearchResult, Field(discriminator="entity_type")
]


class SearchInfo(BaseModel):
    """Metadata about the search execution"""

    original_query: str = Field(description="The query that was executed")
    total_results: int = Field(ge=0, description="Number of results returned")
    candidates_scored: int = Field(ge=0, description="Number of embeddings scored")
    query_time_ms: float = Field(ge=0.0, description="Query execution time in milliseconds")


class MemorySearchOutput(BaseModel):
    """Complete output of a memory search"""

    results: list[MemorySearchResult] = Field(description="Ranked search results")
    search_info: SearchInfo = Field(description="Metadata about the search")
