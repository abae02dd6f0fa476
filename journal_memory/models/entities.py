"""Journal source entities (messages and notes)"""

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

DAY_ID_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class Message(BaseModel):
    """A chat message written in the journal"""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier")
    day_id: str = Field(pattern=DAY_ID_PATTERN, description="Journal day (YYYY-MM-DD)")
    role: str = Field(default="user", description="Author role (user, assistant)")
    content: str = Field(description="Plain text content used for search and embedding")
    timestamp: int = Field(default_factory=_now_ms, description="Creation time (epoch ms)")
    deleted_at: int = Field(default=0, ge=0, description="0 = live, otherwise soft-delete time")
    categories: list[str] = Field(default_factory=list, description="Assigned categories")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at > 0

    @property
    def embedding_text(self) -> str:
        return self.content


class Note(BaseModel):
    """A free-form note attached to a journal day"""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier")
    day_id: str = Field(pattern=DAY_ID_PATTERN, description="Journal day (YYYY-MM-DD)")
    category: str = Field(default="personal", description="Note category (summary, ideas, ...)")
    title: str | None = Field(default=None, description="Optional title")
    content: str = Field(description="Markdown content")
    created_at: int = Field(default_factory=_now_ms, description="Creation time (epoch ms)")
    updated_at: int = Field(default_factory=_now_ms, description="Last update time (epoch ms)")
    deleted_at: int = Field(default=0, ge=0, description="0 = live, otherwise soft-delete time")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at > 0

    @property
    def timestamp(self) -> int:
        return self.created_at

    @property
    def embedding_text(self) -> str:
        """Title and body concatenated, body only when untitled"""
        if self.title and self.title.strip():
            return f"{self.title.strip()}\n\n{self.content}"
        return self.content


JournalEntity = Message | Note
