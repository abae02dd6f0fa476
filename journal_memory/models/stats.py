"""Indexing statistics models"""

from datetime import datetime

from pydantic import BaseModel, Field


class EntityIndexStats(BaseModel):
    """Index coverage for one entity type"""

    total: int = Field(default=0, ge=0, description="Live entities of this type")
    indexed: int = Field(default=0, ge=0, description="Embedding records of this type")
    pending: int = Field(default=0, ge=0, description="Live entities without an embedding")


class IndexStats(BaseModel):
    """Snapshot of the memory index"""

    messages: EntityIndexStats = Field(default_factory=EntityIndexStats)
    notes: EntityIndexStats = Field(default_factory=EntityIndexStats)
    queue_length: int = Field(default=0, ge=0, description="Items waiting in the index queue")
    is_processing: bool = Field(default=False, description="Whether a drain is in progress")
    last_updated: datetime | None = Field(
        default=None, description="Creation time of the newest embedding"
    )
    model_version: str = Field(
        default="unknown", description="Model version of the newest embedding"
    )


class DrainResult(BaseModel):
    """Outcome of one queue drain"""

    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    deferred: bool = Field(default=False, description="Drain postponed (generator not ready)")
    already_running: bool = Field(default=False, description="Another drain was in progress")
