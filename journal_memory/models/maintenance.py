"""Models for background maintenance"""

from datetime import datetime

from pydantic import BaseModel, Field


class MaintenanceResult(BaseModel):
    """Result of a maintenance job run"""

    job: str = Field(description="Job that ran (drain, orphan_sweep)")
    success: bool = Field(description="Whether the job succeeded")
    start_time: datetime = Field(description="When the job started")
    end_time: datetime = Field(description="When the job ended")
    duration_seconds: float = Field(description="Duration in seconds")
    processed: int = Field(default=0, ge=0, description="Items processed or removed")
    error: str | None = Field(default=None, description="Error message if failed")
