"""Vector embedding data model"""

import math
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from journal_memory.models.queue import EntityRef, EntityType

EMBEDDING_DIMENSION = 384
NORM_TOLERANCE = 0.01
MODEL_VERSION_PATTERN = r"^[A-Za-z0-9\-]+@v\d+$"


_LEGACY_FIELD_NAMES = {
    "entityType": "entity_type",
    "entityId": "entity_id",
    "modelVersion": "model_version",
    "createdAt": "created_at",
}


def upgrade_legacy_record(data: dict[str, Any]) -> dict[str, Any]:
    """
    Upgrade an embedding record written by older clients

    Legacy records use camelCase field names and may reference their source
    through a single ``messageId`` field, which becomes
    ``{entity_type: "message", entity_id: messageId}``. Current records are
    returned unchanged.
    """
    if "messageId" not in data and not _LEGACY_FIELD_NAMES.keys() & data.keys():
        return data

    upgraded: dict[str, Any] = {}
    for key, value in data.items():
        if key == "messageId":
            continue
        upgraded[_LEGACY_FIELD_NAMES.get(key, key)] = value

    if "messageId" in data and "entity_id" not in upgraded:
        upgraded["entity_type"] = EntityType.MESSAGE.value
        upgraded["entity_id"] = data["messageId"]
    return upgraded


def is_legacy_record(data: dict[str, Any]) -> bool:
    return upgrade_legacy_record(data) is not data


def is_normalized(vector: list[float], tolerance: float = NORM_TOLERANCE) -> bool:
    """Check that a vector has Euclidean norm within tolerance of 1.0"""
    norm = math.sqrt(sum(v * v for v in vector))
    return abs(norm - 1.0) <= tolerance


class Embedding(BaseModel):
    """Vector projection of one source entity's text"""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier (UUID)")
    entity_type: EntityType = Field(description="Collection the source entity belongs to")
    entity_id: str = Field(min_length=1, description="Identifier of the source entity")
    vector: list[float] = Field(
        min_length=EMBEDDING_DIMENSION,
        max_length=EMBEDDING_DIMENSION,
        description="Unit vector (384 dimensions for all-MiniLM-L6-v2)",
    )
    model_version: str = Field(
        pattern=MODEL_VERSION_PATTERN,
        max_length=50,
        description="Generator version that produced the vector (e.g., all-MiniLM-L6-v2@v0)",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When embedding was generated"
    )

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return upgrade_legacy_record(data)
        return data

    @field_validator("vector")
    @classmethod
    def validate_vector(cls, v: list[float]) -> list[float]:
        """Validate component bounds and unit length"""
        for i, component in enumerate(v):
            if not -1.0 <= component <= 1.0:
                raise ValueError(f"Vector component {i} out of range [-1, 1]: {component}")
        if not is_normalized(v):
            raise ValueError("Vector must be normalized to unit length")
        return v

    @property
    def ref(self) -> EntityRef:
        return EntityRef(entity_type=self.entity_type, entity_id=self.entity_id)


class EmbeddingResult(BaseModel):
    """Output of one embedding generation"""

    vector: list[float] = Field(description="Unit-length embedding vector")
    model_version: str = Field(description="Generator version that produced the vector")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="When the vector was generated"
    )
    processing_time_ms: float = Field(default=0.0, ge=0.0, description="Generation time")


class GeneratorStatus(BaseModel):
    """Readiness of an embedding generator"""

    is_ready: bool = Field(description="Whether the model is loaded and usable")
    is_loading: bool = Field(default=False, description="Whether the model is loading")
    device: str = Field(default="cpu", description="Execution device")
    model: str = Field(description="Model name")
    version: str = Field(description="Model version tag")
