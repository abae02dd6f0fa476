"""Entity references and indexing queue items"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

KEY_SEPARATOR = ":"


class EntityType(str, Enum):
    """Kind of source entity an embedding belongs to"""

    MESSAGE = "message"
    NOTE = "note"


class EntityRef(BaseModel):
    """Reference to a source entity, used as the unit of indexing work"""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType = Field(description="Which collection the entity lives in")
    entity_id: str = Field(min_length=1, description="Identifier of the source entity")

    @property
    def key(self) -> str:
        """Persisted queue form: "<entityType>:<entityId>" """
        return f"{self.entity_type.value}{KEY_SEPARATOR}{self.entity_id}"

    @classmethod
    def parse(cls, raw: str) -> "EntityRef":
        """
        Parse a persisted queue key

        Bare identifiers without a type prefix come from queues written before
        notes were indexed and always refer to messages.

        Raises:
            ValueError: If the type prefix is unknown or the id is empty
        """
        prefix, sep, entity_id = raw.partition(KEY_SEPARATOR)
        if not sep:
            return cls(entity_type=EntityType.MESSAGE, entity_id=raw)

        try:
            entity_type = EntityType(prefix)
        except ValueError as e:
            raise ValueError(f"Unknown entity type in queue item: {raw!r}") from e

        return cls(entity_type=entity_type, entity_id=entity_id)

    def __str__(self) -> str:
        return self.key
