"""Error kinds raised by the memory engine"""

from enum import Enum


class ErrorSeverity(str, Enum):
    """How a caller should treat an error"""

    RECOVERABLE = "recoverable"
    FATAL = "fatal"


class MemoryEngineError(Exception):
    """Base class for all memory engine errors"""

    severity: ErrorSeverity = ErrorSeverity.FATAL

    @property
    def recoverable(self) -> bool:
        return self.severity is ErrorSeverity.RECOVERABLE


class InitializationError(MemoryEngineError):
    """Raised when the embedding generator fails to become ready"""

    pass


class EmptyInputError(MemoryEngineError, ValueError):
    """Raised when blank text (or an empty batch) is submitted for embedding"""

    severity = ErrorSeverity.RECOVERABLE


class DimensionMismatchError(MemoryEngineError, ValueError):
    """Raised when vectors have differing or unexpected lengths"""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimension mismatch: {left} vs {right}")
        self.left = left
        self.right = right


class EntityNotFoundError(MemoryEngineError, LookupError):
    """Raised when immediate indexing is requested for a nonexistent entity"""

    severity = ErrorSeverity.RECOVERABLE

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class StoreUnavailableError(MemoryEngineError):
    """Raised when no active persistent store is available"""

    pass


class InvalidRecordError(MemoryEngineError):
    """Raised when a write is rejected at the store boundary"""

    pass
