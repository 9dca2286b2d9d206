"""Custom exceptions for chronomem.

This module defines the exception hierarchy used throughout the system
to handle various error conditions with appropriate context.
"""


class ChronomemError(Exception):
    """Base exception for all chronomem errors.

    All custom exceptions in the system should inherit from this class.
    """

    pass


# Validation exceptions
class ValidationError(ChronomemError):
    """Base exception for validation errors."""

    pass


class WriteMessageValidationError(ValidationError):
    """Raised when a write-operation message does not match its schema.

    Attributes:
        errors: One entry per invalid field, formatted as "path: reason".
    """

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Invalid write operation message: {', '.join(errors)}")


class EmptyPredicateError(ValidationError):
    """Raised when a graph mutation is issued without any predicate fields."""

    pass


class InvalidGrainError(ValidationError):
    """Raised when a temporal grain is not allowed for an operation."""

    def __init__(self, grain: str, message: str | None = None):
        self.grain = grain
        super().__init__(message or f"Temporal grain not allowed here: {grain}")


# Storage-related exceptions
class StorageError(ChronomemError):
    """Base exception for storage-related errors."""

    pass


class ObjectStorageError(StorageError):
    """Raised when an object storage request fails for any reason but absence."""

    pass


class SnapshotNotFoundError(StorageError):
    """Raised when a graph snapshot does not exist in object storage.

    Attributes:
        key: Object key that was probed.
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Snapshot not found: {key}")


class SnapshotConflictError(StorageError):
    """Raised when a conditional snapshot write loses against a concurrent save."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Snapshot was modified concurrently: {key}")


class GraphStoreError(StorageError):
    """Raised when a graph fact store operation fails."""

    pass


class VectorStoreError(StorageError):
    """Raised when a vector store operation fails."""

    pass


class DatabaseError(StorageError):
    """Raised when a database operation fails."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to connect to the database."""

    pass


class MigrationError(DatabaseError):
    """Raised when a database migration fails."""

    pass


# Queue-related exceptions
class QueueError(ChronomemError):
    """Base exception for message queue errors."""

    pass


class QueuePublishError(QueueError):
    """Raised when a message could not be published to the broker."""

    pass


# LLM-related exceptions
class LLMError(ChronomemError):
    """Base exception for LLM-related errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when unable to connect to the LLM service."""

    pass


class LLMTimeoutError(LLMError):
    """Raised when an LLM request times out."""

    pass


class LLMResponseError(LLMError):
    """Raised when the LLM returns an invalid or unexpected response."""

    pass


class ModelNotFoundError(LLMError):
    """Raised when a requested model is not available."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model not found: {model_name}")


class EmbeddingError(LLMError):
    """Raised when an embedding could not be generated."""

    pass


# Extraction exceptions
class ExtractionError(ChronomemError):
    """Raised when knowledge extraction from a conversation fails."""

    pass


class ExtractionParseError(ExtractionError):
    """Raised when an extraction response cannot be parsed.

    Attributes:
        raw_response: The model output that failed to parse.
    """

    def __init__(self, message: str, raw_response: str):
        self.raw_response = raw_response
        super().__init__(message)


# Credit exceptions
class CreditError(ChronomemError):
    """Base exception for credit accounting errors."""

    pass


class InsufficientCreditsError(CreditError):
    """Raised when a workspace balance cannot cover a reservation."""

    def __init__(self, workspace_id: str, required: int, available: int):
        self.workspace_id = workspace_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits in workspace {workspace_id}: "
            f"required {required}, available {available}"
        )


class ReservationNotFoundError(CreditError):
    """Raised when a credit reservation does not exist."""

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation not found: {reservation_id}")


class ConfigurationError(ChronomemError):
    """Raised when there is a configuration error."""

    pass
