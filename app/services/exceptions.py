class ArchiveDomainError(Exception):
    """Base class for all archive interchange errors."""

class ArchiveFormatError(ArchiveDomainError):
    """Raised when an upload has no recognizable CSV/JSON payload or cannot be read at all."""

class RowValidationError(ArchiveDomainError):
    """Raised when a single interchange row is missing a required field or carries an invalid value."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field

class CapacityExceededError(ArchiveDomainError):
    """Raised before any write when the importable vehicles exceed the plan's remaining slots."""

    def __init__(self, requested: int, remaining: int):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"This import would add {requested} vehicle(s) but the collection has room for "
            f"{max(remaining, 0)} more. Upgrade to Pro or import fewer vehicles."
        )

class PlanNotConfirmedError(ArchiveDomainError):
    """Raised when a match plan reaches the commit step without user confirmation."""

class StorageError(ArchiveDomainError):
    """Base class for object storage failures."""

class SignedUrlError(StorageError):
    """Raised when storage refuses to issue a signed download URL."""

class BlobDownloadError(StorageError):
    """Raised when fetching the bytes behind a signed URL fails."""

class BlobUploadError(StorageError):
    """Raised when a blob upload is rejected."""

class BlobDeleteError(StorageError):
    """Raised when a compensating blob delete fails."""

class StoreWriteError(ArchiveDomainError):
    """Raised when a row insert against the data store fails."""

class OperationCancelled(ArchiveDomainError):
    """Raised internally when the run's cancellation token fires; converted to a cancelled result."""

class StoreQueryError(ArchiveDomainError):
    """Raised when reading from the data store fails."""

class PlanFrozenError(ArchiveDomainError):
    """Raised when a confirmed match plan is modified."""
