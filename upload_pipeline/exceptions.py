"""Shared exceptions for the upload pipeline.

This module contains the error taxonomy used across the codec, uploader,
processing invoker, queue store and scheduler. The scheduler decides whether
a failed task is retried purely from the exception type, so every component
raises one of these classes instead of a bare ``Exception``.

Retry Policy:
    - ValidationError, DecodeError: never retried (bad local input)
    - StorageError, TransportError: retried with exponential backoff
    - UploadCancelledError: terminal, never retried
    - QueueFullError: raised at enqueue time, task never enters the queue
"""


class UploadPipelineError(Exception):
    """Base class for all upload pipeline errors."""

    pass


class ConfigurationError(UploadPipelineError):
    """Raised when required configuration is missing.

    This error indicates a configuration problem that prevents the pipeline
    from being wired (e.g., STORAGE_URL not set when starting the HTTP app).
    """

    pass


class ValidationError(UploadPipelineError):
    """Raised when a local source file is missing, empty or too large.

    Validation failures are permanent: retrying the same file cannot succeed,
    so the scheduler fails the task without consuming a retry attempt.
    """

    pass


class DecodeError(UploadPipelineError):
    """Raised when local file data cannot be decoded from base64."""

    pass


class StorageError(UploadPipelineError):
    """Raised when the object storage service rejects or loses an upload.

    Attributes:
        status_code: HTTP status returned by the storage service, if any.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransportError(UploadPipelineError):
    """Raised when the remote processing call fails or reports failure.

    Attributes:
        status_code: HTTP status returned by the function endpoint, if any.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class UploadCancelledError(UploadPipelineError):
    """Raised inside a task pipeline when its cancellation token fires."""

    def __init__(self, message: str = "Upload was cancelled"):
        super().__init__(message)


class QueueFullError(UploadPipelineError):
    """Raised by enqueue when the queue already holds the maximum task count."""

    pass


class OwnerMismatchError(UploadPipelineError):
    """Raised when an operation presents an owner other than the queue's owner.

    Attributes:
        expected_owner_id: Owner the queue/scheduler is bound to.
        actual_owner_id: Owner presented by the operation.
    """

    def __init__(self, expected_owner_id: str, actual_owner_id: str):
        self.expected_owner_id = expected_owner_id
        self.actual_owner_id = actual_owner_id
        super().__init__(
            f"Access denied: operation owner ({actual_owner_id}) does not match "
            f"queue owner ({expected_owner_id})"
        )


class ActiveUploadsError(UploadPipelineError):
    """Raised when tearing down a scheduler that still has uploads in flight."""

    def __init__(self, owner_id: str, active_count: int):
        self.owner_id = owner_id
        self.active_count = active_count
        super().__init__(
            f"Cannot destroy upload scheduler for owner {owner_id}: "
            f"{active_count} active upload(s)"
        )


class PersistenceError(UploadPipelineError):
    """Raised when the queue snapshot cannot be written to the key-value store."""

    pass


class InvalidStateTransitionError(Exception):
    """Raised when attempting an invalid UploadTask status transition.

    Only transitions defined in ``VALID_TRANSITIONS`` are allowed
    (e.g., a pending task can never jump straight to completed).

    Attributes:
        message: Human-readable error message describing the invalid transition.
        from_status: The current TaskStatus before the attempted transition.
        to_status: The TaskStatus that was attempted but is not valid.

    Example:
        >>> task.transition_to(TaskStatus.COMPLETED)  # task is pending
        InvalidStateTransitionError: Invalid transition: pending → completed
    """

    def __init__(self, message: str, from_status: "TaskStatus", to_status: "TaskStatus"):
        """Initialize InvalidStateTransitionError with transition details.

        Args:
            message: Human-readable error message.
            from_status: Current status before transition attempt.
            to_status: Target status that was attempted.
        """
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message)

    def __str__(self) -> str:
        """Return detailed error message with transition context."""
        base_message = super().__str__()
        return f"{base_message} (from={self.from_status.value}, to={self.to_status.value})"


# Failures that must finalize a task immediately instead of scheduling a retry
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (ValidationError, DecodeError)
