"""Pydantic schemas for upload tasks.

This module defines the Pydantic v2 model that IS the upload task record
(persisted verbatim as JSON in the owner's queue snapshot), the metadata
payload forwarded to remote processing, and the request/response schemas
used by the HTTP routes.

Schema Naming Convention:
    - UploadTask: The queue record (store-owned, mutated by the scheduler)
    - UploadMetadata: Opaque payload forwarded to the processing function
    - UploadStats: Aggregate counters for one owner's queue
    - EnqueueRequest / EnqueueResponse: POST /api/v1/uploads bodies

All schemas use Pydantic v2 syntax with model_config instead of class Config.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from upload_pipeline.exceptions import InvalidStateTransitionError
from upload_pipeline.models import VALID_TRANSITIONS, TaskStatus, utcnow


class UploadMetadata(BaseModel):
    """Structured payload forwarded verbatim to the remote processing step.

    Only ``id`` is interpreted by the pipeline (it names derived storage
    objects and becomes the task's ``remote_id``). Every other key is kept
    as-is, so callers can pass their full domain payload (title, ingredients,
    servings, ...).
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(
        ...,
        min_length=1,
        description="Domain identifier used to name derived storage objects",
        examples=["2b7f0c1e-5c8a-4f0e-9a43-5f1d7f4c9e21"],
    )
    thumbnail_url: str | None = Field(
        default=None,
        description="Public thumbnail URL, filled in after the thumbnail stage",
    )

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON payload sent to the processing function.

        ``thumbnail_url`` is only included once a thumbnail was uploaded.
        """
        payload = self.model_dump(mode="json")
        if payload.get("thumbnail_url") is None:
            payload.pop("thumbnail_url", None)
        return payload


class UploadTask(BaseModel):
    """The unit of work held by an owner's upload queue.

    Every query and mutation is scoped by ``owner_id``. The record is
    serialized as part of a full-snapshot write on every mutation.

    Invariants:
        - ``progress`` never decreases (see ``apply_progress``)
        - ``retry_count`` never exceeds ``max_retries``
        - status changes follow ``VALID_TRANSITIONS`` (see ``transition_to``)
    """

    id: str = Field(..., description="Task identifier, generated at enqueue")
    owner_id: str = Field(..., min_length=1, description="Owning user identifier")
    video_locator: str = Field(..., description="Local video file path or file:// URI")
    thumbnail_locator: str | None = Field(
        default=None, description="Optional local thumbnail path or file:// URI"
    )
    metadata: UploadMetadata
    status: TaskStatus = TaskStatus.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=1, ge=1)
    next_retry_at: datetime | None = Field(
        default=None, description="Earliest time a retried task may be admitted again"
    )
    # Telemetry and results, populated on success
    file_size_bytes: int | None = None
    upload_duration_ms: int | None = None
    final_video_url: str | None = None
    final_thumbnail_url: str | None = None
    remote_id: str | None = None

    def transition_to(self, status: TaskStatus) -> None:
        """Move the task to ``status`` if the state machine allows it.

        Raises:
            InvalidStateTransitionError: If the transition is not listed in
                VALID_TRANSITIONS for the current status.

        Example:
            >>> task.status
            <TaskStatus.PENDING: 'pending'>
            >>> task.transition_to(TaskStatus.COMPLETED)
            InvalidStateTransitionError: Invalid transition: pending → completed
        """
        allowed_transitions = VALID_TRANSITIONS.get(self.status, [])
        if status not in allowed_transitions:
            raise InvalidStateTransitionError(
                f"Invalid transition: {self.status.value} → {status.value}",
                from_status=self.status,
                to_status=status,
            )
        self.status = status

    def apply_progress(self, value: float) -> bool:
        """Raise stored progress to ``value``; lower values are discarded.

        Returns:
            True if the value was applied (>= current progress), False otherwise.
        """
        value = max(0.0, min(1.0, value))
        if value < self.progress:
            return False
        self.progress = value
        return True

    def reset_for_new_attempt(self) -> None:
        """Clear per-attempt state before a manual retry or resume."""
        self.progress = 0.0
        self.error = None
        self.retry_count = 0
        self.next_retry_at = None
        self.started_at = None
        self.completed_at = None

    def is_eligible(self, now: datetime) -> bool:
        """Return True if the task is pending and past its retry backoff."""
        if self.status != TaskStatus.PENDING:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now


class UploadStats(BaseModel):
    """Aggregate counters for one owner's queue.

    ``success_rate`` is a percentage of finished (completed + failed) tasks.
    """

    total: int = 0
    pending: int = 0
    uploading: int = 0
    completed: int = 0
    failed: int = 0
    paused: int = 0
    success_rate: float = 0.0


class EnqueueRequest(BaseModel):
    """Schema for POST /api/v1/uploads."""

    video_locator: str = Field(..., min_length=1, examples=["/data/captures/clip.mp4"])
    thumbnail_locator: str | None = Field(default=None, examples=["/data/captures/clip.jpg"])
    metadata: UploadMetadata
    max_retries: int | None = Field(default=None, ge=1, le=10)


class EnqueueResponse(BaseModel):
    """Schema returned after a successful enqueue."""

    task_id: str


class ActionResponse(BaseModel):
    """Schema for retry/cancel/resume/pause results."""

    task_id: str
    success: bool
