"""Pydantic payloads for upload queue events.

Event → payload:
    queueUpdated    list[UploadTask]
    uploadAdded     UploadTask
    uploadStarted   UploadTask
    uploadProgress  ProgressEvent
    uploadSuccess   UploadSuccessEvent
    uploadFailed    UploadTask
    uploadCancelled str (task id)
    uploadRetrying  UploadRetryingEvent
    uploadRetried   UploadTask
"""

from typing import Any

from pydantic import BaseModel, Field

from upload_pipeline.models import UploadStage
from upload_pipeline.schemas.task import UploadTask


class ProgressEvent(BaseModel):
    """Coalesced progress update for one task."""

    task_id: str
    owner_id: str
    progress: float = Field(..., ge=0.0, le=1.0)
    stage: UploadStage


class UploadSuccessEvent(BaseModel):
    """Emitted once a task reaches ``completed``."""

    task_id: str
    owner_id: str
    remote_id: str | None = None
    final_video_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UploadRetryingEvent(BaseModel):
    """Emitted when a failed attempt is rescheduled; lets observers show a countdown."""

    task: UploadTask
    next_retry_in_ms: int
