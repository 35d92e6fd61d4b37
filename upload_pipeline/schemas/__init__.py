"""Pydantic schemas for upload tasks, requests and events."""

from upload_pipeline.schemas.events import (
    ProgressEvent,
    UploadRetryingEvent,
    UploadSuccessEvent,
)
from upload_pipeline.schemas.task import (
    ActionResponse,
    EnqueueRequest,
    EnqueueResponse,
    UploadMetadata,
    UploadStats,
    UploadTask,
)

__all__ = [
    "ActionResponse",
    "EnqueueRequest",
    "EnqueueResponse",
    "ProgressEvent",
    "UploadMetadata",
    "UploadRetryingEvent",
    "UploadStats",
    "UploadSuccessEvent",
    "UploadTask",
]
