"""UploadTask factories for test data generation.

Uses deterministic defaults with override support for specific test scenarios.
"""

import uuid
from datetime import datetime, timedelta, timezone

from upload_pipeline.models import TaskStatus
from upload_pipeline.schemas.task import UploadMetadata, UploadTask

BASE_TIME = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def create_upload_task(
    owner_id: str = "user-1",
    task_id: str | None = None,
    status: TaskStatus = TaskStatus.PENDING,
    metadata_id: str = "recipe-1",
    created_offset_seconds: int = 0,
    **kwargs,
) -> UploadTask:
    """Create an UploadTask with sensible defaults.

    Args:
        owner_id: Owning user (default: "user-1").
        task_id: Task id (default: auto-generated "upload_test_xxx").
        status: Initial status (default: pending).
        metadata_id: Metadata id (default: "recipe-1").
        created_offset_seconds: Seconds after BASE_TIME for created_at, to
            control ordering.
        **kwargs: Additional UploadTask fields.

    Example:
        >>> task = create_upload_task(status=TaskStatus.FAILED, retry_count=1)
    """
    if task_id is None:
        task_id = f"upload_test_{uuid.uuid4().hex[:8]}"

    fields = {
        "video_locator": f"/videos/{task_id}.mp4",
        "metadata": UploadMetadata(id=metadata_id, title="Test Recipe"),
        "created_at": BASE_TIME + timedelta(seconds=created_offset_seconds),
        "file_size_bytes": 1024,
    }
    fields.update(kwargs)

    return UploadTask(id=task_id, owner_id=owner_id, status=status, **fields)
