"""Upload task state machine and SQLAlchemy 2.0 ORM models.

This module contains the task status enum with its transition table, the
progress stage enum, and the single table backing the durable key-value
store. All models use the Mapped[type] annotation pattern required by
SQLAlchemy 2.0.

Upload tasks themselves are NOT rows: each owner's queue is stored as one
JSON snapshot value (see ``QueueStore``), so the only table is the generic
key-value table.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class TaskStatus(str, enum.Enum):
    """Upload task lifecycle.

    Happy Path:
        pending → uploading → completed

    Failure Paths:
        uploading → pending   (automatic retry with backoff)
        uploading → failed    (cancelled, non-retryable error, retries exhausted)
        failed → pending      (manual retry/resume)

    Pause:
        pending → paused → pending

    A task can never go from pending straight to completed.
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class UploadStage(str, enum.Enum):
    """Pipeline stage reported with every progress event."""

    THUMBNAIL = "thumbnail"
    VIDEO = "video"
    PROCESSING = "processing"
    COMPLETED = "completed"


# Allowed status transitions, enforced by UploadTask.transition_to()
VALID_TRANSITIONS: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.PENDING: [TaskStatus.UPLOADING, TaskStatus.PAUSED],
    TaskStatus.UPLOADING: [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.PENDING],
    TaskStatus.FAILED: [TaskStatus.PENDING],
    TaskStatus.PAUSED: [TaskStatus.PENDING],
    TaskStatus.COMPLETED: [],  # Terminal state - no transitions allowed
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class KeyValueEntry(Base):
    """One durable key-value record.

    Holds per-owner queue snapshots (``upload_queue:<owner_id>``) and
    completed-upload history (``upload_history:<owner_id>``). No
    transactional guarantees across keys are assumed by callers.

    Attributes:
        key: Record key (primary key, 255 chars max).
        value: Serialized JSON payload.
        updated_at: Last write timestamp (UTC).
    """

    __tablename__ = "upload_kv_store"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        """Return string representation for debugging (value length only)."""
        return f"<KeyValueEntry(key={self.key!r}, value_len={len(self.value or '')})>"
