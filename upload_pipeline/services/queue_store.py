"""Queue Store: owner-scoped upload task records with crash-safe persistence.

This module owns every UploadTask of one owner. The scheduler and the public
queue API mutate tasks only through this store, and every mutation is
followed by a full-snapshot write to the durable key-value store.

Persistence Layout:
    upload_queue:<owner_id>    JSON list of UploadTask (live queue)
    upload_history:<owner_id>  JSON list of UploadTask (archived completed, bounded)

Crash Recovery (reload):
    - Records whose owner_id differs from the store's owner are dropped with
      a warning, never merged.
    - Tasks persisted as ``uploading`` cannot have survived the restart; they
      are reset to ``pending`` with progress 0.
    - A corrupt snapshot is logged, removed, and treated as an empty queue.

Usage:
    store = QueueStore("user-1", kv_store, max_queue_size=20)
    await store.reload()
    await store.enqueue(task)
    pending = store.list_by_status("user-1", TaskStatus.PENDING)
"""

import asyncio
import json
from collections.abc import Iterable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from upload_pipeline.config import DEFAULT_MAX_HISTORY, DEFAULT_MAX_QUEUE_SIZE
from upload_pipeline.exceptions import OwnerMismatchError, PersistenceError, QueueFullError
from upload_pipeline.models import TaskStatus
from upload_pipeline.schemas.task import UploadTask
from upload_pipeline.services.kv_store import KeyValueStore
from upload_pipeline.utils.logging import get_logger

QUEUE_KEY_PREFIX = "upload_queue"
HISTORY_KEY_PREFIX = "upload_history"

_TASK_LIST = TypeAdapter(list[UploadTask])

QUEUE_FULL_MESSAGE = (
    "Upload queue is full. Please wait for current uploads to complete "
    "or clear completed uploads."
)


def queue_key(owner_id: str) -> str:
    """Key of an owner's live queue snapshot."""
    return f"{QUEUE_KEY_PREFIX}:{owner_id}"


def history_key(owner_id: str) -> str:
    """Key of an owner's completed-upload history."""
    return f"{HISTORY_KEY_PREFIX}:{owner_id}"


class QueueStore:
    """Owns one owner's UploadTask records.

    Attributes:
        owner_id: Owner every record belongs to.
        kv_store: Durable key-value store.
        max_queue_size: Maximum tasks held across all statuses.
        max_history: Maximum archived completed tasks.
    """

    def __init__(
        self,
        owner_id: str,
        kv_store: KeyValueStore,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        if not owner_id:
            raise ValueError("Owner ID is required for QueueStore")

        self.owner_id = owner_id
        self.kv_store = kv_store
        self.max_queue_size = max_queue_size
        self.max_history = max_history
        self._tasks: dict[str, UploadTask] = {}
        self._write_lock = asyncio.Lock()
        self.log = get_logger(__name__).bind(owner_id=owner_id)

    def _check_owner(self, owner_id: str) -> None:
        if owner_id != self.owner_id:
            raise OwnerMismatchError(self.owner_id, owner_id)

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def is_full(self) -> bool:
        """True when no further task can be enqueued."""
        return len(self._tasks) >= self.max_queue_size

    async def enqueue(self, task: UploadTask) -> None:
        """Add a new task and persist the queue.

        Raises:
            OwnerMismatchError: If the task belongs to another owner.
            QueueFullError: If the queue already holds max_queue_size tasks.
            ValueError: If a task with the same id already exists.
            PersistenceError: If the snapshot cannot be written (task not kept).
        """
        self._check_owner(task.owner_id)

        if self.is_full:
            raise QueueFullError(QUEUE_FULL_MESSAGE)
        if task.id in self._tasks:
            raise ValueError(f"Task already queued: {task.id}")

        self._tasks[task.id] = task
        try:
            await self.persist()
        except PersistenceError:
            self._tasks.pop(task.id, None)
            raise

    def get(self, task_id: str) -> UploadTask | None:
        """Return the stored task (the live record, not a copy)."""
        return self._tasks.get(task_id)

    def list_by_status(
        self, owner_id: str, status: TaskStatus | None = None
    ) -> list[UploadTask]:
        """Return the owner's tasks, oldest first, optionally filtered by status.

        Raises:
            OwnerMismatchError: If owner_id is not this store's owner.
        """
        self._check_owner(owner_id)
        tasks = [
            task
            for task in self._tasks.values()
            if task.owner_id == owner_id and (status is None or task.status == status)
        ]
        return sorted(tasks, key=lambda task: task.created_at)

    def count_by_status(self, status: TaskStatus) -> int:
        return sum(1 for task in self._tasks.values() if task.status == status)

    async def update(self, task: UploadTask) -> None:
        """Store a mutated task and persist the queue.

        Raises:
            OwnerMismatchError: If the task belongs to another owner.
            KeyError: If the task is not in the queue (e.g., it was cancelled).
        """
        self._check_owner(task.owner_id)
        if task.id not in self._tasks:
            raise KeyError(task.id)

        self._tasks[task.id] = task
        await self.persist()

    def apply_progress(self, task_id: str, value: float) -> bool:
        """Raise a task's in-memory progress; lower values are discarded.

        Progress is not persisted on every tick: a reloaded ``uploading``
        task restarts from 0 anyway.

        Returns:
            True if the task exists and the value was applied.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return False
        return task.apply_progress(value)

    async def remove(self, task_id: str) -> UploadTask | None:
        """Remove a task and persist the queue.

        Returns:
            The removed task, or None if it was not queued.
        """
        task = self._tasks.pop(task_id, None)
        if task is not None:
            await self.persist()
        return task

    async def remove_many(self, task_ids: Iterable[str]) -> int:
        """Remove several tasks with a single snapshot write."""
        removed = 0
        for task_id in task_ids:
            if self._tasks.pop(task_id, None) is not None:
                removed += 1
        if removed:
            await self.persist()
        return removed

    async def persist(self) -> None:
        """Write the full queue snapshot.

        Raises:
            PersistenceError: If the key-value store rejects the write.
        """
        tasks = [task for task in self._tasks.values() if task.owner_id == self.owner_id]
        snapshot = _TASK_LIST.dump_json(tasks).decode()

        async with self._write_lock:
            try:
                await self.kv_store.set(queue_key(self.owner_id), snapshot)
            except Exception as e:
                self.log.error("queue_persist_failed", task_count=len(tasks), error=str(e))
                raise PersistenceError(f"Failed to persist upload queue: {e}") from e

        self.log.debug("queue_persisted", task_count=len(tasks))

    def _parse_tasks(self, raw: str, key: str) -> list[UploadTask]:
        """Parse a stored task list, dropping invalid and foreign-owner records.

        Raises:
            ValueError: If ``raw`` is not a JSON list.
        """
        entries = json.loads(raw)
        if not isinstance(entries, list):
            raise ValueError(f"Expected a JSON list at {key}")

        tasks: list[UploadTask] = []
        for entry in entries:
            try:
                task = UploadTask.model_validate(entry)
            except PydanticValidationError as e:
                self.log.warning("invalid_task_record_dropped", key=key, error=str(e)[:200])
                continue

            if task.owner_id != self.owner_id:
                self.log.warning(
                    "foreign_owner_record_dropped",
                    key=key,
                    task_id=task.id,
                    record_owner_id=task.owner_id,
                )
                continue

            tasks.append(task)
        return tasks

    async def reload(self) -> list[UploadTask]:
        """Replace in-memory tasks with the persisted snapshot.

        Returns:
            The reloaded tasks, oldest first.
        """
        key = queue_key(self.owner_id)
        raw = await self.kv_store.get(key)

        if raw is None:
            self._tasks = {}
            return []

        try:
            tasks = self._parse_tasks(raw, key)
        except ValueError as e:
            self.log.error("queue_snapshot_corrupt", key=key, error=str(e))
            await self.kv_store.remove(key)
            self._tasks = {}
            return []

        reset_count = 0
        for task in tasks:
            if task.status == TaskStatus.UPLOADING:
                task.transition_to(TaskStatus.PENDING)
                task.progress = 0.0
                task.started_at = None
                reset_count += 1
            task.next_retry_at = None

        self._tasks = {task.id: task for task in tasks}

        self.log.info("queue_reloaded", task_count=len(tasks), reset_uploading=reset_count)
        return self.list_by_status(self.owner_id)

    async def get_history(self) -> list[UploadTask]:
        """Return archived completed tasks, most recently completed first."""
        key = history_key(self.owner_id)
        raw = await self.kv_store.get(key)
        if raw is None:
            return []

        try:
            tasks = self._parse_tasks(raw, key)
        except ValueError as e:
            self.log.error("history_snapshot_corrupt", key=key, error=str(e))
            return []

        return sorted(
            tasks,
            key=lambda task: task.completed_at or task.created_at,
            reverse=True,
        )

    async def archive_completed(self, tasks: list[UploadTask]) -> None:
        """Prepend completed tasks to the bounded history.

        Raises:
            PersistenceError: If the history cannot be written; callers must
                not drop the tasks from the live queue in that case.
        """
        for task in tasks:
            self._check_owner(task.owner_id)

        existing = await self.get_history()
        archived_ids = {task.id for task in tasks}
        history = [*tasks, *(task for task in existing if task.id not in archived_ids)]
        history = history[: self.max_history]

        try:
            await self.kv_store.set(
                history_key(self.owner_id), _TASK_LIST.dump_json(history).decode()
            )
        except Exception as e:
            self.log.error("history_persist_failed", error=str(e))
            raise PersistenceError(f"Failed to archive completed uploads: {e}") from e

        self.log.info("uploads_archived", archived=len(tasks), history_size=len(history))

    async def clear_history(self) -> None:
        """Delete the owner's completed-upload history."""
        await self.kv_store.remove(history_key(self.owner_id))
        self.log.info("history_cleared")
