"""Upload Scheduler: per-owner admission, pipeline execution and retry policy.

One scheduler exists per owner (see SchedulerRegistry). It owns that
owner's QueueStore, EventBus and ProgressBroadcaster, and drives every task
through the upload pipeline.

Architecture Pattern:
    - Non-Reentrant Pass: ``process_queue`` never overlaps itself. A trigger
      arriving mid-pass is coalesced into one follow-up pass.
    - Bounded Admission: at most ``max_concurrent`` tasks are ``uploading``.
    - Sequential Throttle: admitted tasks run one after another with
      ``inter_task_delay`` between them, so a pass finishes a task before
      starting the next.
    - Persist Before Emit: every status change is written to the store
      before the corresponding event fires.
    - Source Confinement: locators must resolve inside
      ``{source_root}/{owner_id}/``, checked at enqueue and before reading.

Pipeline (per task):
    thumbnail (optional)  progress 0.05 → 0.15
    raw video upload      progress 0.2 → 0.85 (uploader fraction mapped in)
    remote processing     progress 0.9
    completed             progress 1.0

Retry Policy:
    - Retryable failure: retry_count += 1; if retry_count < max_retries the
      task returns to ``pending`` behind an exponential backoff
      (``next_retry_at``), otherwise it becomes ``failed``.
    - ValidationError / DecodeError: ``failed`` immediately, no retry.
    - Cancellation: the task is removed by ``cancel``; nothing more is done.

Usage:
    scheduler = UploadScheduler("user-1", store, uploader, invoker, reader)
    await scheduler.start()
    task_id = await scheduler.enqueue("/data/clip.mp4", None, {"id": "recipe-1"})
"""

import asyncio
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from upload_pipeline.config import UploadSettings
from upload_pipeline.exceptions import (
    NON_RETRYABLE_ERRORS,
    OwnerMismatchError,
    QueueFullError,
    UploadCancelledError,
    UploadPipelineError,
    ValidationError,
)
from upload_pipeline.models import TaskStatus, UploadStage, utcnow
from upload_pipeline.schemas.events import UploadRetryingEvent, UploadSuccessEvent
from upload_pipeline.schemas.task import UploadMetadata, UploadStats, UploadTask
from upload_pipeline.services.asset_uploader import AssetUploader, validate_video_file
from upload_pipeline.services.events import EventBus, Listener, UploadEvent
from upload_pipeline.services.processing_invoker import RemoteProcessingInvoker
from upload_pipeline.services.progress import ProgressBroadcaster
from upload_pipeline.services.queue_store import QUEUE_FULL_MESSAGE, QueueStore
from upload_pipeline.utils.cancellation import CancellationToken
from upload_pipeline.utils.filesystem import FileReader, confine_locator, owner_source_dir
from upload_pipeline.utils.logging import get_logger

# Overall progress bands
THUMBNAIL_START = 0.05
THUMBNAIL_DONE = 0.15
VIDEO_START = 0.2
VIDEO_DONE = 0.85
PROCESSING_START = 0.9
COMPLETE = 1.0

USER_CANCELLED_MESSAGE = "Upload was cancelled by user"
DESTROYED_MESSAGE = "Upload scheduler destroyed"


@dataclass
class PipelineResult:
    """Outputs of a successful pipeline run."""

    video_file_name: str
    thumbnail_url: str | None
    metadata: UploadMetadata


class UploadScheduler:
    """Admits and runs one owner's upload tasks.

    Attributes:
        owner_id: Owner whose queue this scheduler drives.
        store: Owner-scoped task store.
        uploader: Thumbnail/video uploader.
        invoker: Remote processing invoker.
        file_reader: Reader used for enqueue-time file validation.
        settings: Concurrency, retry and delay configuration.
        events: Event bus for observers.
        progress: Throttled progress broadcaster.
    """

    def __init__(
        self,
        owner_id: str,
        store: QueueStore,
        uploader: AssetUploader,
        invoker: RemoteProcessingInvoker,
        file_reader: FileReader,
        settings: UploadSettings | None = None,
        events: EventBus | None = None,
    ) -> None:
        if not owner_id:
            raise ValueError("Owner ID is required for UploadScheduler")
        if store.owner_id != owner_id:
            raise OwnerMismatchError(owner_id, store.owner_id)

        self.owner_id = owner_id
        self.store = store
        self.uploader = uploader
        self.invoker = invoker
        self.file_reader = file_reader
        self.settings = settings or UploadSettings()
        self.events = events or EventBus()
        self.progress = ProgressBroadcaster(
            owner_id,
            store,
            self.events,
            throttle_interval=self.settings.progress_throttle,
            min_delta=self.settings.progress_min_delta,
        )

        self._active: dict[str, CancellationToken] = {}
        self._timers: set[asyncio.Task] = set()
        self._is_processing = False
        self._pass_requested = False
        self._destroyed = False
        self.log = get_logger(__name__).bind(owner_id=owner_id)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on(self, event: UploadEvent, listener: Listener):
        """Register an event listener; returns an unsubscribe callable."""
        return self.events.on(event, listener)

    def off(self, event: UploadEvent, listener: Listener) -> bool:
        return self.events.off(event, listener)

    def _snapshot(self) -> list[UploadTask]:
        return [task.model_copy(deep=True) for task in self.store.list_by_status(self.owner_id)]

    def _emit_task(self, event: UploadEvent, task: UploadTask) -> None:
        self.events.emit(event, task.model_copy(deep=True))

    def _emit_queue_updated(self) -> None:
        self.events.emit(UploadEvent.QUEUE_UPDATED, self._snapshot())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        """True while a queue pass is running."""
        return self._is_processing

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def active_uploads_count(self) -> int:
        """Number of tasks currently ``uploading``."""
        return self.store.count_by_status(TaskStatus.UPLOADING)

    def _check_owner(self, owner_id: str | None) -> None:
        if owner_id is not None and owner_id != self.owner_id:
            raise OwnerMismatchError(self.owner_id, owner_id)

    def _confine(self, locator: str) -> None:
        try:
            confine_locator(locator, owner_source_dir(self.settings.source_root, self.owner_id))
        except ValueError as e:
            raise ValidationError(f"File validation failed: {e}") from e

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise UploadPipelineError(f"Upload scheduler for {self.owner_id} has been destroyed")

    def eligible_pending(self) -> list[UploadTask]:
        """Pending tasks past their retry backoff, oldest first."""
        now = utcnow()
        return [
            task
            for task in self.store.list_by_status(self.owner_id, TaskStatus.PENDING)
            if task.is_eligible(now)
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> list[UploadTask]:
        """Reload the persisted queue and schedule a pass for pending work.

        Returns:
            Copies of the reloaded tasks.
        """
        self._ensure_alive()
        tasks = await self.store.reload()

        if any(task.status == TaskStatus.PENDING for task in tasks):
            self._schedule_pass(self.settings.reload_delay)

        self.log.info("upload_scheduler_started", task_count=len(tasks))
        self._emit_queue_updated()
        return self._snapshot()

    def destroy(self) -> None:
        """Abort in-flight uploads, cancel timers and drop listeners.

        Persisted tasks are left as-is; ``uploading`` ones are reset on the
        next ``start``.
        """
        if self._destroyed:
            return
        self._destroyed = True

        for token in self._active.values():
            token.cancel(DESTROYED_MESSAGE)
        for timer in list(self._timers):
            timer.cancel()

        self.progress.clear()
        self.events.remove_all_listeners()
        self.log.info("upload_scheduler_destroyed", active_uploads=len(self._active))

    # ------------------------------------------------------------------
    # Queue API
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        video_locator: str,
        thumbnail_locator: str | None,
        metadata: UploadMetadata | Mapping[str, Any],
        max_retries: int | None = None,
        owner_id: str | None = None,
    ) -> str:
        """Validate a local video and queue it for upload.

        Args:
            video_locator: Local video path or file:// URI.
            thumbnail_locator: Optional local thumbnail path or URI.
            metadata: Payload forwarded to processing (must carry ``id``).
            max_retries: Attempts allowed for this task (default from settings).
            owner_id: Caller's owner id; must match the scheduler's owner.

        Returns:
            The new task id.

        Raises:
            OwnerMismatchError: If owner_id belongs to someone else.
            QueueFullError: If the queue holds max_queue_size tasks.
            ValidationError: If metadata is invalid, a locator points outside
                the owner's source directory, or the video file is missing,
                empty or over the size ceiling.
        """
        self._ensure_alive()
        self._check_owner(owner_id)

        if not isinstance(metadata, UploadMetadata):
            try:
                metadata = UploadMetadata.model_validate(dict(metadata))
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid upload metadata: {e}") from e

        if self.store.is_full:
            raise QueueFullError(QUEUE_FULL_MESSAGE)

        self._confine(video_locator)
        if thumbnail_locator:
            self._confine(thumbnail_locator)

        try:
            info = await self.file_reader.stat(video_locator)
        except (OSError, ValueError) as e:
            raise ValidationError(f"File validation failed: {e}") from e
        validate_video_file(info, video_locator, self.settings.max_file_size_bytes)

        task = UploadTask(
            id=f"upload_{uuid.uuid4().hex}",
            owner_id=self.owner_id,
            video_locator=video_locator,
            thumbnail_locator=thumbnail_locator,
            metadata=metadata,
            max_retries=max_retries or self.settings.default_max_retries,
            file_size_bytes=info.size,
        )
        await self.store.enqueue(task)

        self.log.info(
            "upload_queued",
            task_id=task.id,
            metadata_id=metadata.id,
            file_size_bytes=info.size,
            max_retries=task.max_retries,
        )
        self._emit_queue_updated()
        self._emit_task(UploadEvent.UPLOAD_ADDED, task)

        self._schedule_pass(self.settings.enqueue_delay)
        return task.id

    def list_tasks(
        self, status: TaskStatus | None = None, owner_id: str | None = None
    ) -> list[UploadTask]:
        """Return copies of the owner's tasks.

        Ordering: failed newest first, completed most recently completed
        first, everything else oldest first.
        """
        self._check_owner(owner_id)
        tasks = [
            task.model_copy(deep=True)
            for task in self.store.list_by_status(self.owner_id, status)
        ]

        if status == TaskStatus.FAILED:
            tasks.sort(key=lambda task: task.created_at, reverse=True)
        elif status == TaskStatus.COMPLETED:
            tasks.sort(key=lambda task: task.completed_at or task.created_at, reverse=True)
        return tasks

    def get_task(self, task_id: str, owner_id: str | None = None) -> UploadTask | None:
        """Return a copy of one task, or None if it is not queued."""
        self._check_owner(owner_id)
        task = self.store.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    def get_stats(self, owner_id: str | None = None) -> UploadStats:
        """Aggregate counters over the owner's queue."""
        self._check_owner(owner_id)
        tasks = self.store.list_by_status(self.owner_id)
        counts = {status: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status] += 1

        finished = counts[TaskStatus.COMPLETED] + counts[TaskStatus.FAILED]
        success_rate = counts[TaskStatus.COMPLETED] / finished * 100 if finished else 0.0

        return UploadStats(
            total=len(tasks),
            pending=counts[TaskStatus.PENDING],
            uploading=counts[TaskStatus.UPLOADING],
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
            paused=counts[TaskStatus.PAUSED],
            success_rate=success_rate,
        )

    async def retry(self, task_id: str, owner_id: str | None = None) -> bool:
        """Return a failed task to ``pending`` with a fresh attempt budget.

        Returns:
            False if the task is unknown or not ``failed``.
        """
        self._ensure_alive()
        self._check_owner(owner_id)
        task = self.store.get(task_id)
        if task is None or task.status != TaskStatus.FAILED:
            return False

        task.transition_to(TaskStatus.PENDING)
        task.reset_for_new_attempt()
        self.progress.reset(task.id)
        await self.store.update(task)

        self.log.info("upload_retry_requested", task_id=task.id)
        self._emit_task(UploadEvent.UPLOAD_RETRIED, task)
        self._emit_queue_updated()

        self._schedule_pass(self.settings.retry_delay)
        return True

    async def cancel(self, task_id: str, owner_id: str | None = None) -> bool:
        """Abort a task (in flight or not) and remove it from the queue.

        Returns:
            False if the task is unknown.
        """
        self._check_owner(owner_id)
        task = self.store.get(task_id)
        if task is None:
            return False

        token = self._active.get(task_id)
        if token is not None:
            token.cancel(USER_CANCELLED_MESSAGE)

        await self.store.remove(task_id)
        self.progress.reset(task_id)

        self.log.info("upload_cancelled", task_id=task_id, was_active=token is not None)
        self.events.emit(UploadEvent.UPLOAD_CANCELLED, task_id)
        self._emit_queue_updated()
        return True

    async def resume(self, task_id: str, owner_id: str | None = None) -> bool:
        """Return a paused or failed task to ``pending``.

        Returns:
            False if the task is unknown or neither paused nor failed.
        """
        self._ensure_alive()
        self._check_owner(owner_id)
        task = self.store.get(task_id)
        if task is None or task.status not in (TaskStatus.PAUSED, TaskStatus.FAILED):
            return False

        task.transition_to(TaskStatus.PENDING)
        task.reset_for_new_attempt()
        self.progress.reset(task.id)
        await self.store.update(task)

        self.log.info("upload_resumed", task_id=task.id)
        self._emit_queue_updated()

        self._schedule_pass(self.settings.resume_delay)
        return True

    async def pause(self, task_id: str, owner_id: str | None = None) -> bool:
        """Hold a pending task out of admission until it is resumed.

        Returns:
            False if the task is unknown or not ``pending``.
        """
        self._check_owner(owner_id)
        task = self.store.get(task_id)
        if task is None or task.status != TaskStatus.PENDING:
            return False

        task.transition_to(TaskStatus.PAUSED)
        await self.store.update(task)

        self.log.info("upload_paused", task_id=task.id)
        self._emit_queue_updated()
        return True

    async def clear_completed(self, owner_id: str | None = None) -> int:
        """Archive completed tasks to history and drop them from the queue.

        Returns:
            Number of tasks archived.
        """
        self._check_owner(owner_id)
        completed = self.store.list_by_status(self.owner_id, TaskStatus.COMPLETED)
        if completed:
            await self.store.archive_completed(completed)
            await self.store.remove_many(task.id for task in completed)
            for task in completed:
                self.progress.reset(task.id)

        self.log.info("completed_uploads_cleared", count=len(completed))
        self._emit_queue_updated()
        return len(completed)

    async def get_completed_history(self, owner_id: str | None = None) -> list[UploadTask]:
        self._check_owner(owner_id)
        return await self.store.get_history()

    async def clear_completed_history(self, owner_id: str | None = None) -> None:
        self._check_owner(owner_id)
        await self.store.clear_history()

    # ------------------------------------------------------------------
    # Queue processing
    # ------------------------------------------------------------------

    def _schedule_pass(self, delay: float) -> None:
        """Run ``process_queue`` after ``delay`` seconds (tracked, cancellable)."""
        if self._destroyed:
            return

        async def _delayed_pass() -> None:
            await asyncio.sleep(delay)
            await self.process_queue()

        timer = asyncio.create_task(_delayed_pass())
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def process_queue(self) -> None:
        """Run one admission pass.

        Admits up to ``max_concurrent - active`` eligible pending tasks,
        oldest first, and runs them one after another. Returns immediately
        (requesting a follow-up pass) if a pass is already running.
        """
        if self._destroyed:
            return
        if self._is_processing:
            self._pass_requested = True
            return

        self._is_processing = True
        try:
            available = self.settings.max_concurrent - self.active_uploads_count
            if available <= 0:
                self.log.debug("queue_pass_at_capacity", active=self.active_uploads_count)
                return

            for task in self.eligible_pending()[:available]:
                if self._destroyed:
                    break
                # Cancelled or paused while an earlier task was running
                if self.store.get(task.id) is not task or task.status != TaskStatus.PENDING:
                    continue

                try:
                    await self._run_task(task)
                except Exception as e:
                    self.log.error(
                        "upload_run_unexpected_error",
                        task_id=task.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                await asyncio.sleep(self.settings.inter_task_delay)
        except Exception as e:
            self.log.error("queue_pass_failed", error=str(e), error_type=type(e).__name__)
        finally:
            self._is_processing = False
            if self._pass_requested and not self._destroyed:
                self._pass_requested = False
                self._schedule_pass(0)

    async def _run_task(self, task: UploadTask) -> None:
        if task.id in self._active:
            self.log.warning("upload_already_active", task_id=task.id)
            return

        token = CancellationToken()
        self._active[task.id] = token
        try:
            try:
                task.transition_to(TaskStatus.UPLOADING)
                task.started_at = utcnow()
                task.next_retry_at = None
                await self.store.update(task)

                self.log.info(
                    "upload_started",
                    task_id=task.id,
                    attempt=task.retry_count + 1,
                    max_retries=task.max_retries,
                )
                self._emit_task(UploadEvent.UPLOAD_STARTED, task)
                self._emit_queue_updated()

                result = await self._execute_pipeline(task, token)
                await self._complete(task, result)
            except Exception as e:
                await self._handle_failure(task, e)
        finally:
            self._active.pop(task.id, None)

    async def _execute_pipeline(
        self, task: UploadTask, token: CancellationToken
    ) -> PipelineResult:
        publish = self.progress.publish

        # Queues persisted before a source root change are checked again here
        self._confine(task.video_locator)
        if task.thumbnail_locator:
            self._confine(task.thumbnail_locator)

        thumbnail_url: str | None = None
        if task.thumbnail_locator:
            publish(task.id, THUMBNAIL_START, UploadStage.THUMBNAIL)
            thumbnail_url = await self.uploader.upload_thumbnail(
                task.thumbnail_locator, task.metadata.id, self.owner_id, token
            )
            publish(task.id, THUMBNAIL_DONE, UploadStage.THUMBNAIL)

        publish(task.id, VIDEO_START, UploadStage.VIDEO)

        def on_video_progress(fraction: float) -> None:
            publish(
                task.id,
                VIDEO_START + fraction * (VIDEO_DONE - VIDEO_START),
                UploadStage.VIDEO,
            )

        video_file_name = await self.uploader.upload_video(
            task.video_locator, task.metadata.id, token, on_video_progress
        )
        publish(task.id, VIDEO_DONE, UploadStage.VIDEO)

        metadata = task.metadata
        if thumbnail_url:
            metadata = metadata.model_copy(update={"thumbnail_url": thumbnail_url})

        publish(task.id, PROCESSING_START, UploadStage.PROCESSING)
        await self.invoker.invoke(video_file_name, metadata, token)
        token.raise_if_cancelled()

        return PipelineResult(
            video_file_name=video_file_name,
            thumbnail_url=thumbnail_url,
            metadata=metadata,
        )

    async def _complete(self, task: UploadTask, result: PipelineResult) -> None:
        now = utcnow()
        task.transition_to(TaskStatus.COMPLETED)
        task.apply_progress(COMPLETE)
        task.completed_at = now
        task.error = None
        task.next_retry_at = None
        if task.started_at is not None:
            task.upload_duration_ms = int((now - task.started_at).total_seconds() * 1000)
        task.remote_id = task.metadata.id
        task.final_video_url = self.uploader.video_public_url(result.video_file_name)
        task.final_thumbnail_url = result.thumbnail_url
        await self.store.update(task)

        self.progress.publish(task.id, COMPLETE, UploadStage.COMPLETED)
        self.progress.reset(task.id)

        self.log.info(
            "upload_completed",
            task_id=task.id,
            remote_id=task.remote_id,
            duration_ms=task.upload_duration_ms,
            file_size_bytes=task.file_size_bytes,
            attempts=task.retry_count + 1,
        )
        self.events.emit(
            UploadEvent.UPLOAD_SUCCESS,
            UploadSuccessEvent(
                task_id=task.id,
                owner_id=self.owner_id,
                remote_id=task.remote_id,
                final_video_url=task.final_video_url,
                metadata=result.metadata.to_payload(),
            ),
        )
        self._emit_queue_updated()

        self._schedule_pass(self.settings.completion_cooldown)

    async def _handle_failure(self, task: UploadTask, error: Exception) -> None:
        if self.store.get(task.id) is not task:
            # Removed by cancel(), which already notified observers
            self.log.info("upload_aborted_after_removal", task_id=task.id)
            return
        if self._destroyed:
            # Left as uploading; the next start() resets it to pending
            self.log.info("upload_aborted_by_shutdown", task_id=task.id)
            return
        if task.status != TaskStatus.UPLOADING:
            self.log.error(
                "upload_failure_in_unexpected_state",
                task_id=task.id,
                status=task.status.value,
                error=str(error),
            )
            return

        message = str(error) or type(error).__name__

        if isinstance(error, UploadCancelledError):
            task.transition_to(TaskStatus.FAILED)
            task.error = message
            await self.store.update(task)
            self.log.info("upload_cancelled_in_flight", task_id=task.id, reason=message)
            self.events.emit(UploadEvent.UPLOAD_CANCELLED, task.id)
            self._emit_queue_updated()
            return

        if isinstance(error, NON_RETRYABLE_ERRORS):
            task.transition_to(TaskStatus.FAILED)
            task.error = message
            await self.store.update(task)
            self.log.error(
                "upload_failed_permanently",
                task_id=task.id,
                error=message,
                error_type=type(error).__name__,
                retryable=False,
            )
            self._emit_task(UploadEvent.UPLOAD_FAILED, task)
            self._emit_queue_updated()
            self._schedule_pass(self.settings.failure_cooldown)
            return

        task.retry_count += 1
        task.error = message

        if task.retry_count < task.max_retries:
            delay = self.settings.backoff_delay(task.retry_count)
            task.transition_to(TaskStatus.PENDING)
            task.next_retry_at = utcnow() + timedelta(seconds=delay)
            await self.store.update(task)

            self.log.warning(
                "upload_retry_scheduled",
                task_id=task.id,
                retry_count=task.retry_count,
                max_retries=task.max_retries,
                delay_seconds=delay,
                error=message,
                error_type=type(error).__name__,
            )
            self.events.emit(
                UploadEvent.UPLOAD_RETRYING,
                UploadRetryingEvent(
                    task=task.model_copy(deep=True),
                    next_retry_in_ms=int(delay * 1000),
                ),
            )
            self._emit_queue_updated()
            self._schedule_pass(delay)
            return

        task.transition_to(TaskStatus.FAILED)
        task.error = f"Upload failed after {task.max_retries} retries: {message}"
        await self.store.update(task)

        self.log.error(
            "upload_failed_permanently",
            task_id=task.id,
            retry_count=task.retry_count,
            error=message,
            error_type=type(error).__name__,
            retryable=True,
        )
        self._emit_task(UploadEvent.UPLOAD_FAILED, task)
        self._emit_queue_updated()
        self._schedule_pass(self.settings.failure_cooldown)
