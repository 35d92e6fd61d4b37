"""Upload queue routes.

This module exposes one owner's upload queue over HTTP:
- POST   /api/v1/uploads                  - Enqueue a local video
- GET    /api/v1/uploads                  - List tasks (optional ?status=)
- GET    /api/v1/uploads/stats            - Queue counters
- GET    /api/v1/uploads/history          - Archived completed uploads
- DELETE /api/v1/uploads/history          - Clear archived uploads
- POST   /api/v1/uploads/clear-completed  - Archive completed tasks
- GET    /api/v1/uploads/{task_id}        - One task
- POST   /api/v1/uploads/{task_id}/retry  - Retry a failed task
- POST   /api/v1/uploads/{task_id}/resume - Resume a paused or failed task
- POST   /api/v1/uploads/{task_id}/pause  - Pause a pending task
- DELETE /api/v1/uploads/{task_id}        - Cancel a task

The caller's owner id comes from the ``X-Owner-Id`` header; every call is
routed to that owner's scheduler only.
"""

from typing import NoReturn

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from upload_pipeline.exceptions import (
    OwnerMismatchError,
    PersistenceError,
    QueueFullError,
    UploadPipelineError,
    ValidationError,
)
from upload_pipeline.models import TaskStatus
from upload_pipeline.schemas.task import (
    ActionResponse,
    EnqueueRequest,
    EnqueueResponse,
    UploadStats,
    UploadTask,
)
from upload_pipeline.services.registry import SchedulerRegistry
from upload_pipeline.services.scheduler import UploadScheduler

log = structlog.get_logger()
router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])


def get_registry(request: Request) -> SchedulerRegistry:
    """Return the app's SchedulerRegistry (503 if storage is not configured)."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upload service is not configured",
        )
    return registry


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Return the caller's owner id from the X-Owner-Id header."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing owner id")
    return x_owner_id.strip()


async def get_scheduler(
    owner_id: str = Depends(get_owner_id),
    registry: SchedulerRegistry = Depends(get_registry),
) -> UploadScheduler:
    try:
        return await registry.get_or_create(owner_id)
    except UploadPipelineError as e:
        _raise_http(e, owner_id)


def _raise_http(error: UploadPipelineError, owner_id: str) -> NoReturn:
    """Translate a pipeline error into an HTTPException."""
    if isinstance(error, QueueFullError):
        code = status.HTTP_429_TOO_MANY_REQUESTS
    elif isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, OwnerMismatchError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, PersistenceError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    log.warning(
        "upload_request_rejected",
        owner_id=owner_id,
        status_code=code,
        error=str(error),
        error_type=type(error).__name__,
    )
    raise HTTPException(status_code=code, detail=str(error)) from error


def _not_found(task_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail=f"Task not found: {task_id}"
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=EnqueueResponse)
async def enqueue_upload(
    body: EnqueueRequest,
    scheduler: UploadScheduler = Depends(get_scheduler),
) -> EnqueueResponse:
    """Queue a local video (and optional thumbnail) for background upload.

    Returns:
        201 Created: Task queued
        400 Bad Request: File outside the owner's source directory, missing, empty or too large
        429 Too Many Requests: Queue is full
    """
    try:
        task_id = await scheduler.enqueue(
            body.video_locator,
            body.thumbnail_locator,
            body.metadata,
            max_retries=body.max_retries,
        )
    except UploadPipelineError as e:
        _raise_http(e, scheduler.owner_id)

    log.info("upload_enqueued_via_api", owner_id=scheduler.owner_id, task_id=task_id)
    return EnqueueResponse(task_id=task_id)


@router.get("", response_model=list[UploadTask])
async def list_uploads(
    task_status: TaskStatus | None = Query(default=None, alias="status"),
    scheduler: UploadScheduler = Depends(get_scheduler),
) -> list[UploadTask]:
    return scheduler.list_tasks(task_status)


@router.get("/stats", response_model=UploadStats)
async def get_upload_stats(scheduler: UploadScheduler = Depends(get_scheduler)) -> UploadStats:
    return scheduler.get_stats()


@router.get("/history", response_model=list[UploadTask])
async def get_upload_history(
    scheduler: UploadScheduler = Depends(get_scheduler),
) -> list[UploadTask]:
    return await scheduler.get_completed_history()


@router.delete("/history", status_code=status.HTTP_204_NO_CONTENT)
async def clear_upload_history(scheduler: UploadScheduler = Depends(get_scheduler)) -> None:
    await scheduler.clear_completed_history()


@router.post("/clear-completed")
async def clear_completed_uploads(
    scheduler: UploadScheduler = Depends(get_scheduler),
) -> dict[str, int]:
    """Archive completed tasks to history and drop them from the queue."""
    try:
        cleared = await scheduler.clear_completed()
    except UploadPipelineError as e:
        _raise_http(e, scheduler.owner_id)
    return {"cleared": cleared}


@router.get("/{task_id}", response_model=UploadTask)
async def get_upload(
    task_id: str, scheduler: UploadScheduler = Depends(get_scheduler)
) -> UploadTask:
    task = scheduler.get_task(task_id)
    if task is None:
        raise _not_found(task_id)
    return task


@router.post("/{task_id}/retry", response_model=ActionResponse)
async def retry_upload(
    task_id: str, scheduler: UploadScheduler = Depends(get_scheduler)
) -> ActionResponse:
    """Retry a failed task. ``success`` is false if the task is not failed."""
    if scheduler.get_task(task_id) is None:
        raise _not_found(task_id)
    return ActionResponse(task_id=task_id, success=await scheduler.retry(task_id))


@router.post("/{task_id}/resume", response_model=ActionResponse)
async def resume_upload(
    task_id: str, scheduler: UploadScheduler = Depends(get_scheduler)
) -> ActionResponse:
    if scheduler.get_task(task_id) is None:
        raise _not_found(task_id)
    return ActionResponse(task_id=task_id, success=await scheduler.resume(task_id))


@router.post("/{task_id}/pause", response_model=ActionResponse)
async def pause_upload(
    task_id: str, scheduler: UploadScheduler = Depends(get_scheduler)
) -> ActionResponse:
    if scheduler.get_task(task_id) is None:
        raise _not_found(task_id)
    return ActionResponse(task_id=task_id, success=await scheduler.pause(task_id))


@router.delete("/{task_id}", response_model=ActionResponse)
async def cancel_upload(
    task_id: str, scheduler: UploadScheduler = Depends(get_scheduler)
) -> ActionResponse:
    """Cancel a task, aborting it if it is uploading."""
    if not await scheduler.cancel(task_id):
        raise _not_found(task_id)
    return ActionResponse(task_id=task_id, success=True)
