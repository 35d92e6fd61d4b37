"""Progress Broadcaster: throttled, monotonic progress events.

The pipeline reports progress far more often than a UI can render it. The
broadcaster collapses updates per task and never lets a value below the
last emitted one reach observers.

Emit Rules (per task):
    Suppressed if progress < last emitted value (regression).
    Otherwise emitted if ANY of:
        - progress - last emitted >= min_delta (default 2%)
        - time since last emission >= throttle_interval (default 100ms)
        - progress is exactly 0 or reaches 1
        - stage is ``completed``

Emitted values are applied to the queue store's record first, so an
observer reacting to ``uploadProgress`` sees the same value in the store.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from upload_pipeline.models import UploadStage
from upload_pipeline.schemas.events import ProgressEvent
from upload_pipeline.services.events import EventBus, UploadEvent
from upload_pipeline.services.queue_store import QueueStore
from upload_pipeline.utils.logging import get_logger


@dataclass
class _EmitState:
    last_update: float
    last_progress: float


class ProgressBroadcaster:
    """Coalesces progress updates into uploadProgress events.

    Attributes:
        owner_id: Owner included in every event.
        store: Queue store whose records receive applied progress.
        events: Event bus receiving uploadProgress.
        throttle_interval: Seconds after which any non-regressing update is emitted.
        min_delta: Progress delta that is always emitted.
    """

    def __init__(
        self,
        owner_id: str,
        store: QueueStore,
        events: EventBus,
        throttle_interval: float = 0.1,
        min_delta: float = 0.02,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.owner_id = owner_id
        self.store = store
        self.events = events
        self.throttle_interval = throttle_interval
        self.min_delta = min_delta
        self._clock = clock
        self._state: dict[str, _EmitState] = {}
        self.log = get_logger(__name__).bind(owner_id=owner_id)

    def publish(self, task_id: str, progress: float, stage: UploadStage) -> bool:
        """Offer a progress value for a task.

        Returns:
            True if an uploadProgress event was emitted.
        """
        progress = max(0.0, min(1.0, progress))
        now = self._clock()
        state = self._state.get(task_id)
        last_progress = state.last_progress if state else 0.0

        if progress < last_progress:
            self.log.debug(
                "progress_regression_suppressed",
                task_id=task_id,
                last_progress=round(last_progress, 3),
                progress=round(progress, 3),
            )
            return False

        significant = (progress - last_progress) >= self.min_delta
        window_elapsed = state is None or (now - state.last_update) >= self.throttle_interval
        boundary = progress == 0.0 or progress >= 1.0 or stage == UploadStage.COMPLETED

        if not (significant or window_elapsed or boundary):
            return False

        if not self.store.apply_progress(task_id, progress):
            # Task removed, or the store already holds a higher value
            return False

        task = self.store.get(task_id)
        stored_progress = task.progress if task is not None else progress
        self._state[task_id] = _EmitState(last_update=now, last_progress=stored_progress)

        self.events.emit(
            UploadEvent.UPLOAD_PROGRESS,
            ProgressEvent(
                task_id=task_id,
                owner_id=self.owner_id,
                progress=stored_progress,
                stage=stage,
            ),
        )
        return True

    def reset(self, task_id: str) -> None:
        """Forget emission state so a new task lifetime starts from 0."""
        self._state.pop(task_id, None)

    def clear(self) -> None:
        self._state.clear()
