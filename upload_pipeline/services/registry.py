"""Scheduler Registry: at most one UploadScheduler per owner.

The registry replaces a process-wide singleton. Callers obtain the
scheduler for an owner through ``get_or_create``; the first call builds and
starts it (reloading the persisted queue), later calls return the same
instance.

Usage:
    registry = SchedulerRegistry(build_scheduler_factory(settings, kv, storage, functions))
    scheduler = await registry.get_or_create("user-1")
    ...
    registry.destroy("user-1")  # refuses while uploads are in flight
"""

import asyncio
from collections.abc import Callable

from upload_pipeline.clients.functions import FunctionInvoker
from upload_pipeline.clients.storage import ObjectStorage
from upload_pipeline.config import UploadSettings
from upload_pipeline.exceptions import ActiveUploadsError
from upload_pipeline.services.asset_uploader import AssetUploader
from upload_pipeline.services.kv_store import KeyValueStore
from upload_pipeline.services.processing_invoker import RemoteProcessingInvoker
from upload_pipeline.services.queue_store import QueueStore
from upload_pipeline.services.scheduler import UploadScheduler
from upload_pipeline.utils.filesystem import FileReader, LocalFileReader
from upload_pipeline.utils.logging import get_logger

log = get_logger(__name__)

SchedulerFactory = Callable[[str], UploadScheduler]


def build_scheduler_factory(
    settings: UploadSettings,
    kv_store: KeyValueStore,
    storage: ObjectStorage,
    functions: FunctionInvoker,
    file_reader: FileReader | None = None,
) -> SchedulerFactory:
    """Return a factory wiring one owner's store, uploader and invoker.

    The storage, functions and key-value clients are shared between owners;
    everything holding per-owner state is created per call.
    """
    reader = file_reader or LocalFileReader()
    uploader = AssetUploader(storage, reader, settings)
    invoker = RemoteProcessingInvoker(functions, settings.processing_function)

    def factory(owner_id: str) -> UploadScheduler:
        store = QueueStore(
            owner_id,
            kv_store,
            max_queue_size=settings.max_queue_size,
            max_history=settings.max_history,
        )
        return UploadScheduler(owner_id, store, uploader, invoker, reader, settings)

    return factory


class SchedulerRegistry:
    """Maps owner ids to their started UploadScheduler."""

    def __init__(self, factory: SchedulerFactory) -> None:
        self.factory = factory
        self._schedulers: dict[str, UploadScheduler] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, owner_id: str) -> bool:
        return owner_id in self._schedulers

    def __len__(self) -> int:
        return len(self._schedulers)

    def owners(self) -> list[str]:
        return list(self._schedulers)

    def get(self, owner_id: str) -> UploadScheduler | None:
        """Return the owner's scheduler without creating one."""
        return self._schedulers.get(owner_id)

    async def get_or_create(self, owner_id: str) -> UploadScheduler:
        """Return the owner's scheduler, building and starting it on first use.

        Raises:
            ValueError: If owner_id is empty.
        """
        if not owner_id:
            raise ValueError("Owner ID is required")

        scheduler = self._schedulers.get(owner_id)
        if scheduler is not None:
            return scheduler

        async with self._lock:
            scheduler = self._schedulers.get(owner_id)
            if scheduler is None:
                scheduler = self.factory(owner_id)
                await scheduler.start()
                self._schedulers[owner_id] = scheduler
                log.info("upload_scheduler_registered", owner_id=owner_id)
        return scheduler

    def destroy(self, owner_id: str) -> bool:
        """Destroy and forget the owner's scheduler.

        Returns:
            False if the owner has no scheduler.

        Raises:
            ActiveUploadsError: If the scheduler has uploads in flight.
        """
        scheduler = self._schedulers.get(owner_id)
        if scheduler is None:
            return False

        active = scheduler.active_uploads_count
        if active > 0:
            log.warning("upload_scheduler_destroy_refused", owner_id=owner_id, active=active)
            raise ActiveUploadsError(owner_id, active)

        scheduler.destroy()
        del self._schedulers[owner_id]
        log.info("upload_scheduler_unregistered", owner_id=owner_id)
        return True

    def shutdown(self) -> None:
        """Destroy every scheduler at process exit.

        In-flight uploads are aborted and stay ``uploading`` in storage, so
        they are reset to ``pending`` on the next start.
        """
        for owner_id, scheduler in list(self._schedulers.items()):
            if scheduler.active_uploads_count:
                log.warning(
                    "upload_scheduler_shutdown_with_active_uploads",
                    owner_id=owner_id,
                    active=scheduler.active_uploads_count,
                )
            scheduler.destroy()
        self._schedulers.clear()
