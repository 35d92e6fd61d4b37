"""Upload queue services: storage, scheduling and the per-owner registry."""

from upload_pipeline.services.asset_uploader import AssetUploader
from upload_pipeline.services.events import EventBus, UploadEvent
from upload_pipeline.services.kv_store import KeyValueStore, SqlKeyValueStore
from upload_pipeline.services.processing_invoker import RemoteProcessingInvoker
from upload_pipeline.services.progress import ProgressBroadcaster
from upload_pipeline.services.queue_store import QueueStore
from upload_pipeline.services.registry import SchedulerRegistry, build_scheduler_factory
from upload_pipeline.services.scheduler import UploadScheduler

__all__ = [
    "AssetUploader",
    "EventBus",
    "KeyValueStore",
    "ProgressBroadcaster",
    "QueueStore",
    "RemoteProcessingInvoker",
    "SchedulerRegistry",
    "SqlKeyValueStore",
    "UploadEvent",
    "UploadScheduler",
    "build_scheduler_factory",
]
