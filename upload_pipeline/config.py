"""Configuration management for the upload pipeline.

This module provides centralized configuration loading from environment variables.
Getter functions read the environment on every call; ``load_upload_settings()``
snapshots them into an immutable ``UploadSettings`` used by the scheduler,
queue store and uploader.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL for the durable key-value store
    STORAGE_URL: Base URL of the storage/functions service (e.g. Supabase project URL)
    STORAGE_API_KEY: Service API key sent with storage and function requests
    UPLOAD_MAX_CONCURRENT: Concurrent upload slots per owner (default: 1)
    UPLOAD_MAX_QUEUE_SIZE: Maximum tasks held per owner queue (default: 20)
    UPLOAD_MAX_FILE_SIZE_MB: Hard video size ceiling in megabytes (default: 100)
    UPLOAD_SOURCE_ROOT: Directory holding per-owner captured files
        (default: /var/lib/upload-pipeline/sources)

Usage:
    from upload_pipeline.config import load_upload_settings

    settings = load_upload_settings()
    print(settings.max_queue_size)
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

# Queue defaults
DEFAULT_MAX_CONCURRENT = 1
DEFAULT_MAX_QUEUE_SIZE = 20
DEFAULT_MAX_HISTORY = 50
DEFAULT_MAX_FILE_SIZE_MB = 100
DEFAULT_MAX_RETRIES = 1

# Retry backoff (delay = base * 2**retry_count, capped)
DEFAULT_BACKOFF_BASE_SECONDS = 2.0
DEFAULT_BACKOFF_MAX_SECONDS = 60.0

# Scheduling cadence
DEFAULT_INTER_TASK_DELAY_SECONDS = 2.0
DEFAULT_COMPLETION_COOLDOWN_SECONDS = 5.0
DEFAULT_PROGRESS_THROTTLE_MS = 100

# Storage layout
DEFAULT_THUMBNAIL_BUCKET = "recipe-thumbnails"
DEFAULT_VIDEO_BUCKET = "videos"
DEFAULT_RAW_VIDEO_PREFIX = "raw-videos"
DEFAULT_PROCESSING_FUNCTION = "video-processor"

# Captured files are read only from {source_root}/{owner_id}/
DEFAULT_SOURCE_ROOT = "/var/lib/upload-pipeline/sources"


def _get_int(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer env var, clamped to [minimum, maximum].

    Falls back to ``default`` (with a warning) when the value is not an integer.
    """
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        log.warning("invalid_config_value", name=name, value=os.getenv(name), using_default=default)
        return default
    return max(minimum, min(maximum, value))


def _get_float(name: str, default: float, minimum: float, maximum: float) -> float:
    """Read a float env var, clamped to [minimum, maximum]."""
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        log.warning("invalid_config_value", name=name, value=os.getenv(name), using_default=default)
        return default
    return max(minimum, min(maximum, value))


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Environment Variable:
        DATABASE_URL: PostgreSQL connection URL

    Returns:
        Database URL with asyncpg driver.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_storage_url() -> str | None:
    """Get storage service base URL from environment.

    Environment Variable:
        STORAGE_URL: Project base URL (e.g., "https://abc.supabase.co")

    Returns:
        Base URL without trailing slash, or None if not set.

    Note:
        Returns None when STORAGE_URL is not set, allowing the HTTP app
        to start (and report 503) without a configured backend.
    """
    url = os.getenv("STORAGE_URL")
    if not url:
        return None
    return url.rstrip("/")


def get_storage_api_key() -> str | None:
    """Get storage/functions API key from environment.

    Environment Variable:
        STORAGE_API_KEY: Service role or anon key

    Returns:
        API key string, or None if not set.
    """
    return os.getenv("STORAGE_API_KEY")


def get_max_concurrent_uploads() -> int:
    """Get concurrent upload slots per owner (1-4, default: 1).

    Environment Variable:
        UPLOAD_MAX_CONCURRENT: Maximum uploads admitted per scheduler pass

    Note:
        Tasks are still started one after another with an inter-task delay,
        so raising this value increases admitted work per pass, not the
        number of simultaneous base64 decodes.
    """
    return _get_int("UPLOAD_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT, 1, 4)


def get_max_queue_size() -> int:
    """Get maximum tasks per owner queue across all statuses (1-200, default: 20)."""
    return _get_int("UPLOAD_MAX_QUEUE_SIZE", DEFAULT_MAX_QUEUE_SIZE, 1, 200)


def get_max_history() -> int:
    """Get maximum archived completed uploads per owner (1-500, default: 50)."""
    return _get_int("UPLOAD_MAX_HISTORY", DEFAULT_MAX_HISTORY, 1, 500)


def get_max_file_size_bytes() -> int:
    """Get hard video size ceiling in bytes.

    Environment Variable:
        UPLOAD_MAX_FILE_SIZE_MB: Ceiling in megabytes (1-2048, default: 100)

    Returns:
        Ceiling in bytes.
    """
    megabytes = _get_int("UPLOAD_MAX_FILE_SIZE_MB", DEFAULT_MAX_FILE_SIZE_MB, 1, 2048)
    return megabytes * 1024 * 1024


def get_default_max_retries() -> int:
    """Get default automatic attempt budget for new tasks (1-10, default: 1)."""
    return _get_int("UPLOAD_DEFAULT_MAX_RETRIES", DEFAULT_MAX_RETRIES, 1, 10)


def get_backoff_base_seconds() -> float:
    """Get retry backoff base delay in seconds (default: 2)."""
    return _get_float("UPLOAD_BACKOFF_BASE_SECONDS", DEFAULT_BACKOFF_BASE_SECONDS, 0.0, 60.0)


def get_backoff_max_seconds() -> float:
    """Get retry backoff ceiling in seconds (default: 60)."""
    return _get_float("UPLOAD_BACKOFF_MAX_SECONDS", DEFAULT_BACKOFF_MAX_SECONDS, 0.0, 3600.0)


def get_inter_task_delay_seconds() -> float:
    """Get pause between tasks started in the same scheduler pass (default: 2)."""
    return _get_float(
        "UPLOAD_INTER_TASK_DELAY_SECONDS", DEFAULT_INTER_TASK_DELAY_SECONDS, 0.0, 60.0
    )


def get_completion_cooldown_seconds() -> float:
    """Get delay before the next scheduler pass after a success (default: 5)."""
    return _get_float(
        "UPLOAD_COMPLETION_COOLDOWN_SECONDS", DEFAULT_COMPLETION_COOLDOWN_SECONDS, 0.0, 300.0
    )


def get_progress_throttle_seconds() -> float:
    """Get progress event throttle window.

    Environment Variable:
        UPLOAD_PROGRESS_THROTTLE_MS: Window in milliseconds (10-5000, default: 100)

    Returns:
        Window in seconds.
    """
    return _get_int("UPLOAD_PROGRESS_THROTTLE_MS", DEFAULT_PROGRESS_THROTTLE_MS, 10, 5000) / 1000


def get_thumbnail_bucket() -> str:
    """Get storage bucket for thumbnails (default: "recipe-thumbnails")."""
    return os.getenv("THUMBNAIL_BUCKET", DEFAULT_THUMBNAIL_BUCKET)


def get_video_bucket() -> str:
    """Get storage bucket for raw video uploads (default: "videos")."""
    return os.getenv("VIDEO_BUCKET", DEFAULT_VIDEO_BUCKET)


def get_raw_video_prefix() -> str:
    """Get path prefix for raw video intake inside the video bucket (default: "raw-videos")."""
    return os.getenv("RAW_VIDEO_PREFIX", DEFAULT_RAW_VIDEO_PREFIX).strip("/")


def get_processing_function_name() -> str:
    """Get remote processing function name (default: "video-processor")."""
    return os.getenv("PROCESSING_FUNCTION_NAME", DEFAULT_PROCESSING_FUNCTION)


def get_upload_source_root() -> Path:
    """Get the directory under which each owner's captured files live.

    Environment Variable:
        UPLOAD_SOURCE_ROOT: Absolute directory (default: /var/lib/upload-pipeline/sources)

    Note:
        Owner "user-1" may only enqueue files under {root}/user-1/. Locators
        pointing anywhere else are rejected at enqueue time.
    """
    return Path(os.getenv("UPLOAD_SOURCE_ROOT") or DEFAULT_SOURCE_ROOT)


@dataclass(frozen=True)
class UploadSettings:
    """Immutable snapshot of upload pipeline tuning values.

    Durations are in seconds. The trigger delays mirror the cadence of the
    mobile client this pipeline serves: a pass shortly after enqueue, a
    slower one after manual retry, and a delayed one after reloading a
    persisted queue at startup.

    Attributes:
        max_concurrent: Upload slots per owner.
        max_queue_size: Maximum tasks per owner queue (all statuses).
        max_history: Maximum archived completed uploads per owner.
        max_file_size_bytes: Hard ceiling for video files.
        default_max_retries: Attempt budget when enqueue does not pass one.
        backoff_base: Base delay for exponential retry backoff.
        backoff_max: Ceiling for retry backoff.
        inter_task_delay: Pause between tasks admitted in the same pass.
        completion_cooldown: Delay before the next pass after a success.
        failure_cooldown: Delay before the next pass after a permanent failure.
        enqueue_delay: Delay before the pass triggered by enqueue.
        retry_delay: Delay before the pass triggered by manual retry.
        resume_delay: Delay before the pass triggered by resume.
        reload_delay: Delay before the pass triggered by startup reload.
        progress_throttle: Minimum seconds between non-significant progress events.
        progress_min_delta: Minimum progress delta that bypasses the throttle.
        progress_tick_interval: Interval of estimated progress ticks during transfer.
        decode_chunk_size: Base64 characters decoded per chunk (multiple of 4).
        decode_yield_every: Chunks decoded between cooperative yields.
        source_root: Directory whose per-owner subdirectories hold source files.
    """

    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE
    max_history: int = DEFAULT_MAX_HISTORY
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_MB * 1024 * 1024
    default_max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_max: float = DEFAULT_BACKOFF_MAX_SECONDS
    inter_task_delay: float = DEFAULT_INTER_TASK_DELAY_SECONDS
    completion_cooldown: float = DEFAULT_COMPLETION_COOLDOWN_SECONDS
    failure_cooldown: float = 3.0
    enqueue_delay: float = 1.0
    retry_delay: float = 2.0
    resume_delay: float = 1.0
    reload_delay: float = 3.0
    progress_throttle: float = DEFAULT_PROGRESS_THROTTLE_MS / 1000
    progress_min_delta: float = 0.02
    progress_tick_interval: float = 1.5
    decode_chunk_size: int = 8192
    decode_yield_every: int = 10
    thumbnail_bucket: str = DEFAULT_THUMBNAIL_BUCKET
    video_bucket: str = DEFAULT_VIDEO_BUCKET
    raw_video_prefix: str = DEFAULT_RAW_VIDEO_PREFIX
    processing_function: str = DEFAULT_PROCESSING_FUNCTION
    source_root: Path = Path(DEFAULT_SOURCE_ROOT)

    def backoff_delay(self, retry_count: int) -> float:
        """Return the retry delay in seconds for the given retry count.

        Example:
            >>> UploadSettings().backoff_delay(1)
            4.0
            >>> UploadSettings().backoff_delay(10)
            60.0
        """
        return min(self.backoff_base * (2**retry_count), self.backoff_max)


def load_upload_settings() -> UploadSettings:
    """Build UploadSettings from the environment.

    Returns:
        UploadSettings with env overrides applied and clamped.
    """
    settings = UploadSettings(
        max_concurrent=get_max_concurrent_uploads(),
        max_queue_size=get_max_queue_size(),
        max_history=get_max_history(),
        max_file_size_bytes=get_max_file_size_bytes(),
        default_max_retries=get_default_max_retries(),
        backoff_base=get_backoff_base_seconds(),
        backoff_max=get_backoff_max_seconds(),
        inter_task_delay=get_inter_task_delay_seconds(),
        completion_cooldown=get_completion_cooldown_seconds(),
        progress_throttle=get_progress_throttle_seconds(),
        thumbnail_bucket=get_thumbnail_bucket(),
        video_bucket=get_video_bucket(),
        raw_video_prefix=get_raw_video_prefix(),
        processing_function=get_processing_function_name(),
        source_root=get_upload_source_root(),
    )
    log.info(
        "upload_settings_loaded",
        max_concurrent=settings.max_concurrent,
        max_queue_size=settings.max_queue_size,
        max_file_size_bytes=settings.max_file_size_bytes,
        default_max_retries=settings.default_max_retries,
    )
    return settings
