"""Asset Uploader for thumbnails and raw videos.

This module implements the storage stages of the upload pipeline. Both
operations are stateless: they take a local locator and a destination
description and produce a stored-object reference.

Key Responsibilities:
- Validate local files (existence, non-empty, hard size ceiling)
- Read files as base64 and decode them with the chunked codec
- Upload thumbnails to a per-owner path (overwrite allowed)
- Upload raw videos to the intake prefix (no overwrite)
- Re-download uploaded videos to verify they are non-empty
- Report monotonic video progress fractions to the caller

Read-back Verification:
    The storage backend can accept a truncated upload without reporting an
    error. A video upload is only declared successful after downloading the
    object back and checking it is non-empty.

Memory:
    Each stage drops its reference to the base64 text and the decoded buffer
    as soon as the next step no longer needs it, so at most one large buffer
    is alive per stage.

Usage:
    from upload_pipeline.services.asset_uploader import AssetUploader

    uploader = AssetUploader(storage, LocalFileReader(), settings)
    thumb_url = await uploader.upload_thumbnail("/data/t.jpg", "recipe-1", "user-1")
    file_name = await uploader.upload_video("/data/v.mp4", "recipe-1", token, on_progress)
"""

import asyncio
import time
import uuid
from collections.abc import Callable

from upload_pipeline.clients.storage import ObjectStorage
from upload_pipeline.config import UploadSettings
from upload_pipeline.exceptions import DecodeError, StorageError, ValidationError
from upload_pipeline.utils.cancellation import CancellationToken
from upload_pipeline.utils.codec import decode_base64
from upload_pipeline.utils.filesystem import (
    FileInfo,
    FileReader,
    file_extension,
    image_content_type,
    video_content_type,
)
from upload_pipeline.utils.logging import get_logger

log = get_logger(__name__)

ProgressCallback = Callable[[float], None]

# Video progress fractions reported through on_progress
PROGRESS_READ_DONE = 0.2
PROGRESS_DECODE_DONE = 0.3
PROGRESS_TRANSFER_CEILING = 0.8  # estimated ticks never pass this
PROGRESS_TRANSFER_STEP = 0.1
PROGRESS_TRANSFER_DONE = 0.85
PROGRESS_VERIFIED = 1.0

THUMBNAIL_CACHE_CONTROL = "3600"

_BYTES_PER_MB = 1024 * 1024


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def validate_video_file(info: FileInfo, locator: str, max_size_bytes: int) -> None:
    """Check a video file against existence and size rules.

    Args:
        info: Stat result for the locator.
        locator: Video locator (for error messages).
        max_size_bytes: Hard ceiling.

    Raises:
        ValidationError: If the file is missing, empty, or over the ceiling.
    """
    if not info.exists:
        raise ValidationError(f"Video file does not exist: {locator}")

    if info.size == 0:
        raise ValidationError(f"Video file is empty (0 bytes): {locator}")

    if info.size > max_size_bytes:
        size_mb = round(info.size / _BYTES_PER_MB)
        limit_mb = round(max_size_bytes / _BYTES_PER_MB)
        raise ValidationError(
            f"Video file is too large ({size_mb}MB). Maximum allowed size is {limit_mb}MB. "
            f"Please compress your video and try again."
        )


class AssetUploader:
    """Uploads thumbnails and raw videos to object storage.

    Attributes:
        storage: Object storage seam.
        file_reader: Local file reader seam.
        settings: Buckets, size ceiling, codec chunking and progress tick interval.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        file_reader: FileReader,
        settings: UploadSettings | None = None,
    ) -> None:
        self.storage = storage
        self.file_reader = file_reader
        self.settings = settings or UploadSettings()

    async def _decode(self, encoded: str, token: CancellationToken) -> bytes:
        return await token.run(
            decode_base64(
                encoded,
                chunk_size=self.settings.decode_chunk_size,
                yield_every=self.settings.decode_yield_every,
            )
        )

    async def upload_thumbnail(
        self,
        local_uri: str,
        metadata_id: str,
        owner_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Upload a thumbnail image and return its public URL.

        The object is written to ``<owner_id>/<thumbnail_bucket>/thumb-<metadata_id>-<ms>.<ext>``
        with overwrite allowed.

        Args:
            local_uri: Thumbnail locator.
            metadata_id: Metadata id used to name the object.
            owner_id: Owner whose storage prefix receives the object.
            cancel_token: Abort handle for the owning task.

        Returns:
            Public URL of the uploaded thumbnail.

        Raises:
            ValidationError: If the thumbnail file does not exist.
            DecodeError: If the file data cannot be decoded.
            StorageError: If storage rejects the upload (retryable).
            UploadCancelledError: If the task is cancelled mid-stage.
        """
        token = cancel_token or CancellationToken()
        bucket = self.settings.thumbnail_bucket

        info = await token.run(self.file_reader.stat(local_uri))
        if not info.exists:
            raise ValidationError(f"Thumbnail file does not exist: {local_uri}")

        encoded = await token.run(self.file_reader.read_base64(local_uri))
        data = await self._decode(encoded, token)
        del encoded

        extension = file_extension(local_uri, "jpg")
        file_name = f"thumb-{metadata_id}-{_timestamp_ms()}.{extension}"
        storage_path = f"{owner_id}/{bucket}/{file_name}"

        stored_path = await token.run(
            self.storage.upload(
                bucket,
                storage_path,
                data,
                content_type=image_content_type(extension),
                upsert=True,
                cache_control=THUMBNAIL_CACHE_CONTROL,
            )
        )
        size_bytes = len(data)
        del data

        if not stored_path:
            raise StorageError("Failed to get thumbnail URL")

        public_url = self.storage.get_public_url(bucket, stored_path)
        log.info(
            "thumbnail_uploaded",
            owner_id=owner_id,
            metadata_id=metadata_id,
            path=stored_path,
            size_bytes=size_bytes,
        )
        return public_url

    async def _tick_transfer_progress(self, report: ProgressCallback) -> None:
        """Report estimated transfer progress; storage exposes no native callback."""
        current = PROGRESS_DECODE_DONE
        while current < PROGRESS_TRANSFER_CEILING:
            await asyncio.sleep(self.settings.progress_tick_interval)
            current = min(PROGRESS_TRANSFER_CEILING, round(current + PROGRESS_TRANSFER_STEP, 2))
            report(current)

    async def upload_video(
        self,
        local_uri: str,
        metadata_id: str,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Upload a raw video to the intake prefix and verify it by read-back.

        Progress Fractions:
            0.0 start → 0.2 read → 0.3 decoded → +0.1 ticks up to 0.8 while
            transferring → 0.85 transferred → 1.0 verified

        Args:
            local_uri: Video locator.
            metadata_id: Metadata id (logged; raw objects get unique names).
            cancel_token: Abort handle for the owning task.
            on_progress: Callback receiving monotonically increasing fractions.

        Returns:
            Remote file name (without the intake prefix) for the processing step.

        Raises:
            ValidationError: If the file is missing, empty, or over the size
                ceiling (non-retryable).
            DecodeError: If the file data is empty or cannot be decoded.
            StorageError: If the upload or read-back verification fails.
            UploadCancelledError: If the task is cancelled mid-stage.
        """
        token = cancel_token or CancellationToken()
        report: ProgressCallback = on_progress or (lambda _fraction: None)
        bucket = self.settings.video_bucket

        info = await token.run(self.file_reader.stat(local_uri))
        validate_video_file(info, local_uri, self.settings.max_file_size_bytes)

        report(0.0)

        encoded = await token.run(self.file_reader.read_base64(local_uri))
        if not encoded:
            raise DecodeError("File read returned empty base64 data")
        report(PROGRESS_READ_DONE)

        data = await self._decode(encoded, token)
        del encoded
        if not data:
            raise DecodeError("Decoded file data is empty (0 bytes)")
        report(PROGRESS_DECODE_DONE)

        extension = file_extension(local_uri, "mp4")
        file_name = f"{_timestamp_ms()}-{uuid.uuid4().hex[:7]}.{extension}"
        raw_path = f"{self.settings.raw_video_prefix}/{file_name}"
        size_bytes = len(data)

        log.info(
            "raw_video_upload_started",
            metadata_id=metadata_id,
            path=raw_path,
            size_bytes=size_bytes,
        )

        ticker = asyncio.create_task(self._tick_transfer_progress(report))
        try:
            stored_path = await token.run(
                self.storage.upload(
                    bucket,
                    raw_path,
                    data,
                    content_type=video_content_type(extension),
                    upsert=False,
                )
            )
        finally:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)
        del data

        report(PROGRESS_TRANSFER_DONE)

        if not stored_path:
            raise StorageError("Upload data path missing, cannot validate file")

        await self._verify_upload(bucket, stored_path, size_bytes, token)
        report(PROGRESS_VERIFIED)
        return file_name

    async def _verify_upload(
        self,
        bucket: str,
        path: str,
        expected_size: int,
        token: CancellationToken,
    ) -> None:
        """Download an uploaded object and fail if it is empty.

        Raises:
            StorageError: If the download fails or returns no data.
        """
        try:
            downloaded = await token.run(self.storage.download(bucket, path))
        except StorageError as e:
            raise StorageError(
                f"Failed to validate uploaded file (download step): {e}",
                status_code=e.status_code,
            ) from e

        remote_size = len(downloaded)
        del downloaded

        if remote_size == 0:
            log.error("upload_verification_empty", bucket=bucket, path=path)
            raise StorageError("Uploaded file is empty (validation check)")

        if remote_size != expected_size:
            log.warning(
                "upload_verification_size_mismatch",
                bucket=bucket,
                path=path,
                expected_size=expected_size,
                remote_size=remote_size,
            )

        log.info("upload_verified", bucket=bucket, path=path, size_bytes=remote_size)

    def video_public_url(self, remote_file_name: str) -> str:
        """Return the public URL of a raw video uploaded by ``upload_video``."""
        return self.storage.get_public_url(
            self.settings.video_bucket,
            f"{self.settings.raw_video_prefix}/{remote_file_name}",
        )
