"""Tests for AssetUploader.

Test Coverage:
- validate_video_file size/existence rules, including the exact oversize message
- Thumbnail path layout, upsert and public URL
- Raw video upload naming, content type, progress sequence and read-back verification
- Verification failures (empty object, missing object) raise StorageError
- Cancellation aborts an in-flight transfer
"""

import asyncio
import dataclasses
import re

import pytest

from upload_pipeline.config import UploadSettings
from upload_pipeline.exceptions import (
    DecodeError,
    StorageError,
    UploadCancelledError,
    ValidationError,
)
from upload_pipeline.services.asset_uploader import AssetUploader, validate_video_file
from upload_pipeline.utils.cancellation import CancellationToken
from upload_pipeline.utils.filesystem import FileInfo

MB = 1024 * 1024


@pytest.fixture
def settings() -> UploadSettings:
    return dataclasses.replace(UploadSettings(), progress_tick_interval=0.01)


@pytest.fixture
def uploader(fake_storage, file_reader, settings) -> AssetUploader:
    return AssetUploader(fake_storage, file_reader, settings)


class TestValidateVideoFile:
    """Tests for validate_video_file."""

    def test_accepts_file_under_ceiling(self):
        validate_video_file(FileInfo(exists=True, size=5 * MB), "/v.mp4", 100 * MB)

    def test_accepts_file_exactly_at_ceiling(self):
        validate_video_file(FileInfo(exists=True, size=100 * MB), "/v.mp4", 100 * MB)

    def test_rejects_missing_file(self):
        with pytest.raises(ValidationError, match="does not exist"):
            validate_video_file(FileInfo(exists=False), "/v.mp4", 100 * MB)

    def test_rejects_empty_file(self):
        with pytest.raises(ValidationError, match="empty"):
            validate_video_file(FileInfo(exists=True, size=0), "/v.mp4", 100 * MB)

    def test_oversize_message_reports_sizes(self):
        """A 150MB file is rejected with both sizes in the message."""
        with pytest.raises(ValidationError) as exc_info:
            validate_video_file(FileInfo(exists=True, size=150 * MB), "/v.mp4", 100 * MB)

        assert str(exc_info.value) == (
            "Video file is too large (150MB). Maximum allowed size is 100MB. "
            "Please compress your video and try again."
        )


class TestUploadThumbnail:
    """Tests for AssetUploader.upload_thumbnail."""

    @pytest.mark.asyncio
    async def test_thumbnail_path_and_public_url(self, uploader, fake_storage, file_reader):
        """Thumbnails land under <owner>/<bucket>/thumb-<id>-<ms>.<ext> with upsert."""
        file_reader.add("/captures/t.jpg", b"t" * 100)

        url = await uploader.upload_thumbnail("/captures/t.jpg", "recipe-1", "user-1")

        upload = fake_storage.uploads[0]
        assert upload["bucket"] == "recipe-thumbnails"
        assert re.fullmatch(r"user-1/recipe-thumbnails/thumb-recipe-1-\d+\.jpg", upload["path"])
        assert upload["upsert"] is True
        assert upload["content_type"] == "image/jpeg"
        assert upload["cache_control"] == "3600"
        assert upload["size"] == 100
        assert url == fake_storage.get_public_url("recipe-thumbnails", upload["path"])

    @pytest.mark.asyncio
    async def test_missing_thumbnail_is_validation_error(self, uploader):
        with pytest.raises(ValidationError, match="Thumbnail file does not exist"):
            await uploader.upload_thumbnail("/captures/missing.jpg", "recipe-1", "user-1")

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, uploader, fake_storage, file_reader):
        file_reader.add("/captures/t.png", b"t")
        fake_storage.upload_failures.append(StorageError("bucket unavailable", status_code=503))

        with pytest.raises(StorageError, match="bucket unavailable"):
            await uploader.upload_thumbnail("/captures/t.png", "recipe-1", "user-1")


class TestUploadVideo:
    """Tests for AssetUploader.upload_video."""

    @pytest.mark.asyncio
    async def test_upload_returns_unique_file_name(self, uploader, fake_storage, file_reader):
        """Raw videos go to <prefix>/<ms>-<random>.<ext> without overwrite."""
        file_reader.add("/captures/clip.mov", b"v" * 2048)

        file_name = await uploader.upload_video("/captures/clip.mov", "recipe-1")

        assert re.fullmatch(r"\d+-[0-9a-f]{7}\.mov", file_name)
        upload = fake_storage.uploads[0]
        assert upload["bucket"] == "videos"
        assert upload["path"] == f"raw-videos/{file_name}"
        assert upload["upsert"] is False
        assert upload["content_type"] == "video/quicktime"
        assert fake_storage.objects[("videos", f"raw-videos/{file_name}")] == b"v" * 2048

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ends_at_one(
        self, uploader, fake_storage, file_reader
    ):
        """Progress fractions never decrease and estimated ticks stay below 0.85.

        GIVEN: A transfer slow enough for several estimated ticks
        WHEN: Uploading a video
        THEN: Reported fractions are non-decreasing, ticks cap at 0.8, and the
              sequence ends 0.85 → 1.0
        """
        file_reader.add("/captures/clip.mp4", b"v" * 1024)
        fake_storage.upload_delay = 0.1
        reported: list[float] = []

        await uploader.upload_video("/captures/clip.mp4", "recipe-1", on_progress=reported.append)

        assert reported == sorted(reported)
        assert reported[:3] == [0.0, 0.2, 0.3]
        assert reported[-2:] == [0.85, 1.0]
        ticks = reported[3:-2]
        assert ticks
        assert max(ticks) <= 0.8

    @pytest.mark.asyncio
    async def test_oversize_video_never_reaches_storage(self, uploader, fake_storage, file_reader):
        file_reader.add_sized("/captures/huge.mp4", 150 * MB)

        with pytest.raises(ValidationError, match="too large"):
            await uploader.upload_video("/captures/huge.mp4", "recipe-1")

        assert fake_storage.uploads == []

    @pytest.mark.asyncio
    async def test_empty_read_is_decode_error(self, uploader, file_reader, mocker):
        file_reader.add("/captures/clip.mp4", b"v" * 10)
        mocker.patch.object(file_reader, "read_base64", new=mocker.AsyncMock(return_value=""))

        with pytest.raises(DecodeError, match="empty base64"):
            await uploader.upload_video("/captures/clip.mp4", "recipe-1")

    @pytest.mark.asyncio
    async def test_corrupt_data_is_decode_error(self, uploader, file_reader, mocker):
        file_reader.add("/captures/clip.mp4", b"v" * 10)
        mocker.patch.object(
            file_reader, "read_base64", new=mocker.AsyncMock(return_value="@@not-base64@@")
        )

        with pytest.raises(DecodeError):
            await uploader.upload_video("/captures/clip.mp4", "recipe-1")

    @pytest.mark.asyncio
    async def test_empty_read_back_fails_verification(self, uploader, fake_storage, file_reader):
        """An upload the backend silently truncated is not reported as success."""
        file_reader.add("/captures/clip.mp4", b"v" * 64)
        fake_storage.download_override = b""

        with pytest.raises(StorageError, match="Uploaded file is empty"):
            await uploader.upload_video("/captures/clip.mp4", "recipe-1")

    @pytest.mark.asyncio
    async def test_size_mismatch_is_tolerated(self, uploader, fake_storage, file_reader):
        file_reader.add("/captures/clip.mp4", b"v" * 64)
        fake_storage.download_override = b"v" * 32

        assert await uploader.upload_video("/captures/clip.mp4", "recipe-1")

    @pytest.mark.asyncio
    async def test_missing_read_back_fails_verification(
        self, uploader, fake_storage, file_reader, mocker
    ):
        file_reader.add("/captures/clip.mp4", b"v" * 64)
        mocker.patch.object(
            fake_storage,
            "download",
            new=mocker.AsyncMock(side_effect=StorageError("not found", status_code=404)),
        )

        with pytest.raises(StorageError, match="download step") as exc_info:
            await uploader.upload_video("/captures/clip.mp4", "recipe-1")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_cancellation_aborts_transfer(self, uploader, fake_storage, file_reader):
        """Cancelling the token mid-transfer raises UploadCancelledError."""
        file_reader.add("/captures/clip.mp4", b"v" * 64)
        fake_storage.upload_delay = 5
        token = CancellationToken()

        async def cancel_when_uploading():
            while not fake_storage.uploads:
                await asyncio.sleep(0.001)
            token.cancel("Upload was cancelled by user")

        canceller = asyncio.create_task(cancel_when_uploading())
        with pytest.raises(UploadCancelledError):
            await uploader.upload_video("/captures/clip.mp4", "recipe-1", token)
        await canceller

        assert fake_storage.objects == {}

    def test_video_public_url(self, uploader, fake_storage):
        assert uploader.video_public_url("123-abc.mp4") == fake_storage.get_public_url(
            "videos", "raw-videos/123-abc.mp4"
        )
