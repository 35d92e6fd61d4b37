"""Local file access for captured videos and thumbnails.

Source files are addressed by locators: plain filesystem paths or
``file://`` URIs as produced by mobile capture flows. The reader returns
file contents base64-encoded, which is the contract the uploader decodes
with the chunked codec.

Usage:
    from upload_pipeline.utils.filesystem import LocalFileReader

    reader = LocalFileReader()
    info = await reader.stat("file:///data/captures/clip.mp4")
    if info.exists:
        b64 = await reader.read_base64("file:///data/captures/clip.mp4")
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from upload_pipeline.utils.codec import encode_base64

__all__ = [
    "FileInfo",
    "FileReader",
    "LocalFileReader",
    "confine_locator",
    "file_extension",
    "image_content_type",
    "owner_source_dir",
    "resolve_local_path",
    "video_content_type",
]

# Extensions whose MIME subtype differs from the extension itself
_VIDEO_SUBTYPES = {"mov": "quicktime", "m4v": "x-m4v", "mkv": "x-matroska"}
_IMAGE_SUBTYPES = {"jpg": "jpeg"}


@dataclass(frozen=True)
class FileInfo:
    """Result of stat-ing a local locator.

    Attributes:
        exists: True if the locator points to a regular file.
        size: File size in bytes (0 when missing).
    """

    exists: bool
    size: int = 0


class FileReader(Protocol):
    """Local filesystem reader consumed by the uploader and scheduler."""

    async def stat(self, locator: str) -> FileInfo: ...

    async def read_base64(self, locator: str) -> str: ...


def resolve_local_path(locator: str) -> Path:
    """Convert a path or ``file://`` URI to a Path.

    Raises:
        ValueError: If the locator is empty or uses a non-file URI scheme.

    Example:
        >>> resolve_local_path("file:///tmp/My%20Clip.mp4")
        PosixPath('/tmp/My Clip.mp4')
    """
    if not locator:
        raise ValueError("File locator cannot be empty")

    parsed = urlparse(locator)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme and len(parsed.scheme) > 1:
        # Single-letter schemes are Windows drive letters, not URIs
        raise ValueError(f"Unsupported locator scheme '{parsed.scheme}': {locator}")
    return Path(locator)


def owner_source_dir(source_root: Path, owner_id: str) -> Path:
    """Return the directory holding ``owner_id``'s captured files.

    Raises:
        ValueError: If owner_id is not a single directory name below source_root.

    Example:
        >>> owner_source_dir(Path("/srv/captures"), "user-1")
        PosixPath('/srv/captures/user-1')
    """
    if not owner_id:
        raise ValueError("Owner ID cannot be empty")

    root = source_root.resolve()
    owner_dir = (root / owner_id).resolve()
    if owner_dir.parent != root or owner_dir.name != owner_id:
        raise ValueError(f"Invalid owner ID for source directory: '{owner_id}'")
    return owner_dir


def confine_locator(locator: str, source_dir: Path) -> Path:
    """Resolve a locator and verify it stays inside ``source_dir``.

    Locators must be absolute (a path or ``file://`` URI). Symlinks and
    ``..`` segments are resolved before the check.

    Raises:
        ValueError: If the locator is relative, unsupported, or resolves
            outside source_dir.
    """
    path = resolve_local_path(locator)
    if not path.is_absolute():
        raise ValueError(f"File locator must be an absolute path: {locator}")

    resolved = path.resolve()
    allowed = source_dir.resolve()
    if not resolved.is_relative_to(allowed):
        raise ValueError(f"File locator is outside the upload source directory: {locator}")
    return resolved


def file_extension(locator: str, default: str) -> str:
    """Return the lowercase extension of a locator without the dot."""
    suffix = Path(urlparse(locator).path or locator).suffix.lower().lstrip(".")
    return suffix or default


def image_content_type(extension: str) -> str:
    """Map an image extension to a MIME type (``jpg`` → ``image/jpeg``)."""
    return f"image/{_IMAGE_SUBTYPES.get(extension, extension)}"


def video_content_type(extension: str) -> str:
    """Map a video extension to a MIME type (``mov`` → ``video/quicktime``)."""
    return f"video/{_VIDEO_SUBTYPES.get(extension, extension)}"


class LocalFileReader:
    """FileReader backed by the local filesystem.

    Blocking filesystem calls run in a worker thread via ``asyncio.to_thread``
    so reading a large capture never stalls the event loop.
    """

    async def stat(self, locator: str) -> FileInfo:
        """Stat a locator; missing files report ``exists=False``."""
        path = resolve_local_path(locator)

        def _stat() -> FileInfo:
            if not path.is_file():
                return FileInfo(exists=False)
            return FileInfo(exists=True, size=path.stat().st_size)

        return await asyncio.to_thread(_stat)

    async def read_base64(self, locator: str) -> str:
        """Read a file and return its contents base64-encoded.

        Raises:
            FileNotFoundError: If the file doesn't exist.
        """
        path = resolve_local_path(locator)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {locator}")

        data = await asyncio.to_thread(path.read_bytes)
        return encode_base64(data)
