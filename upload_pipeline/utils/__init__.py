"""Cross-cutting utilities for the upload pipeline.

This package contains helper functions used across multiple modules.
Utilities should be pure functions or small helpers without queue logic.

Modules:
    cancellation: Cooperative abort handle threaded through task I/O.
    codec: Chunked base64 decoding that yields to the event loop.
    filesystem: Local file locators, stat and base64 reads.
    logging: Structured JSON logging.
"""

from upload_pipeline.utils.cancellation import CancellationToken
from upload_pipeline.utils.codec import decode_base64, encode_base64
from upload_pipeline.utils.filesystem import FileInfo, FileReader, LocalFileReader

__all__ = [
    "CancellationToken",
    "FileInfo",
    "FileReader",
    "LocalFileReader",
    "decode_base64",
    "encode_base64",
]
