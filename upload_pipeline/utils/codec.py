"""Chunked base64 codec.

Local files reach the uploader as base64 strings. Decoding a 100MB video in
one call would hold the event loop for the whole decode, starving progress
events and cancellation of other uploads. ``decode_base64`` decodes in
fixed-size chunks and yields to the event loop every few chunks.

Usage:
    from upload_pipeline.utils.codec import decode_base64

    data = await decode_base64(b64_string)
"""

import asyncio
import base64
import binascii

from upload_pipeline.exceptions import DecodeError

DEFAULT_CHUNK_SIZE = 8192  # base64 characters per chunk (multiple of 4)
DEFAULT_YIELD_EVERY = 10  # chunks decoded between event loop yields


async def decode_base64(
    data: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    yield_every: int = DEFAULT_YIELD_EVERY,
) -> bytes:
    """Decode a base64 string to bytes without blocking the event loop.

    Args:
        data: Base64 text. Whitespace and line breaks are ignored.
        chunk_size: Characters decoded per chunk; must be a positive multiple of 4
            so chunk boundaries never split a base64 quantum.
        yield_every: Number of chunks between ``await asyncio.sleep(0)`` calls.

    Returns:
        Decoded bytes.

    Raises:
        ValueError: If chunk_size or yield_every is invalid.
        DecodeError: If data contains non-base64 characters or bad padding.

    Example:
        >>> await decode_base64("aGVsbG8=")
        b'hello'
    """
    if chunk_size <= 0 or chunk_size % 4 != 0:
        raise ValueError(f"chunk_size must be a positive multiple of 4, got {chunk_size}")
    if yield_every <= 0:
        raise ValueError(f"yield_every must be positive, got {yield_every}")

    parts: list[bytes] = []
    # Whitespace is stripped per slice; characters short of a full quantum
    # carry over so every decoded chunk stays a multiple of 4
    carry = ""

    for index, start in enumerate(range(0, len(data), chunk_size)):
        piece = carry + "".join(data[start : start + chunk_size].split())
        usable = len(piece) - len(piece) % 4
        carry = piece[usable:]
        if usable:
            parts.append(_decode_chunk(piece[:usable], start))

        if (index + 1) % yield_every == 0:
            await asyncio.sleep(0)

    if carry:
        parts.append(_decode_chunk(carry, len(data) - len(carry)))
    return b"".join(parts)


def _decode_chunk(chunk: str, offset: int) -> bytes:
    try:
        return base64.b64decode(chunk, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(
            f"Failed to process file data (base64 decode error at offset {offset})"
        ) from e


def encode_base64(data: bytes) -> str:
    """Encode bytes as ASCII base64 text."""
    return base64.b64encode(data).decode("ascii")
