"""Upload validation and preview materialisation.

Validation is a pure check performed before any network call. The preview is
an in-memory ``data:`` URI built off the event loop so a slow encode never
blocks other requests; a failed preview only degrades feedback and never
fails the pipeline run.
"""

import asyncio
import base64
import logging

from .errors import TooLargeError, UnsupportedTypeError
from .models import UploadCandidate

logger = logging.getLogger(__name__)


def is_image_media_type(media_type: str | None) -> bool:
    """Return True if ``media_type`` belongs to the ``image/*`` family."""
    if not media_type:
        return False
    return media_type.strip().lower().startswith("image/")


def validate_upload(
    data: bytes,
    media_type: str | None,
    max_bytes: int,
    filename: str = "",
    declared_size: int | None = None,
) -> UploadCandidate:
    """Accept an uploaded file or reject it with a typed validation error.

    The payload is never decoded here: a file that claims an image type and
    fits the ceiling is accepted, and an oversized file is rejected even if
    it is a perfectly valid image.

    Args:
        data: Raw file bytes.
        media_type: Media type declared by the client.
        max_bytes: Caller-specified size ceiling in bytes.
        filename: Client-chosen filename (generated when empty).
        declared_size: Size reported by the transport, if known. The larger
            of this and ``len(data)`` is checked.

    Returns:
        The accepted UploadCandidate.

    Raises:
        UnsupportedTypeError: If the media type is not an image type.
        TooLargeError: If the payload exceeds ``max_bytes``.
    """
    if not is_image_media_type(media_type):
        logger.info(f"Rejected upload {filename!r}: unsupported type {media_type!r}")
        raise UnsupportedTypeError(media_type)

    size = max(len(data), declared_size or 0)
    if size > max_bytes:
        logger.info(f"Rejected upload {filename!r}: {size} bytes exceeds {max_bytes}")
        raise TooLargeError(size, max_bytes)

    return UploadCandidate(data=data, media_type=media_type.strip().lower(), filename=filename)


def to_data_uri(data: bytes, media_type: str) -> str:
    """Encode bytes as a base64 ``data:`` URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


async def materialize_preview(candidate: UploadCandidate) -> str | None:
    """Build a displayable preview of ``candidate``.

    Args:
        candidate: A validated upload.

    Returns:
        A ``data:`` URI, or None if encoding failed.
    """
    try:
        return await asyncio.to_thread(to_data_uri, candidate.data, candidate.media_type)
    except Exception as e:
        logger.warning(f"Preview encoding failed for {candidate.filename}: {e}")
        return None
