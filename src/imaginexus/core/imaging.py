"""Raster helpers and degradation strategies for the analysis fallback.

When the analysis service cannot convert or analyse an upload, the pipeline
retries with a degraded copy of the image. Each strategy turns an
:class:`UploadCandidate` into a smaller, more widely supported one and is
tried at most once, in list order.

The default list holds a single strategy: decode, shrink so neither side
exceeds 1024 px (aspect ratio preserved), and re-encode as JPEG at quality
0.85. Additional strategies can be appended without touching the
orchestration code.

Usage
-----
::

    strategy = ResizeReencodeStrategy(max_dimension=1024, quality=0.85)
    smaller = strategy.apply(candidate)
"""

import io
import logging
from abc import ABC, abstractmethod
from pathlib import PurePath

from PIL import Image, ImageOps

from .models import UploadCandidate

logger = logging.getLogger(__name__)


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale ``(width, height)`` so neither side exceeds ``max_dimension``.

    Images that already fit are returned unchanged; images are never
    upscaled. The longer side lands exactly on ``max_dimension`` and the
    shorter side is rounded, never below one pixel.

    Examples:
        >>> fit_within(2000, 1000, 1024)
        (1024, 512)
        >>> fit_within(1000, 2000, 1024)
        (512, 1024)
        >>> fit_within(800, 600, 1024)
        (800, 600)
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height

    if width >= height:
        new_width = max_dimension
        new_height = max(1, round(height * max_dimension / width))
    else:
        new_height = max_dimension
        new_width = max(1, round(width * max_dimension / height))
    return new_width, new_height


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to RGB, compositing any transparency onto white."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def downscale_and_reencode(data: bytes, max_dimension: int, quality: float) -> bytes:
    """Decode image bytes, shrink to fit ``max_dimension`` and return JPEG bytes.

    Args:
        data: Encoded source image (any format Pillow can read).
        max_dimension: Maximum width and height of the output.
        quality: JPEG quality in the 0-1 range.

    Returns:
        JPEG-encoded bytes.

    Raises:
        PIL.UnidentifiedImageError: If the payload is not a decodable image.
    """
    with Image.open(io.BytesIO(data)) as source:
        source.load()
        image = ImageOps.exif_transpose(source)

    image = _flatten(image)
    target = fit_within(image.width, image.height, max_dimension)
    if target != image.size:
        image = image.resize(target, Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=round(quality * 100))
    return buffer.getvalue()


class DegradationStrategy(ABC):
    """One way of producing a degraded copy of an upload for a retry."""

    name: str = "degradation"

    @abstractmethod
    def apply(self, candidate: UploadCandidate) -> UploadCandidate:
        """Return a degraded copy of ``candidate``.

        Raises:
            Exception: If the source cannot be decoded or re-encoded.
        """


class ResizeReencodeStrategy(DegradationStrategy):
    """Shrink to a maximum dimension and re-encode as JPEG."""

    name = "resize-reencode"

    def __init__(self, max_dimension: int = 1024, quality: float = 0.85) -> None:
        self.max_dimension = max_dimension
        self.quality = quality

    def apply(self, candidate: UploadCandidate) -> UploadCandidate:
        encoded = downscale_and_reencode(candidate.data, self.max_dimension, self.quality)
        stem = PurePath(candidate.filename).stem or "upload"
        logger.info(
            f"Re-encoded {candidate.filename}: {candidate.size} -> {len(encoded)} bytes "
            f"(max {self.max_dimension}px, quality {self.quality})"
        )
        return UploadCandidate(data=encoded, media_type="image/jpeg", filename=f"{stem}.jpg")

    def __repr__(self) -> str:
        return f"ResizeReencodeStrategy(max_dimension={self.max_dimension}, quality={self.quality})"


def default_degradation_strategies(
    max_dimension: int = 1024, quality: float = 0.85
) -> list[DegradationStrategy]:
    """Build the ordered fallback list used by the analysis orchestrator."""
    return [ResizeReencodeStrategy(max_dimension=max_dimension, quality=quality)]
