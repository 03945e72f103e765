"""Image generation clients.

A generation client turns a prompt, style and aspect ratio into a resolvable
image URL. Two implementations are provided:

- :class:`GradioGenerationClient` calls a hosted Gradio Space (FLUX by
  default) through ``gradio_client``. Files returned by the Space are copied
  into the gallery directory and served under ``/static/gallery``; remote
  URLs are passed through unchanged.
- :class:`PlaceholderGenerationClient` renders a flat-colour image locally.
  It needs no network access and is used for development and tests.
"""

import asyncio
import hashlib
import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from gradio_client import Client
from PIL import Image

from imaginexus.core.errors import GenerationError
from imaginexus.core.prompts import build_generation_prompt

logger = logging.getLogger(__name__)

GALLERY_URL_PREFIX = "/static/gallery"


@dataclass(frozen=True)
class GenerationResult:
    """What a generation client returns.

    Attributes:
        image_url: URL the browser can load.
        prompt: The user's prompt, echoed back.
        model_prompt: The full text sent to the model.
    """

    image_url: str
    prompt: str
    model_prompt: str


class GenerationClient(Protocol):
    """Produce an image from a prompt."""

    async def generate(
        self,
        prompt: str,
        style: str,
        user_id: str,
        *,
        aspect_ratio: str = "1:1",
        quality: str | None = None,
        detail_level: str | None = None,
    ) -> GenerationResult: ...


def extract_image_source(result: Any) -> str:
    """Pull a file path or URL out of a Gradio prediction result.

    Spaces return either a bare path, a file dict (``{"url": ..., "path": ...}``)
    or a list/tuple whose first element is one of those.

    Raises:
        GenerationError: If the result holds no usable image reference.
    """
    if isinstance(result, (list, tuple)):
        if not result:
            raise GenerationError("Invalid response: No data received")
        return extract_image_source(result[0])

    if isinstance(result, dict):
        for key in ("url", "path", "image"):
            value = result.get(key)
            if isinstance(value, (str, dict)) and value:
                return extract_image_source(value)
        raise GenerationError("No image URL received in response")

    if isinstance(result, str) and result.strip():
        return result.strip()

    raise GenerationError("No image URL received in response")


class GradioGenerationClient:
    """Generation client for a hosted Gradio Space.

    ``gradio_client`` is synchronous, so predictions run in a worker thread.
    The Space connection is opened lazily on the first request.

    Args:
        space: Hugging Face Space id, e.g. ``"Rooc/FLUX-Fast"``.
        gallery_dir: Directory that receives downloaded result files.
        api_name: Space endpoint to call.
        hf_token: Optional Hugging Face token.
    """

    def __init__(
        self,
        space: str,
        gallery_dir: Path,
        api_name: str = "/predict",
        hf_token: str | None = None,
    ) -> None:
        self.space = space
        self.gallery_dir = Path(gallery_dir)
        self.api_name = api_name
        self._hf_token = hf_token
        self._client: Client | None = None

    def _get_client(self) -> Client:
        if self._client is None:
            logger.info(f"Connecting to generation Space {self.space}")
            kwargs = {"hf_token": self._hf_token} if self._hf_token else {}
            self._client = Client(self.space, **kwargs)
        return self._client

    def _predict(self, model_prompt: str) -> Any:
        return self._get_client().predict(param_0=model_prompt, api_name=self.api_name)

    def _store(self, source: str) -> str:
        """Return a browser-loadable URL for ``source``."""
        if source.startswith(("http://", "https://")):
            return source

        path = Path(source)
        if not path.is_file():
            raise GenerationError(f"Generated file not found: {source}")

        filename = f"{uuid.uuid4().hex}{path.suffix or '.png'}"
        shutil.copyfile(path, self.gallery_dir / filename)
        return f"{GALLERY_URL_PREFIX}/{filename}"

    async def generate(
        self,
        prompt: str,
        style: str,
        user_id: str,
        *,
        aspect_ratio: str = "1:1",
        quality: str | None = None,
        detail_level: str | None = None,
    ) -> GenerationResult:
        model_prompt = build_generation_prompt(
            prompt, style, aspect_ratio, quality=quality, detail_level=detail_level
        )
        logger.info(f"Requesting {style} image for user {user_id} from {self.space}")

        try:
            result = await asyncio.to_thread(self._predict, model_prompt)
        except Exception as e:
            raise GenerationError(str(e) or "Failed to generate image") from e

        logger.debug(f"Raw generation response: {result!r}")
        source = extract_image_source(result)
        image_url = await asyncio.to_thread(self._store, source)
        return GenerationResult(image_url=image_url, prompt=prompt, model_prompt=model_prompt)


def dimensions_for(aspect_ratio: str, short_side: int = 512) -> tuple[int, int]:
    """Pixel size for an aspect-ratio token, falling back to square.

    Examples:
        >>> dimensions_for("16:9")
        (910, 512)
        >>> dimensions_for("3:4")
        (512, 683)
    """
    try:
        w, h = (float(part) for part in aspect_ratio.split(":", 1))
    except ValueError:
        return short_side, short_side
    if w <= 0 or h <= 0:
        return short_side, short_side
    if w >= h:
        return round(short_side * w / h), short_side
    return short_side, round(short_side * h / w)


class PlaceholderGenerationClient:
    """Offline generation client that renders a flat-colour image.

    The colour is derived from the prompt and style so identical requests
    produce identical images.
    """

    def __init__(self, gallery_dir: Path) -> None:
        self.gallery_dir = Path(gallery_dir)

    def _render(self, model_prompt: str, aspect_ratio: str) -> str:
        digest = hashlib.sha256(model_prompt.encode("utf-8")).digest()
        image = Image.new("RGB", dimensions_for(aspect_ratio), color=tuple(digest[:3]))
        filename = f"{uuid.uuid4().hex}.png"
        image.save(self.gallery_dir / filename, format="PNG")
        return f"{GALLERY_URL_PREFIX}/{filename}"

    async def generate(
        self,
        prompt: str,
        style: str,
        user_id: str,
        *,
        aspect_ratio: str = "1:1",
        quality: str | None = None,
        detail_level: str | None = None,
    ) -> GenerationResult:
        model_prompt = build_generation_prompt(
            prompt, style, aspect_ratio, quality=quality, detail_level=detail_level
        )
        image_url = await asyncio.to_thread(self._render, model_prompt, aspect_ratio)
        logger.info(f"Rendered placeholder {style} image for user {user_id}: {image_url}")
        return GenerationResult(image_url=image_url, prompt=prompt, model_prompt=model_prompt)
