"""Image analysis clients.

An analysis client turns an image into a text description. The pipeline only
depends on the :class:`AnalysisClient` protocol; :class:`GeminiAnalysisClient`
is the production implementation on top of the ``google-genai`` SDK.

Service failures are re-raised as :class:`AnalysisError` with a message
starting ``"Failed to analyze image"`` so the orchestrator can tell them
apart from configuration problems, which are not worth retrying.
"""

import logging
from typing import Protocol

from google import genai
from google.genai import types

from imaginexus.core.errors import AnalysisError

logger = logging.getLogger(__name__)


class AnalysisClient(Protocol):
    """Describe an image in natural language."""

    async def describe(self, image: bytes, media_type: str, instruction: str) -> str: ...


class GeminiAnalysisClient:
    """Analysis client backed by a Gemini multimodal model.

    The SDK client is created lazily on the first call so the application can
    start without an API key configured.

    Args:
        api_key: Gemini API key.
        model: Model name, e.g. ``"gemini-2.0-flash"``.
        client: Pre-built ``genai.Client`` (for tests).
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-2.0-flash",
        client: genai.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise AnalysisError("Gemini API key not found")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def describe(self, image: bytes, media_type: str, instruction: str) -> str:
        """Send ``image`` and ``instruction`` to Gemini and return the reply text.

        Raises:
            AnalysisError: If the key is missing or the service call fails.
        """
        client = self._get_client()
        logger.info(f"Analyzing {len(image)} byte {media_type} image with {self.model}")
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=[types.Part.from_bytes(data=image, mime_type=media_type), instruction],
            )
        except Exception as e:
            raise AnalysisError(f"Failed to analyze image: {e}") from e
        return response.text
