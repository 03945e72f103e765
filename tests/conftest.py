"""Shared pytest fixtures for ImagiNexus tests."""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from imaginexus.clients.generation import GenerationResult
from imaginexus.clients.persistence import SubscriptionRepository
from imaginexus.core.config import ImaginexusConfig


def make_image_bytes(width: int = 64, height: int = 48, fmt: str = "JPEG", mode: str = "RGB") -> bytes:
    """Encode a solid-colour image of the given size in memory."""
    color = (200, 80, 40, 0) if mode == "RGBA" else (200, 80, 40)
    image = Image.new(mode, (width, height), color=color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeAnalysisClient:
    """Analysis double that replays a scripted list of outcomes.

    Each entry is either a description string or an exception instance to
    raise. Every call is recorded as ``(size, media_type)``.
    """

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes) or ["A cozy cottage in a green valley"]
        self.calls: list[tuple[int, str]] = []

    async def describe(self, image: bytes, media_type: str, instruction: str) -> str:
        self.calls.append((len(image), media_type))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeGenerationClient:
    """Generation double returning a fixed URL, or raising ``error`` if set."""

    def __init__(self, image_url: str = "https://images.example/out.png", error=None) -> None:
        self.image_url = image_url
        self.error = error
        self.calls: list[dict] = []

    async def generate(
        self, prompt, style, user_id, *, aspect_ratio="1:1", quality=None, detail_level=None
    ):
        self.calls.append(
            {
                "prompt": prompt,
                "style": style,
                "user_id": user_id,
                "aspect_ratio": aspect_ratio,
                "quality": quality,
                "detail_level": detail_level,
            }
        )
        if self.error is not None:
            raise self.error
        return GenerationResult(image_url=self.image_url, prompt=prompt, model_prompt=prompt)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ImaginexusConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ImaginexusConfig instance for testing
    """
    return ImaginexusConfig(
        data_dir=temp_dir / "data",
        gallery_dir=temp_dir / "gallery",
        generation_backend="placeholder",
        gemini_api_key=None,
        _env_file=None,
    )


@pytest.fixture
def clock():
    """A settable clock, starting at 2024-03-01 12:00 UTC."""

    class Clock:
        now = 1709294400.0

        def __call__(self) -> float:
            return self.now

    return Clock()


@pytest.fixture
def repository(test_config: ImaginexusConfig, clock) -> SubscriptionRepository:
    """Subscription repository on a fresh database with an injectable clock."""
    return SubscriptionRepository(test_config.database_path, clock=clock)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def generation_client() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def test_client(test_config, repository, analysis_client, generation_client):
    """FastAPI TestClient wired to fake analysis and generation clients."""
    from imaginexus.api.main import create_app

    app = create_app(
        test_config,
        repository=repository,
        analysis_client=analysis_client,
        generation_client=generation_client,
    )
    with TestClient(app) as client:
        yield client
