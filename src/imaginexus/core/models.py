"""Data models shared by the pipeline, the clients and the API layer."""

import time
import uuid
from dataclasses import asdict, dataclass, field


@dataclass
class UploadCandidate:
    """An image file selected by the user, before any network call.

    The candidate is only constructed by :func:`imaginexus.core.uploads.validate_upload`,
    so a live instance always has an image media type and a size within the
    ceiling it was validated against.
    """

    data: bytes
    media_type: str
    filename: str = ""

    def __post_init__(self) -> None:
        if not self.filename:
            self.filename = f"upload-{uuid.uuid4().hex[:12]}"

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return len(self.data)


@dataclass(frozen=True)
class GeneratedArtifact:
    """An immutable record of one generated image.

    Records are only ever created and read; there is no update path.
    """

    image_url: str
    prompt: str
    style: str
    aspect_ratio: str
    user_id: str
    created_at: float = field(default_factory=time.time)
    id: str | None = None

    def to_dict(self) -> dict:
        """Return the record as a plain dictionary."""
        return asdict(self)


@dataclass(frozen=True)
class QuotaState:
    """Per-user daily counters and the limits they are measured against.

    Instances are snapshots of the persisted subscription row. The pipeline
    never builds a modified copy with a bumped counter; a new snapshot is
    always re-read from the repository.
    """

    user_id: str
    tier: str
    images_generated: int
    images_limit: int
    ghibli_images_generated: int
    ghibli_images_limit: int
    last_refresh: float

    @property
    def images_remaining(self) -> int:
        return max(self.images_limit - self.images_generated, 0)

    @property
    def ghibli_images_remaining(self) -> int:
        return max(self.ghibli_images_limit - self.ghibli_images_generated, 0)

    def to_dict(self) -> dict:
        return asdict(self)
