"""Pydantic request models for the ImagiNexus API.

FastAPI uses these models for automatic request validation, serialisation
and OpenAPI documentation generation. Multipart upload endpoints take form
fields directly and have no model here.

Models
------
GenerateRequest
    Payload for ``POST /api/generate`` — text prompt generation.
UpgradeRequest
    Payload for ``POST /api/subscription/{user_id}/upgrade``.
EnhanceRequest
    Payload for ``POST /api/prompt/enhance``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from imaginexus.core.tiers import STYLE_TOKENS, Tier


def check_style(value: str) -> str:
    """Normalise a style token, raising ``ValueError`` if it is unknown."""
    value = value.strip().lower()
    if value not in STYLE_TOKENS:
        raise ValueError(f"Unknown style: {value}. Expected one of {', '.join(STYLE_TOKENS)}")
    return value


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        user_id: Identifier of the signed-in user (from the auth provider).
        prompt: Scene description. May be an edited analysis result.
        style: Style token; must be unlocked by the user's tier.
        aspect_ratio: Aspect-ratio token, passed through to the model.
        quality: Optional quality hint (``"standard"``, ``"high"``,
            ``"ultra-high"``, ``"max"``).
        detail_level: Optional resolution hint (``"4k"``, ``"8k"``, ``"16k"``).
        enhance: If ``True``, append a descriptive enhancer before generating.
    """

    user_id: str = Field(..., min_length=1, description="Signed-in user identifier.")
    prompt: str = Field(..., description="Scene description to generate.")
    style: str = Field(default="photorealistic", description="Style token.")
    aspect_ratio: str = Field(default="1:1", description="Aspect ratio, e.g. '16:9'.")
    quality: str | None = Field(default=None, description="Optional quality hint.")
    detail_level: str | None = Field(default=None, description="Optional resolution hint.")
    enhance: bool = Field(default=False, description="Append a prompt enhancer first.")

    @field_validator("style")
    @classmethod
    def validate_style(cls, value: str) -> str:
        return check_style(value)


class UpgradeRequest(BaseModel):
    """Request body for the tier upgrade endpoint.

    Attributes:
        tier: Target tier (``FREE``, ``BASIC``, ``PRO`` or ``UNLIMITED``).
    """

    tier: Tier = Field(..., description="Target subscription tier.")

    @field_validator("tier", mode="before")
    @classmethod
    def normalise_tier(cls, value):
        return value.upper() if isinstance(value, str) else value


class EnhanceRequest(BaseModel):
    """Request body for ``POST /api/prompt/enhance``."""

    prompt: str = Field(..., min_length=1, description="Prompt to enhance.")
