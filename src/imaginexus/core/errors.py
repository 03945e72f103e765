"""Exception hierarchy for the image submission pipeline.

Every exception carries a message that is safe to show to the user. The API
layer maps each class to an HTTP status; library code only raises.
"""

from __future__ import annotations

from enum import Enum


class ImaginexusError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(ImaginexusError):
    """An upload was rejected before any network call was made.

    Attributes:
        reason: ``"UnsupportedType"`` or ``"TooLarge"``.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class UnsupportedTypeError(ValidationError):
    """The declared media type is not in the image family."""

    def __init__(self, media_type: str | None) -> None:
        super().__init__("UnsupportedType", "Please upload an image file")
        self.media_type = media_type


class TooLargeError(ValidationError):
    """The payload exceeds the caller-specified byte ceiling."""

    def __init__(self, size: int, limit: int) -> None:
        limit_mb = limit / (1024 * 1024)
        super().__init__("TooLarge", f"Image size cannot exceed {limit_mb:g}MB")
        self.size = size
        self.limit = limit


class AnalysisError(ImaginexusError):
    """The first analysis attempt failed; a fallback may follow."""


class AnalysisFallbackError(AnalysisError):
    """Every analysis attempt, including fallbacks, failed."""

    def __init__(self, attempts: list[str] | None = None) -> None:
        super().__init__("All image analysis methods failed. Please try another image.")
        self.attempts = attempts or []


class QuotaReason(str, Enum):
    """Why the quota gate refused a generation."""

    GENERAL_LIMIT_REACHED = "GeneralLimitReached"
    STYLE_LIMIT_REACHED = "StyleLimitReached"
    STYLE_NOT_IN_TIER = "StyleNotInTier"


_QUOTA_MESSAGES = {
    QuotaReason.GENERAL_LIMIT_REACHED: (
        "You've reached your daily limit. Upgrade your plan or wait until "
        "tomorrow for your limit to reset."
    ),
    QuotaReason.STYLE_LIMIT_REACHED: (
        "You've reached your daily limit for this style. Limit resets in 24 hours."
    ),
    QuotaReason.STYLE_NOT_IN_TIER: "This style is not available on your current plan.",
}


class QuotaExceededError(ImaginexusError):
    """Pre-flight refusal by the quota gate; no generation was attempted."""

    def __init__(self, reason: QuotaReason) -> None:
        super().__init__(_QUOTA_MESSAGES[reason])
        self.reason = reason


class GenerationError(ImaginexusError):
    """The generation client failed; the underlying message is passed through."""


class TierDowngradeError(ImaginexusError):
    """A subscription change would lower the user's tier."""


class ImageNotFoundError(ImaginexusError):
    """No generated-image record exists with the requested id."""


class PersistenceError(ImaginexusError):
    """The subscription store could not be read or written."""
