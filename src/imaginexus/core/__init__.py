"""Core functionality for the image submission pipeline.

This package holds everything that does not talk to a network service:

- **config**: ImaginexusConfig loaded from IMAGINEXUS_* environment variables
- **errors**: the exception hierarchy surfaced to users
- **models**: UploadCandidate, GeneratedArtifact and QuotaState
- **uploads**: upload validation and preview materialisation
- **imaging**: downscale/re-encode helpers and degradation strategies
- **tiers**: the subscription tier policy table and the quota gate
- **prompts**: prompt composition and enhancement
- **pipeline**: orchestrators, the run state machine and sessions

The pipeline module is not imported here because it depends on the client
protocols in :mod:`imaginexus.clients`; import it directly.
"""

from imaginexus.core.config import ImaginexusConfig, config
from imaginexus.core.errors import (
    AnalysisError,
    AnalysisFallbackError,
    GenerationError,
    ImaginexusError,
    QuotaExceededError,
    QuotaReason,
    ValidationError,
)
from imaginexus.core.models import GeneratedArtifact, QuotaState, UploadCandidate
from imaginexus.core.tiers import Tier, allowed_styles, check_quota

__all__ = [
    "AnalysisError",
    "AnalysisFallbackError",
    "GeneratedArtifact",
    "GenerationError",
    "ImaginexusConfig",
    "ImaginexusError",
    "QuotaExceededError",
    "QuotaReason",
    "QuotaState",
    "Tier",
    "UploadCandidate",
    "ValidationError",
    "allowed_styles",
    "check_quota",
    "config",
]
