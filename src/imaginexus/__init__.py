"""ImagiNexus - image upload analysis and tiered AI image generation."""

__version__ = "0.3.0"

from imaginexus.core.config import ImaginexusConfig, config
from imaginexus.core.tiers import STYLE_TOKENS, Tier

__all__ = [
    "ImaginexusConfig",
    "config",
    "STYLE_TOKENS",
    "Tier",
]
