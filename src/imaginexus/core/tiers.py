"""Subscription tier policy and the quota gate.

The policy table is explicit configuration: every tier lists the styles it
unlocks and its two daily limits. Higher tiers include every style of the
tiers below them and never lower a limit.

=========  ==============================================  =======  =========
Tier       Styles added at this tier                       General  Specialty
=========  ==============================================  =======  =========
FREE       photorealistic, digital-art, illustration,      10       5
           ghibli
BASIC      3d-render, pixel-art                            50       10
PRO        anime                                           100      25
UNLIMITED  watercolor, oil-painting                        10000    1000
=========  ==============================================  =======  =========

``ghibli`` is the specialty style. Generations in that style are counted only
against the specialty pool; every other style draws on the general pool.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import QuotaReason
from .models import QuotaState

SPECIALTY_STYLE = "ghibli"

STYLE_TOKENS: tuple[str, ...] = (
    "photorealistic",
    "digital-art",
    "illustration",
    "3d-render",
    "pixel-art",
    "anime",
    "ghibli",
    "watercolor",
    "oil-painting",
)

ASPECT_RATIOS: tuple[str, ...] = ("1:1", "16:9", "9:16", "4:3", "3:4")


class Tier(str, Enum):
    """Subscription levels, declared from lowest to highest."""

    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    UNLIMITED = "UNLIMITED"

    @property
    def rank(self) -> int:
        return list(Tier).index(self)


@dataclass(frozen=True)
class TierPolicy:
    """Capabilities granted by one tier."""

    tier: Tier
    styles: frozenset[str]
    images_limit: int
    ghibli_images_limit: int


def _build_policies() -> dict[Tier, TierPolicy]:
    added = {
        Tier.FREE: ("photorealistic", "digital-art", "illustration", SPECIALTY_STYLE),
        Tier.BASIC: ("3d-render", "pixel-art"),
        Tier.PRO: ("anime",),
        Tier.UNLIMITED: ("watercolor", "oil-painting"),
    }
    limits = {
        Tier.FREE: (10, 5),
        Tier.BASIC: (50, 10),
        Tier.PRO: (100, 25),
        Tier.UNLIMITED: (10000, 1000),
    }

    policies: dict[Tier, TierPolicy] = {}
    styles: frozenset[str] = frozenset()
    for tier in Tier:
        styles = styles | frozenset(added[tier])
        general, specialty = limits[tier]
        policies[tier] = TierPolicy(tier, styles, general, specialty)
    return policies


TIER_POLICIES: dict[Tier, TierPolicy] = _build_policies()


def parse_tier(value: str | Tier) -> Tier:
    """Coerce a stored or user-supplied tier name into a :class:`Tier`.

    Raises:
        ValueError: If the name is not a known tier.
    """
    if isinstance(value, Tier):
        return value
    try:
        return Tier(value.upper())
    except ValueError as e:
        raise ValueError(f"Unknown tier: {value}") from e


def policy_for(tier: str | Tier) -> TierPolicy:
    return TIER_POLICIES[parse_tier(tier)]


def allowed_styles(tier: str | Tier) -> list[str]:
    """Styles selectable on ``tier``, in canonical display order."""
    styles = policy_for(tier).styles
    return [style for style in STYLE_TOKENS if style in styles]


def minimum_tier_for(style: str) -> Tier | None:
    """Lowest tier that unlocks ``style``, or None for unknown styles."""
    for tier in Tier:
        if style in TIER_POLICIES[tier].styles:
            return tier
    return None


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of the quota gate."""

    allowed: bool
    reason: QuotaReason | None = None


def check_quota(state: QuotaState, style: str) -> QuotaDecision:
    """Decide whether ``state`` permits one more generation in ``style``.

    Tier membership is checked first, then the pool the style draws on.

    Args:
        state: Current quota snapshot for the user.
        style: Requested style token.

    Returns:
        QuotaDecision with ``allowed`` and, when refused, the reason.
    """
    if style not in policy_for(state.tier).styles:
        return QuotaDecision(False, QuotaReason.STYLE_NOT_IN_TIER)

    if style == SPECIALTY_STYLE:
        if state.ghibli_images_generated >= state.ghibli_images_limit:
            return QuotaDecision(False, QuotaReason.STYLE_LIMIT_REACHED)
    elif state.images_generated >= state.images_limit:
        return QuotaDecision(False, QuotaReason.GENERAL_LIMIT_REACHED)

    return QuotaDecision(True)
