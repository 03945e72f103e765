"""Tests for imaginexus.core.tiers — the tier policy table and quota gate.

Tests cover:
- Style inclusion across tiers and monotone limits.
- Tier parsing and ranking.
- Each refusal reason of check_quota, and the order they are checked in.
"""

from __future__ import annotations

import pytest

from imaginexus.core.errors import QuotaReason
from imaginexus.core.models import QuotaState
from imaginexus.core.tiers import (
    SPECIALTY_STYLE,
    STYLE_TOKENS,
    TIER_POLICIES,
    Tier,
    allowed_styles,
    check_quota,
    minimum_tier_for,
    parse_tier,
    policy_for,
)


def _state(tier="FREE", general=0, general_limit=10, specialty=0, specialty_limit=5) -> QuotaState:
    return QuotaState(
        user_id="u1",
        tier=tier,
        images_generated=general,
        images_limit=general_limit,
        ghibli_images_generated=specialty,
        ghibli_images_limit=specialty_limit,
        last_refresh=0.0,
    )


class TestTierPolicies:
    """Test the policy table."""

    def test_every_tier_has_a_policy(self):
        assert set(TIER_POLICIES) == set(Tier)

    def test_higher_tiers_include_lower_styles(self):
        tiers = list(Tier)
        for lower, higher in zip(tiers, tiers[1:]):
            assert TIER_POLICIES[lower].styles <= TIER_POLICIES[higher].styles

    def test_limits_never_decrease(self):
        tiers = list(Tier)
        for lower, higher in zip(tiers, tiers[1:]):
            assert TIER_POLICIES[lower].images_limit <= TIER_POLICIES[higher].images_limit
            assert (
                TIER_POLICIES[lower].ghibli_images_limit
                <= TIER_POLICIES[higher].ghibli_images_limit
            )

    def test_unlimited_unlocks_every_style(self):
        assert allowed_styles(Tier.UNLIMITED) == list(STYLE_TOKENS)

    def test_free_styles(self):
        assert allowed_styles("FREE") == [
            "photorealistic",
            "digital-art",
            "illustration",
            "ghibli",
        ]

    def test_specialty_style_is_free(self):
        assert minimum_tier_for(SPECIALTY_STYLE) is Tier.FREE

    def test_minimum_tier_for(self):
        assert minimum_tier_for("anime") is Tier.PRO
        assert minimum_tier_for("oil-painting") is Tier.UNLIMITED
        assert minimum_tier_for("crayon") is None


class TestParseTier:
    """Test tier parsing and ordering."""

    def test_parse_is_case_insensitive(self):
        assert parse_tier("pro") is Tier.PRO

    def test_parse_passes_enum_through(self):
        assert parse_tier(Tier.BASIC) is Tier.BASIC

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown tier"):
            parse_tier("PLATINUM")

    def test_rank_order(self):
        assert Tier.FREE.rank < Tier.BASIC.rank < Tier.PRO.rank < Tier.UNLIMITED.rank

    def test_policy_for_string(self):
        assert policy_for("basic").images_limit == 50


class TestCheckQuota:
    """Test the quota gate decisions."""

    def test_allowed_within_limits(self):
        decision = check_quota(_state(general=3), "photorealistic")
        assert decision.allowed
        assert decision.reason is None

    def test_style_not_in_tier(self):
        decision = check_quota(_state(), "watercolor")
        assert not decision.allowed
        assert decision.reason is QuotaReason.STYLE_NOT_IN_TIER

    def test_general_limit_reached(self):
        decision = check_quota(_state(general=10), "digital-art")
        assert decision.reason is QuotaReason.GENERAL_LIMIT_REACHED

    def test_specialty_limit_reached_with_general_headroom(self):
        """FREE user with ghibli 5/5 and general 3/10 is refused for ghibli."""
        decision = check_quota(_state(general=3, specialty=5), "ghibli")
        assert not decision.allowed
        assert decision.reason is QuotaReason.STYLE_LIMIT_REACHED

    def test_specialty_style_ignores_general_pool(self):
        decision = check_quota(_state(general=10, specialty=0), "ghibli")
        assert decision.allowed

    def test_general_style_ignores_specialty_pool(self):
        decision = check_quota(_state(general=0, specialty=5), "illustration")
        assert decision.allowed

    def test_tier_checked_before_limits(self):
        """An exhausted user asking for a locked style hears about the tier."""
        decision = check_quota(_state(general=10, specialty=5), "anime")
        assert decision.reason is QuotaReason.STYLE_NOT_IN_TIER

    def test_higher_tier_unlocks_style(self):
        decision = check_quota(_state(tier="PRO", general_limit=100), "anime")
        assert decision.allowed
