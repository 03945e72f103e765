"""Tests for imaginexus.api.models — Pydantic request models.

Tests cover:
- GenerateRequest defaults and style validation.
- UpgradeRequest tier normalisation.
- EnhanceRequest minimum length.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from imaginexus.api.models import EnhanceRequest, GenerateRequest, UpgradeRequest
from imaginexus.core.tiers import Tier


class TestGenerateRequest:
    """Test GenerateRequest validation."""

    def test_minimal_request_defaults(self):
        req = GenerateRequest(user_id="u1", prompt="a red barn")
        assert req.style == "photorealistic"
        assert req.aspect_ratio == "1:1"
        assert req.quality is None
        assert req.enhance is False

    def test_style_is_normalised(self):
        req = GenerateRequest(user_id="u1", prompt="a red barn", style="  Ghibli ")
        assert req.style == "ghibli"

    def test_unknown_style_rejected(self):
        with pytest.raises(ValidationError, match="Unknown style"):
            GenerateRequest(user_id="u1", prompt="a red barn", style="crayon")

    def test_empty_user_rejected(self):
        with pytest.raises(ValidationError):
            GenerateRequest(user_id="", prompt="a red barn")

    def test_blank_prompt_allowed_by_model(self):
        """Blank prompts are rejected by the pipeline, not the model."""
        req = GenerateRequest(user_id="u1", prompt="")
        assert req.prompt == ""


class TestUpgradeRequest:
    """Test UpgradeRequest parsing."""

    def test_lowercase_tier_accepted(self):
        assert UpgradeRequest(tier="pro").tier is Tier.PRO

    def test_unknown_tier_rejected(self):
        with pytest.raises(ValidationError):
            UpgradeRequest(tier="platinum")


class TestEnhanceRequest:
    def test_empty_prompt_rejected(self):
        with pytest.raises(ValidationError):
            EnhanceRequest(prompt="")
