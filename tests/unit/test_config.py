"""Tests for imaginexus.core.config — configuration management.

Tests cover:
- Default values for upload ceilings and fallback parameters.
- Environment variable overrides via the IMAGINEXUS_ prefix.
- Automatic directory creation and database path resolution.
- Pydantic validation constraints.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from imaginexus.core.config import ImaginexusConfig

MB = 1024 * 1024


def _config(temp_dir: Path, **overrides) -> ImaginexusConfig:
    return ImaginexusConfig(
        data_dir=temp_dir / "data",
        gallery_dir=temp_dir / "gallery",
        _env_file=None,
        **overrides,
    )


class TestConfigDefaults:
    """Verify that ImaginexusConfig provides the documented defaults."""

    def test_upload_ceilings(self, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.general_upload_max_bytes == 10 * MB
        assert cfg.specialty_upload_max_bytes == 5 * MB

    def test_fallback_parameters(self, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.fallback_max_dimension == 1024
        assert cfg.fallback_jpeg_quality == 0.85

    def test_generation_defaults(self, monkeypatch, temp_dir):
        monkeypatch.delenv("IMAGINEXUS_GENERATION_BACKEND", raising=False)
        cfg = _config(temp_dir)
        assert cfg.generation_backend == "gradio"
        assert cfg.generation_space == "Rooc/FLUX-Fast"
        assert cfg.generation_api_name == "/predict"

    def test_server_defaults(self, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.server_port == 7860
        assert cfg.log_level == "INFO"
        assert cfg.max_sessions == 1000


class TestConfigDirectories:
    """Test directory creation and path resolution."""

    def test_directories_created(self, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.data_dir.is_dir()
        assert cfg.gallery_dir.is_dir()

    def test_database_path_defaults_into_data_dir(self, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.database_path == temp_dir / "data" / "imaginexus.db"

    def test_database_path_override(self, temp_dir):
        cfg = _config(temp_dir, database_path=temp_dir / "db" / "quota.sqlite")
        assert cfg.database_path.parent.is_dir()


class TestEnvironmentOverrides:
    """Test IMAGINEXUS_ environment variables."""

    def test_env_sets_ceiling(self, monkeypatch, temp_dir):
        monkeypatch.setenv("IMAGINEXUS_SPECIALTY_UPLOAD_MAX_BYTES", str(2 * MB))
        assert _config(temp_dir).specialty_upload_max_bytes == 2 * MB

    def test_env_selects_backend(self, monkeypatch, temp_dir):
        monkeypatch.setenv("IMAGINEXUS_GENERATION_BACKEND", "placeholder")
        assert _config(temp_dir).generation_backend == "placeholder"


class TestUploadLimitFor:
    """Test the per-flow ceiling lookup."""

    def test_specialty_style_uses_specialty_ceiling(self, temp_dir):
        assert _config(temp_dir).upload_limit_for("ghibli") == 5 * MB

    def test_other_styles_use_general_ceiling(self, temp_dir):
        assert _config(temp_dir).upload_limit_for("anime") == 10 * MB


class TestValidation:
    """Test Pydantic field constraints."""

    def test_quality_above_one_rejected(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, fallback_jpeg_quality=85)

    def test_unknown_backend_rejected(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, generation_backend="dalle")

    def test_port_range(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, server_port=80)

    def test_zero_ceiling_rejected(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, general_upload_max_bytes=0)

    def test_zero_sessions_rejected(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, max_sessions=0)
