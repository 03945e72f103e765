"""Configuration management for the ImagiNexus image service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGINEXUS_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGINEXUS_* prefix)
2. .env file in the project root
3. Default values defined in ImaginexusConfig

Example .env file:
    IMAGINEXUS_GEMINI_API_KEY=your-key
    IMAGINEXUS_GENERATION_BACKEND=gradio
    IMAGINEXUS_GENERATION_SPACE=Rooc/FLUX-Fast
    IMAGINEXUS_DATA_DIR=data

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from imaginexus.core.config import config

    print(config.general_upload_max_bytes)
    print(config.database_path)

Upload and Fallback Constraints
-------------------------------
- general_upload_max_bytes: ceiling for the general upload flow (10 MB)
- specialty_upload_max_bytes: ceiling for the specialty-style flow (5 MB)
- fallback_max_dimension: longest edge after the analysis fallback re-encode
- fallback_jpeg_quality: quality (0-1) of the fallback JPEG re-encode

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: SQLite database and other state
- gallery_dir: generated image files served under /static/gallery
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from imaginexus.core.tiers import SPECIALTY_STYLE

MEGABYTE = 1024 * 1024

DEFAULT_ANALYSIS_INSTRUCTION = (
    "Analyze this image in detail and create a comprehensive descriptive prompt "
    "that would generate a similar image. Include all visual elements, subjects, "
    "colors, composition, lighting, mood, and background details. Be specific "
    "and detailed but concise."
)


class ImaginexusConfig(BaseSettings):
    """Main configuration for the ImagiNexus image service.

    Values are loaded from environment variables with the IMAGINEXUS_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Upload Settings:
        general_upload_max_bytes : int
            Byte ceiling for the general upload flow
        specialty_upload_max_bytes : int
            Byte ceiling for the specialty-style (ghibli) upload flow

    Analysis Settings:
        gemini_api_key : str | None
            API key for the Gemini analysis client
        gemini_model : str
            Gemini model used to describe uploaded images
        analysis_instruction : str
            Fixed instruction sent alongside every uploaded image
        fallback_max_dimension : int
            Maximum width/height of the fallback re-encode
        fallback_jpeg_quality : float
            JPEG quality (0-1) of the fallback re-encode

    Generation Settings:
        generation_backend : Literal["gradio", "placeholder"]
            Which generation client the API instantiates
        generation_space : str
            Hugging Face Space called by the gradio backend
        generation_api_name : str
            Endpoint name on the Space

    Paths:
        data_dir : Path
            Directory for the SQLite database
        gallery_dir : Path
            Directory for generated image files
        database_path : Path | None
            SQLite file (defaults to data_dir / "imaginexus.db")

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        log_level : str
            Root logging level applied by main()
        max_sessions : int
            Upper bound on per-user sessions held in memory

    Examples
    --------
        >>> custom = ImaginexusConfig(generation_backend="placeholder", _env_file=None)
        >>> custom.fallback_max_dimension
        1024
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGINEXUS_",
        case_sensitive=False,
    )

    # Upload ceilings (caller-configured, independent of each other)
    general_upload_max_bytes: int = Field(
        default=10 * MEGABYTE,
        description="Maximum upload size for the general upload flow",
        gt=0,
    )
    specialty_upload_max_bytes: int = Field(
        default=5 * MEGABYTE,
        description="Maximum upload size for the specialty-style upload flow",
        gt=0,
    )

    # Analysis client
    gemini_api_key: str | None = Field(
        default=None,
        description="API key for Google Gemini image analysis",
    )
    gemini_model: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model used to describe uploaded images",
    )
    analysis_instruction: str = Field(
        default=DEFAULT_ANALYSIS_INSTRUCTION,
        description="Instruction sent with every image to the analysis client",
    )

    # Analysis fallback re-encode
    fallback_max_dimension: int = Field(default=1024, ge=64, le=4096)
    fallback_jpeg_quality: float = Field(default=0.85, gt=0.0, le=1.0)

    # Generation client
    generation_backend: Literal["gradio", "placeholder"] = Field(
        default="gradio",
        description="Generation client implementation (gradio or placeholder)",
    )
    generation_space: str = Field(
        default="Rooc/FLUX-Fast",
        description="Hugging Face Space used for image generation",
    )
    generation_api_name: str = Field(
        default="/predict",
        description="API endpoint name on the generation Space",
    )
    hf_token: str | None = Field(
        default=None,
        description="Optional Hugging Face token for private or rate-limited Spaces",
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for the SQLite database",
    )
    gallery_dir: Path = Field(
        default=Path("data/gallery"),
        description="Directory to save generated images",
    )
    database_path: Path | None = Field(
        default=None,
        description="SQLite database file (defaults to data_dir/imaginexus.db)",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level applied by the CLI entry point",
    )
    max_sessions: int = Field(
        default=1000,
        description="Per-user sessions kept in memory before the oldest idle ones are evicted",
        ge=1,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        if self.database_path is None:
            self.database_path = self.data_dir / "imaginexus.db"

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.gallery_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def upload_limit_for(self, style: str) -> int:
        """Return the upload byte ceiling for the flow that serves ``style``."""
        if style == SPECIALTY_STYLE:
            return self.specialty_upload_max_bytes
        return self.general_upload_max_bytes


# Global configuration instance
# Loads values from environment variables (IMAGINEXUS_* prefix) and .env file.
config = ImaginexusConfig()
