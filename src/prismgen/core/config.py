"""Configuration management for the Prism image generator.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PRISM_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PRISM_* prefix)
2. .env file in the project root
3. Default values defined in PrismConfig

Example .env file:
    PRISM_REPLICATE_API_TOKEN=r8_xxx
    PRISM_DEFAULT_MODEL=flux-schnell
    PRISM_UPLOAD_ENDPOINT=https://example.org/.netlify/functions/upload-to-r2
    PRISM_DAILY_LIMIT=20

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
It is only the default: every component receives its configuration
explicitly, so tests construct their own ``PrismConfig`` with temporary paths.

Usage Example
-------------
    from prismgen.core.config import config

    print(config.default_model)
    print(config.database_path)

Directory Management
--------------------
The configuration creates ``data_dir`` on initialization. The SQLite
database and the usage file default to locations inside it.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PrismConfig(BaseSettings):
    """Main configuration for the Prism image generator.

    Attributes
    ----------
    Provider Settings:
        replicate_api_token : str
            API token used by the Replicate adapter (empty = not configured)
        replicate_base_url : str
            Base URL of the Replicate HTTP API
        request_timeout : float
            Timeout in seconds for a single provider HTTP request
        poll_interval : float
            Seconds between prediction status polls
        max_poll_attempts : int
            Polls before a prediction is considered timed out

    Model Settings:
        default_model : str
            Model id used when a request does not name one
        models_file : Path | None
            Optional JSON file overriding the built-in model catalog
        adapter_plugins : list[str]
            Adapter classes loaded at startup ("module:ClassName", JSON list in env)

    Asset Persistence:
        upload_endpoint : str | None
            URL of the grouped upload service (None = keep provider URLs)
        upload_timeout : float
            Timeout for the grouped upload request
        publish_generations : bool
            Whether persisted generation records are public

    Usage Limits:
        enable_usage_limits : bool
            Enforce the quota checks before each generation
        daily_limit, hourly_limit, session_limit : int
            Generations allowed per day / clock hour / process session

    Orchestration:
        progress_interval : float
            Cadence of synthesized progress updates in seconds
        completion_grace_seconds : float
            Maximum time completion waits on persistence before finalizing
        restore_history_limit : int
            Records loaded from the database into history at startup (0 = none)

    Paths:
        data_dir : Path
            Directory holding the database and usage file
        database_path : Path | None
            SQLite database (default: data_dir / "prism.db")
        usage_file : Path | None
            Usage tracking JSON file (default: data_dir / "usage.json")

    Server Settings:
        server_host, server_port, log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PRISM_",
        case_sensitive=False,
    )

    # Provider settings
    replicate_api_token: str = Field(
        default="",
        description="Replicate API token (adapter reports not configured when empty)",
    )
    replicate_base_url: str = Field(
        default="https://api.replicate.com",
        description="Base URL of the Replicate HTTP API",
    )
    request_timeout: float = Field(default=60.0, gt=0, description="Provider request timeout")
    poll_interval: float = Field(default=2.0, gt=0, description="Prediction poll interval")
    max_poll_attempts: int = Field(default=150, ge=1, description="Maximum prediction polls")

    # Model settings
    default_model: str = Field(default="flux-schnell", description="Default model id")
    models_file: Path | None = Field(
        default=None,
        description="Optional JSON file overriding the built-in model catalog",
    )
    adapter_plugins: list[str] = Field(
        default_factory=list,
        description="Extra adapter classes to register, as 'module:ClassName'",
    )

    # Asset persistence
    upload_endpoint: str | None = Field(
        default=None,
        description="Grouped upload service URL (None keeps ephemeral provider URLs)",
    )
    upload_timeout: float = Field(default=120.0, gt=0, description="Upload request timeout")
    publish_generations: bool = Field(
        default=True,
        description="Mark persisted generation records as public",
    )

    # Usage limits
    enable_usage_limits: bool = Field(default=True, description="Enforce usage limits")
    daily_limit: int = Field(default=20, ge=0, description="Generations per day")
    hourly_limit: int = Field(default=10, ge=0, description="Generations per clock hour")
    session_limit: int = Field(default=5, ge=0, description="Generations per session")

    # Orchestration
    progress_interval: float = Field(
        default=0.5,
        gt=0,
        description="Seconds between synthesized progress updates",
    )
    completion_grace_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Maximum wait on persistence before completing a generation",
    )
    restore_history_limit: int = Field(
        default=50,
        ge=0,
        description="Generation records restored into session history at startup",
    )

    # Paths
    data_dir: Path = Field(default=Path("data"), description="Application data directory")
    database_path: Path | None = Field(default=None, description="SQLite database path")
    usage_file: Path | None = Field(default=None, description="Usage tracking file")

    # Server settings
    server_host: str = Field(default="0.0.0.0", description="Server bind address")
    server_port: int = Field(default=8000, ge=1024, le=65535, description="Server port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root log level",
    )

    def __init__(self, **kwargs):
        """Initialize configuration, resolve derived paths and create the data dir.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        if self.database_path is None:
            self.database_path = self.data_dir / "prism.db"
        if self.usage_file is None:
            self.usage_file = self.data_dir / "usage.json"


# Global configuration instance, loaded from PRISM_* environment variables and .env.
config = PrismConfig()
