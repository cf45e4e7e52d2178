"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)


class AppSettings(BaseSettings):
    """Application settings with environment variable support."""

    env: Literal["dev", "prod"] = Field(default="dev", description="Environment")

    # Scanning collaborator
    hypersync_bearer_token: str | None = Field(
        default=None, description="Bearer token for higher HyperSync rate limits"
    )
    rpc_urls: dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain JSON-RPC fallback URLs keyed by chain id",
    )
    enabled_chains: list[int] = Field(
        default_factory=lambda: [1, 8453, 42161, 10, 137, 56],
        description="Chain ids scanned by discovery and collection",
    )
    request_delay_seconds: float = Field(
        default=0.1, ge=0, description="Pause between paginated log requests"
    )
    transaction_lookback_days: float | None = Field(
        default=None,
        gt=0,
        description="Window of transactions collected per token, None for full history",
    )

    # Metadata collaborator
    dexscreener_base: str = Field(
        default="https://api.dexscreener.com",
        description="DexScreener API base URL",
    )

    # Token cache
    database_path: str = Field(
        default="./trendscan.sqlite", description="SQLite token cache path"
    )

    # Refresh scheduler
    refresh_interval_seconds: float = Field(
        default=3600.0, gt=0, description="Interval between unattended refreshes"
    )
    refresh_new_token_days: float = Field(
        default=1.0, gt=0, description="Discovery window of the refresh job"
    )
    refresh_max_new_tokens: int = Field(
        default=300, ge=0, description="New tokens scored per refresh"
    )
    refresh_concurrency: int = Field(
        default=10, ge=1, description="Concurrency of the full re-score phase"
    )
    run_refresh_on_start: bool = Field(
        default=False, description="Fire one refresh immediately at startup"
    )
    exclusive_refresh: bool = Field(
        default=False,
        description="Serialise refresh phases with on-demand triggers via a lease lock",
    )
    lock_lease_seconds: float = Field(
        default=3 * 3600.0, gt=0, description="Lease of the refresh advisory lock"
    )

    # HTTP surface
    api_host: str = Field(default="0.0.0.0", description="HTTP bind host")
    api_port: int = Field(default=3001, description="HTTP bind port")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


def load_settings(profile: str = "dev", yaml_path: str | None = None) -> AppSettings:
    """Load settings from an optional YAML file and environment variables.

    Args:
        profile: Configuration profile name (dev, prod)
        yaml_path: Path to YAML configuration file, or None for env only

    Returns:
        AppSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If an explicit YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid
    """
    if profile not in ["dev", "prod"]:
        raise ValueError(f"Invalid profile: {profile}. Must be one of: dev, prod")

    yaml_config: dict = {}
    if yaml_path is not None:
        yaml_file = Path(yaml_path)
        if not yaml_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_file, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse YAML configuration", error=str(e))
            raise ValueError(f"Invalid YAML configuration: {e}") from e

    yaml_config["env"] = profile

    logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

    try:
        settings = AppSettings(**yaml_config)
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise

    logger.info(
        "Configuration loaded successfully",
        profile=profile,
        chains=settings.enabled_chains,
        hypersync_token=settings.hypersync_bearer_token is not None,
        rpc_fallbacks=sorted(settings.rpc_urls),
    )
    return settings
