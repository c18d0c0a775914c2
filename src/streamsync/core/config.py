"""
Configuration management for streamsync.

Uses pydantic-settings for environment variable support, with an optional
YAML file underneath. Environment variables always win over YAML values.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "STREAMSYNC_"

EARTHQUAKE_SCHEMA = (
    "string earthquakeId, string location, uint16 magnitude, uint32 depth, "
    "int32 latitude, int32 longitude, uint64 timestamp, string url"
)

BUNDLE_DIRECTIVES = frozenset({"latest", "snapshot", "at_index"})
BULK_LOAD_MODES = frozenset({"range", "index"})
CODEC_STRATEGIES = frozenset({"schema", "decoded_items"})


class Settings(BaseSettings):
    """streamsync configuration with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(default="WARNING", description="Root log level for CLI runs")

    # Remote log (pull)
    remote_url: str = Field(
        default="http://localhost:8787",
        description="Base URL of the remote log read API",
    )
    schema_key: str = Field(
        default="earthquakes",
        min_length=1,
        description="Stream/schema identifier on the remote log",
    )
    publisher: str | None = Field(
        default=None,
        description="Publisher address whose entries are read (None = any)",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    page_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum entries requested per range fetch",
    )
    bulk_load_mode: str = Field(
        default="range",
        description="Initial load via paged ranges ('range') or per index ('index')",
    )

    # Push channel
    push_url: str = Field(
        default="ws://localhost:8787/ws",
        description="WebSocket endpoint of the push notification channel",
    )
    event_name: str = Field(default="EarthquakeDetected", min_length=1)
    bundle_directive: str = Field(
        default="latest",
        description="Payload bundled with each notification: latest, snapshot, at_index",
    )
    subscribe_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Subscribe attempts without ack or error within this window fail",
    )
    channel_error_retry_seconds: float = Field(default=3.0, gt=0)
    subscribe_retry_seconds: float = Field(default=5.0, gt=0)

    # Staleness
    stale_after_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Silence longer than this while visible triggers a catch-up",
    )
    staleness_check_interval_seconds: float = Field(
        default=15.0,
        ge=0,
        description="Watchdog period; 0 disables the watchdog",
    )

    # Codec
    record_schema: str = Field(default=EARTHQUAKE_SCHEMA)
    id_field: str = Field(default="earthquakeId")
    timestamp_field: str = Field(default="timestamp")
    field_scales: dict[str, int] = Field(
        default_factory=lambda: {
            "magnitude": 10,
            "depth": 1000,
            "latitude": 1_000_000,
            "longitude": 1_000_000,
        },
        description="Fixed-point divisors applied to integer wire values",
    )
    codec_strategies: list[str] = Field(
        default_factory=lambda: ["schema", "decoded_items"],
        description="Decode strategies in the order they are tried",
    )

    # Domain filter
    filter_attribute: str = Field(default="magnitude")
    filter_minimum: float = Field(default=2.0)

    # Alerts
    notify_threshold: float = Field(default=4.5)

    @field_validator("bundle_directive")
    @classmethod
    def validate_bundle_directive(cls, v: str) -> str:
        v = v.lower()
        if v not in BUNDLE_DIRECTIVES:
            raise ValueError(f"bundle_directive must be one of {sorted(BUNDLE_DIRECTIVES)}, got {v!r}")
        return v

    @field_validator("bulk_load_mode")
    @classmethod
    def validate_bulk_load_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in BULK_LOAD_MODES:
            raise ValueError(f"bulk_load_mode must be one of {sorted(BULK_LOAD_MODES)}, got {v!r}")
        return v

    @field_validator("codec_strategies")
    @classmethod
    def validate_codec_strategies(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("codec_strategies must name at least one strategy")
        normalized = [s.lower() for s in v]
        unknown = [s for s in normalized if s not in CODEC_STRATEGIES]
        if unknown:
            raise ValueError(f"Unknown codec strategies: {unknown}")
        if len(set(normalized)) != len(normalized):
            raise ValueError("codec_strategies must not repeat a strategy")
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log_level: {v}")
        return level

    @field_validator("field_scales")
    @classmethod
    def validate_field_scales(cls, v: dict[str, int]) -> dict[str, int]:
        for name, scale in v.items():
            if scale < 1:
                raise ValueError(f"Scale for {name!r} must be >= 1, got {scale}")
        return v

    @model_validator(mode="after")
    def validate_schema_fields(self) -> "Settings":
        declared = {
            part.split()[-1] for part in self.record_schema.split(",") if part.strip()
        }
        for attr in ("id_field", "timestamp_field"):
            name = getattr(self, attr)
            if name not in declared:
                raise ValueError(f"{attr} {name!r} is not declared in record_schema")
        return self


def _find_config_file() -> Path | None:
    """
    Find YAML config file in standard locations.

    Search order:
    1. STREAMSYNC_CONFIG_FILE environment variable
    2. ./streamsync.yaml (current directory)
    3. ~/.streamsync/config.yaml (user home)

    Returns:
        Path to config file if found, None otherwise
    """
    env_config = os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
    if env_config:
        path = Path(env_config).expanduser()
        if path.exists():
            return path
        logger.warning(f"Config file from {ENV_PREFIX}CONFIG_FILE not found: {path}")

    search_paths = [
        Path("streamsync.yaml"),
        Path("streamsync.yml"),
        Path.home() / ".streamsync" / "config.yaml",
        Path.home() / ".streamsync" / "config.yml",
    ]

    for path in search_paths:
        if path.exists():
            logger.debug(f"Found config file: {path}")
            return path

    return None


def _load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Raises:
        ValueError: If YAML file is invalid
    """
    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(config, dict):
        raise ValueError(f"Config file must contain a dictionary, got {type(config).__name__}")

    logger.info(f"Loaded configuration from: {path}")
    return config


def load_settings_from_yaml(config_path: Path | str | None = None) -> Settings:
    """
    Load Settings from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, searches standard locations.

    Returns:
        Settings instance with values from YAML and env vars

    Example YAML config:
        ```yaml
        remote_url: https://streams.example.net
        schema_key: earthquakes
        filter_minimum: 2.5
        bundle_directive: latest
        ```
    """
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        path = _find_config_file()

    if path is None:
        return Settings()

    yaml_config = _load_yaml_config(path)
    filtered_config = {
        key: value
        for key, value in yaml_config.items()
        if os.getenv(f"{ENV_PREFIX}{key.upper()}") is None
    }
    return Settings(**filtered_config)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded from (in order of precedence):
    1. Environment variables (STREAMSYNC_* prefix)
    2. YAML config file (if found)
    3. Default values
    """
    return load_settings_from_yaml()


def reset_settings() -> None:
    """Clear the cached settings, forcing reload on next get_settings() call."""
    get_settings.cache_clear()
