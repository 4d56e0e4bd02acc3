"""
Configuration management for identisnap.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "CatalogConfig",
    "ConfigurationError",
    "MatchingConfig",
    "RANSACConfig",
    "SIFTConfig",
    "SearchConfig",
    "ServerConfig",
    "ServiceConfig",
    "Settings",
    "VerificationConfig",
    "clear_settings_cache",
    "get_config_path",
    "get_settings",
    "load_settings",
    "load_yaml_config",
]


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")

    name: str
    version: str


class SIFTConfig(BaseModel):
    """SIFT feature detector configuration."""

    model_config = ConfigDict(extra="forbid")

    max_features: int = Field(ge=0)
    """Maximum number of features to retain (0 keeps all)."""

    contrast_threshold: float
    edge_threshold: float
    sigma: float


class MatchingConfig(BaseModel):
    """Descriptor matching configuration."""

    model_config = ConfigDict(extra="forbid")

    ratio_threshold: float = Field(gt=0.0, le=1.0)
    k: int = Field(ge=2)
    root_sift: bool
    filter: Literal["ratio", "min_distance"]
    min_distance_floor: float = Field(ge=0.0)


class SearchConfig(BaseModel):
    """Approximate nearest-neighbour search configuration."""

    model_config = ConfigDict(extra="forbid")

    index_type: Literal["flat", "hnsw"]
    hnsw_m: int = Field(gt=0)
    ef_search: int = Field(gt=0)
    ef_construction: int = Field(gt=0)


class RANSACConfig(BaseModel):
    """RANSAC homography estimation configuration."""

    model_config = ConfigDict(extra="forbid")

    estimator: Literal["opencv", "numpy"]
    reproj_threshold: float = Field(gt=0.0)
    max_iters: int = Field(gt=0)
    confidence: float = Field(gt=0.0, lt=1.0)
    seed: int


class VerificationConfig(BaseModel):
    """Verification thresholds configuration."""

    model_config = ConfigDict(extra="forbid")

    min_matches: int = Field(ge=4)
    min_area_ratio: float = Field(ge=0.0)


class CatalogConfig(BaseModel):
    """Location catalog storage paths."""

    model_config = ConfigDict(extra="forbid")

    index_dir: str
    ledger_path: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: int
    log_level: str


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.

    Usage:
        from identisnap.config import get_settings
        settings = get_settings()
    """

    model_config = ConfigDict(extra="forbid")

    service: ServiceConfig
    sift: SIFTConfig
    matching: MatchingConfig
    search: SearchConfig
    ransac: RANSACConfig
    verification: VerificationConfig
    catalog: CatalogConfig
    server: ServerConfig


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load and parse YAML configuration file.

    Args:
        config_path: Path to config.yaml

    Returns:
        Parsed configuration dictionary

    Raises:
        ConfigurationError: If file is missing, empty, or invalid
    """
    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}\n"
            f"Expected location: {config_path.absolute()}\n"
            f"Create the file or set CONFIG_PATH environment variable."
        )

    try:
        with config_path.open() as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if config is None:
        raise ConfigurationError(
            f"Configuration file is empty: {config_path}\n"
            f"All configuration values must be explicitly specified."
        )

    if not isinstance(config, dict):
        raise ConfigurationError(
            f"Configuration must be a YAML mapping, got {type(config).__name__}"
        )

    return config


def load_settings(yaml_config: dict[str, Any]) -> Settings:
    """
    Build typed settings from raw YAML config.

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return Settings(**yaml_config)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}\n"
            f"All configuration values must be explicitly specified.\n"
            f"No default values are allowed."
        ) from e


def get_config_path() -> Path:
    """
    Determine configuration file path.

    Uses CONFIG_PATH environment variable if set, otherwise defaults
    to ./config.yaml relative to working directory.
    """
    return Path(os.environ.get("CONFIG_PATH", "config.yaml"))


@lru_cache
def get_settings() -> Settings:
    """Load, validate and cache the settings for this process."""
    return load_settings(load_yaml_config(get_config_path()))


def clear_settings_cache() -> None:
    """Forget cached settings. Used in testing."""
    get_settings.cache_clear()
