"""
Unit tests for configuration management.

Tests YAML loading, Settings validation and the cached settings accessor.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from identisnap.config import (
    ConfigurationError,
    Settings,
    clear_settings_cache,
    get_config_path,
    get_settings,
    load_settings,
    load_yaml_config,
)


@pytest.mark.unit
class TestLoadYamlConfig:
    """Tests for YAML configuration loading."""

    def test_load_valid_config(self, config_path: Path) -> None:
        """Valid YAML file loads successfully."""
        result = load_yaml_config(config_path)

        assert result["service"]["name"] == "identisnap"
        assert result["search"]["index_type"] == "flat"

    def test_missing_file_raises_error(self, tmp_path: Path) -> None:
        """Missing config file raises ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_yaml_config(tmp_path / "does_not_exist.yaml")

        assert "not found" in str(exc_info.value)

    def test_empty_file_raises_error(self, tmp_path: Path) -> None:
        """Empty config file raises ConfigurationError."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        with pytest.raises(ConfigurationError) as exc_info:
            load_yaml_config(config_file)

        assert "empty" in str(exc_info.value)

    def test_invalid_yaml_raises_error(self, tmp_path: Path) -> None:
        """Malformed YAML raises ConfigurationError."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("invalid: yaml: content: [")

        with pytest.raises(ConfigurationError):
            load_yaml_config(config_file)

    def test_non_dict_yaml_raises_error(self, tmp_path: Path) -> None:
        """YAML that is not a mapping raises ConfigurationError."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- item1\n- item2")

        with pytest.raises(ConfigurationError) as exc_info:
            load_yaml_config(config_file)

        assert "mapping" in str(exc_info.value)


@pytest.mark.unit
class TestSettings:
    """Tests for Settings validation."""

    def test_valid_config_creates_settings(self, config_path: Path) -> None:
        settings = load_settings(load_yaml_config(config_path))

        assert settings.matching.ratio_threshold == 0.8
        assert settings.matching.root_sift is True
        assert settings.search.index_type == "flat"
        assert settings.ransac.estimator == "opencv"
        assert settings.verification.min_area_ratio == 0.0005

    def test_shipped_config_is_valid(self) -> None:
        """The repository's config.yaml validates."""
        shipped = Path(__file__).resolve().parents[2] / "config.yaml"

        settings = load_settings(load_yaml_config(shipped))

        assert settings.service.name == "identisnap"

    def test_missing_section_raises(self, config_path: Path) -> None:
        config = load_yaml_config(config_path)
        del config["ransac"]

        with pytest.raises(ConfigurationError, match="validation failed"):
            load_settings(config)

    def test_missing_field_raises(self, config_path: Path) -> None:
        config = load_yaml_config(config_path)
        del config["sift"]["sigma"]

        with pytest.raises(ValidationError):
            Settings(**config)

    def test_extra_field_rejected(self, config_path: Path) -> None:
        config = load_yaml_config(config_path)
        config["matching"]["cross_check"] = True

        with pytest.raises(ValidationError):
            Settings(**config)

    @pytest.mark.parametrize(
        ("section", "key", "value"),
        [
            ("matching", "ratio_threshold", 1.5),
            ("matching", "k", 1),
            ("matching", "filter", "median"),
            ("search", "index_type", "ivf"),
            ("ransac", "estimator", "magsac"),
            ("ransac", "confidence", 1.0),
            ("verification", "min_matches", 3),
        ],
    )
    def test_invalid_values_rejected(
        self, config_path: Path, section: str, key: str, value: object
    ) -> None:
        config = load_yaml_config(config_path)
        config[section][key] = value

        with pytest.raises(ConfigurationError):
            load_settings(config)


@pytest.mark.unit
class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_config_path_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "custom.yaml"))

        assert get_config_path() == tmp_path / "custom.yaml"

    def test_default_config_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CONFIG_PATH", raising=False)

        assert str(get_config_path()) == "config.yaml"

    def test_settings_cached(self, configured_env: Path) -> None:
        assert get_settings() is get_settings()

    def test_clear_cache_reloads(self, configured_env: Path) -> None:
        first = get_settings()
        config = yaml.safe_load(configured_env.read_text())
        config["server"]["port"] = 9999
        configured_env.write_text(yaml.safe_dump(config))

        clear_settings_cache()

        assert get_settings() is not first
        assert get_settings().server.port == 9999
