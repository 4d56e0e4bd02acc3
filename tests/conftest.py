"""
Shared fixtures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from identisnap.config import Settings, clear_settings_cache, load_settings, load_yaml_config
from identisnap.services.search_backend import FAISSSearchBackend
from tests.factories import FakeExtractor, create_config_yaml

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture
def flat_backend() -> FAISSSearchBackend:
    """Exact search backend for deterministic results."""
    return FAISSSearchBackend(index_type="flat", hnsw_m=32, ef_search=128, ef_construction=200)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return create_config_yaml(tmp_path)


@pytest.fixture
def settings(config_path: Path) -> Settings:
    return load_settings(load_yaml_config(config_path))


@pytest.fixture
def configured_env(config_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point CONFIG_PATH at a temporary config for the duration of a test."""
    monkeypatch.setenv("CONFIG_PATH", str(config_path))
    clear_settings_cache()
    yield config_path
    clear_settings_cache()


@pytest.fixture
def fake_descriptors() -> dict[bytes, np.ndarray]:
    """Three distinct images with 10, 5 and 20 random positive descriptors."""
    rng = np.random.default_rng(7)
    return {
        b"image-a": rng.random((10, 8)) + 0.01,
        b"image-b": rng.random((5, 8)) + 0.01,
        b"image-c": rng.random((20, 8)) + 0.01,
    }


@pytest.fixture
def fake_extractor(fake_descriptors: dict[bytes, np.ndarray]) -> FakeExtractor:
    return FakeExtractor(fake_descriptors)
