"""
Fixtures for integration tests.

These tests use the real application with actual OpenCV and FAISS processing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi.testclient import TestClient

from identisnap.app import create_app
from identisnap.core.state import reset_app_state
from tests.factories import create_scene_image, create_warped_scene_image

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture
def client(configured_env: Path) -> Iterator[TestClient]:
    """
    Test client for the real application over an empty catalog.

    Uses context manager to trigger lifespan events (state initialization).
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
    reset_app_state()


@pytest.fixture(scope="session")
def scene_a() -> bytes:
    return create_scene_image(seed=0)


@pytest.fixture(scope="session")
def scene_a_warped() -> bytes:
    return create_warped_scene_image(seed=0)


@pytest.fixture(scope="session")
def scene_b() -> bytes:
    return create_scene_image(seed=1)


@pytest.fixture(scope="session")
def scene_c() -> bytes:
    return create_scene_image(seed=2)
