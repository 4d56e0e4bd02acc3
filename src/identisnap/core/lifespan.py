"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from identisnap.components import create_index_store, create_locator, create_pairwise_matcher
from identisnap.config import get_settings
from identisnap.core.state import init_app_state, reset_app_state
from identisnap.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    # Initialize logging first
    setup_logging(settings.server.log_level)
    logger = get_logger()

    state = init_app_state(
        index_store=create_index_store(settings),
        locator=create_locator(settings),
        pairwise=create_pairwise_matcher(settings),
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "host": settings.server.host,
            "port": settings.server.port,
        },
    )

    logger.info(
        "Algorithm configuration",
        extra={
            "sift_max_features": settings.sift.max_features,
            "root_sift": settings.matching.root_sift,
            "ratio_threshold": settings.matching.ratio_threshold,
            "index_type": settings.search.index_type,
            "estimator": settings.ransac.estimator,
            "ransac_reproj_threshold": settings.ransac.reproj_threshold,
            "min_area_ratio": settings.verification.min_area_ratio,
        },
    )

    logger.info(
        "Catalog configuration",
        extra={
            "index_dir": settings.catalog.index_dir,
            "ledger_path": settings.catalog.ledger_path,
            "locations": len(state.locator.locations()),
        },
    )

    logger.info("Service ready to accept requests")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info(
        "Service shutting down",
        extra={
            "uptime_seconds": state.uptime_seconds,
            "uptime": state.uptime_formatted,
        },
    )
    reset_app_state()
