"""
Service information endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter

from identisnap.config import get_settings
from identisnap.core.state import get_app_state
from identisnap.schemas import AlgorithmInfo, InfoResponse

router = APIRouter()


@router.get("/info", response_model=InfoResponse)
async def get_info() -> InfoResponse:
    """Get service information and configuration."""
    settings = get_settings()
    state = get_app_state()

    algorithm = AlgorithmInfo(
        feature_detector="SIFT",
        descriptor_normalization="RootSIFT" if settings.matching.root_sift else "none",
        search_index=f"FAISS {settings.search.index_type}",
        ratio_threshold=settings.matching.ratio_threshold,
        match_filter=settings.matching.filter,
        verification="RANSAC",
        homography_estimator=settings.ransac.estimator,
        ransac_reproj_threshold=settings.ransac.reproj_threshold,
        min_area_ratio=settings.verification.min_area_ratio,
        min_matches=settings.verification.min_matches,
    )

    return InfoResponse(
        service=settings.service.name,
        version=settings.service.version,
        algorithm=algorithm,
        locations=len(state.locator.locations()),
    )
