"""
Pairwise geometric matching endpoints.
"""

from __future__ import annotations

import time

from fastapi import APIRouter

from identisnap.core.state import get_app_state
from identisnap.logging import get_logger
from identisnap.schemas import (
    BatchMatchRequest,
    BatchMatchResponse,
    BatchMatchResult,
    MatchRequest,
    MatchResponse,
)
from identisnap.utils.image import decode_base64_image

router = APIRouter()


@router.post("/match", response_model=MatchResponse)
async def match_images(request: MatchRequest) -> MatchResponse:
    """Match and geometrically verify two images."""
    logger = get_logger()
    start_time = time.perf_counter()

    query_bytes = decode_base64_image(request.query_image)
    reference_bytes = decode_base64_image(request.reference_image)
    result = get_app_state().pairwise.match(query_bytes, reference_bytes)

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Match request completed",
        extra={
            "query_id": request.query_id,
            "reference_id": request.reference_id,
            "is_match": result.is_match,
            "inliers": result.inliers,
            "processing_time_ms": round(processing_time_ms, 2),
        },
    )

    return MatchResponse(
        is_match=result.is_match,
        inliers=result.inliers,
        filtered_matches=result.filtered_matches,
        query_features=result.query_features,
        reference_features=result.reference_features,
        homography=result.homography.tolist(),
        area_ratio=result.area_ratio,
        query_id=request.query_id,
        reference_id=request.reference_id,
        processing_time_ms=round(processing_time_ms, 2),
    )


@router.post("/match/batch", response_model=BatchMatchResponse)
async def match_batch(request: BatchMatchRequest) -> BatchMatchResponse:
    """Match a query image against several references in one search."""
    logger = get_logger()
    start_time = time.perf_counter()

    query_bytes = decode_base64_image(request.query_image)
    references = [decode_base64_image(ref.reference_image) for ref in request.references]
    outcome = get_app_state().pairwise.match_batch(query_bytes, references)

    results = [
        BatchMatchResult(
            reference_id=ref.reference_id,
            is_match=result.is_match,
            inliers=result.inliers,
            filtered_matches=result.filtered_matches,
            homography=result.homography.tolist(),
            area_ratio=result.area_ratio,
        )
        for ref, result in zip(request.references, outcome.results, strict=True)
    ]
    best_index = outcome.best_index
    best_match = request.references[best_index].reference_id if best_index is not None else None

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Batch match request completed",
        extra={
            "query_id": request.query_id,
            "references": len(results),
            "best_match": best_match,
            "processing_time_ms": round(processing_time_ms, 2),
        },
    )

    return BatchMatchResponse(
        query_id=request.query_id,
        query_features=outcome.query_features,
        results=results,
        best_match=best_match,
        processing_time_ms=round(processing_time_ms, 2),
    )
