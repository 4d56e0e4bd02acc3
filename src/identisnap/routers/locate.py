"""
Catalog-wide location lookup endpoint.
"""

from __future__ import annotations

import time

from fastapi import APIRouter

from identisnap.core.exceptions import ServiceError
from identisnap.core.state import get_app_state
from identisnap.logging import get_logger
from identisnap.routers.locations import to_location
from identisnap.schemas import LocateResponse, LocationScoreModel, QueryRequest
from identisnap.services.descriptor_index import DimensionMismatchError, IndexLoadError
from identisnap.utils.image import decode_base64_image

router = APIRouter()


@router.post("/locate", response_model=LocateResponse)
async def locate(request: QueryRequest) -> LocateResponse:
    """Score an image against every catalogued location."""
    logger = get_logger()
    start_time = time.perf_counter()
    state = get_app_state()

    image_bytes = decode_base64_image(request.image)
    try:
        result = state.locator.locate(image_bytes)
    except IndexLoadError as e:
        raise ServiceError(
            error="load_failed",
            message=str(e),
            status_code=500,
            details={},
        ) from e
    except DimensionMismatchError as e:
        raise ServiceError(
            error="dimension_mismatch",
            message=str(e),
            status_code=500,
            details={"expected": e.expected, "received": e.received},
        ) from e

    scores = [
        LocationScoreModel(location=to_location(s.location), confidence=s.confidence)
        for s in result.scores
    ]
    best = result.best

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Locate request completed",
        extra={
            "query_id": request.query_id,
            "locations": len(scores),
            "processing_time_ms": round(processing_time_ms, 2),
        },
    )

    return LocateResponse(
        best=scores[0] if best is not None else None,
        scores=scores,
        query_id=request.query_id,
        processing_time_ms=round(processing_time_ms, 2),
    )
