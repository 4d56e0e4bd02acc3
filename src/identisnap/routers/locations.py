"""
Catalog endpoints.

Lists the ledger, ingests new locations and queries a single location.
"""

from __future__ import annotations

import time

from fastapi import APIRouter

from identisnap.core.exceptions import ServiceError
from identisnap.core.state import get_app_state
from identisnap.logging import get_logger
from identisnap.schemas import (
    IngestRequest,
    IngestResponse,
    LedgerEntryModel,
    Location,
    LocationsResponse,
    QueryRequest,
    QueryResponse,
)
from identisnap.services.descriptor_index import (
    DimensionMismatchError,
    IndexLoadError,
    IndexSaveError,
    InvalidLocationError,
    LocationTag,
)
from identisnap.services.index_store import IngestionError
from identisnap.utils.image import decode_base64_image

router = APIRouter()


def to_location(tag: LocationTag) -> Location:
    return Location(lat=tag.lat, lng=tag.lng)


def parse_location(text: str) -> LocationTag:
    """Parse a "lat,lng" location, mapping failures to a 400."""
    try:
        return LocationTag.parse(text)
    except InvalidLocationError as e:
        raise ServiceError(
            error="invalid_location",
            message=str(e),
            status_code=400,
            details={"location": text},
        ) from e


@router.get("/locations", response_model=LocationsResponse)
async def list_locations() -> LocationsResponse:
    """List the bin ledger."""
    ledger = get_app_state().index_store.ledger

    return LocationsResponse(
        entries=[
            LedgerEntryModel(
                location=to_location(entry.location),
                start_bin=entry.start_bin,
                end_bin=entry.end_bin,
            )
            for entry in ledger.entries(strict=False)
        ],
        next_start_bin=ledger.next_start_bin(),
    )


@router.post("/locations", response_model=IngestResponse, status_code=201)
async def ingest_location(request: IngestRequest) -> IngestResponse:
    """
    Ingest images of one location.

    The batch is all-or-nothing: an undecodable image leaves no index record
    and no ledger line behind.
    """
    logger = get_logger()
    start_time = time.perf_counter()
    state = get_app_state()

    location = parse_location(f"{request.location.lat},{request.location.lng}")
    images = [decode_base64_image(image) for image in request.images]

    try:
        result = state.index_store.ingest(location, images, request.image_names)
    except IngestionError as e:
        raise ServiceError(
            error="ingestion_failed",
            message=str(e),
            status_code=422,
            details={"location": location.key},
        ) from e
    except IndexSaveError as e:
        raise ServiceError(
            error="save_failed",
            message=str(e),
            status_code=500,
            details={"location": location.key},
        ) from e

    # a re-ingested location must be reloaded on its next query
    state.locator.forget(location)

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Ingest request completed",
        extra={
            "location": location.key,
            "images": result.image_count,
            "processing_time_ms": round(processing_time_ms, 2),
        },
    )

    return IngestResponse(
        location=to_location(location),
        start_bin=result.entry.start_bin,
        end_bin=result.entry.end_bin,
        image_count=result.image_count,
        descriptor_count=result.descriptor_count,
        processing_time_ms=round(processing_time_ms, 2),
    )


@router.post("/locations/{location}/query", response_model=QueryResponse)
async def query_location(location: str, request: QueryRequest) -> QueryResponse:
    """Count ratio-test matches of an image against one location."""
    logger = get_logger()
    start_time = time.perf_counter()
    state = get_app_state()

    tag = parse_location(location)
    if tag.key not in {known.key for known in state.locator.locations()}:
        raise ServiceError(
            error="location_not_found",
            message=f"Location {tag.key} is not in the catalog",
            status_code=404,
            details={"location": tag.key},
        )

    image_bytes = decode_base64_image(request.image)
    try:
        recogniser = state.locator.recogniser(tag)
    except IndexLoadError as e:
        raise ServiceError(
            error="load_failed",
            message=str(e),
            status_code=500,
            details={"location": tag.key},
        ) from e
    try:
        confidence = recogniser.query(image_bytes)
    except DimensionMismatchError as e:
        raise ServiceError(
            error="dimension_mismatch",
            message=str(e),
            status_code=500,
            details={"location": tag.key, "expected": e.expected, "received": e.received},
        ) from e

    processing_time_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Query completed",
        extra={
            "query_id": request.query_id,
            "location": tag.key,
            "confidence": confidence,
            "processing_time_ms": round(processing_time_ms, 2),
        },
    )

    return QueryResponse(
        location=to_location(tag),
        confidence=confidence,
        query_id=request.query_id,
        processing_time_ms=round(processing_time_ms, 2),
    )
