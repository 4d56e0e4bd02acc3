"""
Pydantic request/response models for the identisnap API.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# === Helper Models ===


class Location(BaseModel):
    """Latitude/longitude of a catalogued location."""

    model_config = ConfigDict(extra="forbid")

    lat: str
    """Latitude, kept as given."""

    lng: str
    """Longitude, kept as given."""


class LedgerEntryModel(BaseModel):
    """Bin range of one catalogued location."""

    location: Location
    start_bin: int
    end_bin: int


class LocationScoreModel(BaseModel):
    """Confidence of one location for a query."""

    location: Location
    confidence: int
    """Matches surviving the ratio test."""


# === Request Models ===


class IngestRequest(BaseModel):
    """Request model for POST /locations endpoint."""

    model_config = ConfigDict(extra="forbid")

    location: Location
    """Location the images depict."""

    images: list[str] = Field(..., min_length=1)
    """Base64-encoded images of the location."""

    image_names: list[str] | None = None
    """Optional names, aligned with images."""


class QueryRequest(BaseModel):
    """Request model for location query and locate endpoints."""

    model_config = ConfigDict(extra="forbid")

    image: str = Field(..., min_length=1)
    """Base64-encoded query image."""

    query_id: str | None = None
    """Optional identifier for logging/tracing."""


class MatchRequest(BaseModel):
    """Request model for POST /match endpoint."""

    model_config = ConfigDict(extra="forbid")

    query_image: str = Field(..., min_length=1)
    """Base64-encoded query image data."""

    reference_image: str = Field(..., min_length=1)
    """Base64-encoded reference image data."""

    query_id: str | None = None
    reference_id: str | None = None


class ReferenceInput(BaseModel):
    """Reference input for batch matching."""

    model_config = ConfigDict(extra="forbid")

    reference_id: str
    reference_image: str = Field(..., min_length=1)


class BatchMatchRequest(BaseModel):
    """Request model for POST /match/batch endpoint."""

    model_config = ConfigDict(extra="forbid")

    query_image: str = Field(..., min_length=1)
    references: list[ReferenceInput] = Field(..., min_length=1)
    query_id: str | None = None


# === Response Models ===


class HealthResponse(BaseModel):
    """Response model for GET /health endpoint."""

    status: Literal["healthy", "degraded", "unhealthy"]
    uptime_seconds: float
    uptime: str
    """Human-readable uptime (e.g., "2d 3h 15m 42s")."""

    system_time: str
    """Current system time in yyyy-mm-dd hh:mm format (UTC)."""


class AlgorithmInfo(BaseModel):
    """Algorithm configuration for /info endpoint."""

    feature_detector: str
    descriptor_normalization: str
    search_index: str
    ratio_threshold: float
    match_filter: str
    verification: str
    homography_estimator: str
    ransac_reproj_threshold: float
    min_area_ratio: float
    min_matches: int


class InfoResponse(BaseModel):
    """Response model for GET /info endpoint."""

    service: str
    version: str
    algorithm: AlgorithmInfo
    locations: int
    """Locations currently listed in the ledger."""


class IngestResponse(BaseModel):
    """Response model for POST /locations endpoint."""

    location: Location
    start_bin: int
    end_bin: int
    image_count: int
    descriptor_count: int
    processing_time_ms: float


class LocationsResponse(BaseModel):
    """Response model for GET /locations endpoint."""

    entries: list[LedgerEntryModel]
    next_start_bin: int


class QueryResponse(BaseModel):
    """Response model for POST /locations/{location}/query endpoint."""

    location: Location
    confidence: int
    query_id: str | None = None
    processing_time_ms: float


class LocateResponse(BaseModel):
    """Response model for POST /locate endpoint."""

    best: LocationScoreModel | None
    scores: list[LocationScoreModel]
    query_id: str | None = None
    processing_time_ms: float


class MatchResponse(BaseModel):
    """Response model for POST /match endpoint."""

    is_match: bool
    inliers: int
    """Geometrically consistent matches."""

    filtered_matches: int
    """Matches surviving the statistical filter, before verification."""

    query_features: int
    reference_features: int
    homography: list[list[float]]
    """3x3 query-to-reference homography; identity if none was estimated."""

    area_ratio: float | None = None
    query_id: str | None = None
    reference_id: str | None = None
    processing_time_ms: float


class BatchMatchResult(BaseModel):
    """Individual result in batch match response."""

    reference_id: str
    is_match: bool
    inliers: int
    filtered_matches: int
    homography: list[list[float]]
    area_ratio: float | None = None


class BatchMatchResponse(BaseModel):
    """Response model for POST /match/batch endpoint."""

    query_id: str | None
    query_features: int
    results: list[BatchMatchResult]
    """One result per reference, in request order."""

    best_match: str | None
    """reference_id with the most inliers among matches."""

    processing_time_ms: float


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    message: str
    details: dict[str, Any]
