"""
Full pairwise matching: descriptor matching followed by geometric verification.

Heavier than the recogniser's count; used when a geometric confirmation of a
match is needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from identisnap.logging import get_logger
from identisnap.services.descriptor_normalizer import drop_degenerate, root_sift
from identisnap.services.geometric_verifier import VerificationResult, identity
from identisnap.services.homography import MIN_CORRESPONDENCES
from identisnap.services.ratio_filter import (
    DEFAULT_MIN_DISTANCE_FLOOR,
    DEFAULT_RATIO,
    min_distance_filter,
    nearest,
    ratio_filter,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np
    from numpy.typing import NDArray

    from identisnap.services.feature_extractor import ExtractedFeatures, FeatureExtractor
    from identisnap.services.geometric_verifier import RANSACVerifier
    from identisnap.services.match_finder import (
        ApproximateMatchFinder,
        Candidates,
        Correspondence,
    )


@dataclass
class PairwiseResult:
    """Outcome of matching a query image against one reference image."""

    query_features: int
    reference_features: int
    filtered_matches: int
    """Matches surviving the statistical filter, before geometry."""

    matches: list[Correspondence]
    """Geometrically consistent matches."""

    homography: NDArray[np.float64] = field(default_factory=identity)
    estimated: bool = False
    area_ratio: float | None = None
    is_match: bool = False

    @property
    def inliers(self) -> int:
        return len(self.matches)


@dataclass
class BatchPairwiseResult:
    """Outcome of matching a query image against several references."""

    query_features: int
    results: list[PairwiseResult]
    """One per reference, in reference order."""

    @property
    def homographies(self) -> list[NDArray[np.float64]]:
        return [r.homography for r in self.results]

    @property
    def best_index(self) -> int | None:
        """Reference with the most inliers among the matches, if any."""
        candidates = [(r.inliers, i) for i, r in enumerate(self.results) if r.is_match]
        if not candidates:
            return None
        # highest inlier count, earliest reference on ties
        return max(candidates, key=lambda c: (c[0], -c[1]))[1]


class PairwiseMatcher:
    """Compose extraction, matching, filtering and verification."""

    def __init__(
        self,
        extractor: FeatureExtractor,
        match_finder: ApproximateMatchFinder,
        verifier: RANSACVerifier,
        ratio: float = DEFAULT_RATIO,
        root_sift: bool = True,
        filter_mode: Literal["ratio", "min_distance"] = "ratio",
        min_distance_floor: float = DEFAULT_MIN_DISTANCE_FLOOR,
        min_matches: int = MIN_CORRESPONDENCES,
    ) -> None:
        """
        Args:
            extractor: Feature extractor
            match_finder: k-NN matcher (k >= 2 for the ratio filter)
            verifier: Geometric verifier
            ratio: Lowe ratio threshold
            root_sift: Whether to RootSIFT-normalize descriptors
            filter_mode: "ratio" for Lowe's test, "min_distance" for the
                twice-the-best-distance filter
            min_distance_floor: Distance floor of the min_distance filter
            min_matches: Inliers needed to declare a match
        """
        self.extractor = extractor
        self.match_finder = match_finder
        self.verifier = verifier
        self.ratio = ratio
        self.root_sift = root_sift
        self.filter_mode = filter_mode
        self.min_distance_floor = min_distance_floor
        self.min_matches = min_matches
        self.logger = get_logger("pairwise")

    def describe(self, image_bytes: bytes) -> ExtractedFeatures:
        """Extract features, normalized and cleaned of degenerate rows."""
        features = self.extractor.extract(image_bytes)
        if self.root_sift and features.count > 0:
            root_sift(features.descriptors)
            keypoints, descriptors, _ = drop_degenerate(features.keypoints, features.descriptors)
            features.keypoints = keypoints
            features.descriptors = descriptors
        return features

    def filter(self, candidates: Candidates) -> list[Correspondence]:
        """Apply the configured statistical filter."""
        if self.filter_mode == "min_distance":
            return min_distance_filter(nearest(candidates), self.min_distance_floor)
        return ratio_filter(candidates, self.ratio)

    def _finish(
        self,
        query: ExtractedFeatures,
        reference: ExtractedFeatures,
        filtered: int,
        result: VerificationResult,
    ) -> PairwiseResult:
        result = self.verifier.check_plausibility(result, reference.image_size)
        return PairwiseResult(
            query_features=query.count,
            reference_features=reference.count,
            filtered_matches=filtered,
            matches=result.matches,
            homography=result.homography,
            estimated=result.estimated,
            area_ratio=result.area_ratio,
            is_match=result.estimated and len(result.matches) >= self.min_matches,
        )

    def match_features(
        self,
        query: ExtractedFeatures,
        reference: ExtractedFeatures,
    ) -> PairwiseResult:
        """Match two already described images."""
        candidates = self.match_finder.find(query.descriptors, reference.descriptors)
        matches = self.filter(candidates)
        result = self.verifier.verify(query.keypoints, reference.keypoints, matches)
        return self._finish(query, reference, len(matches), result)

    def match(self, query_bytes: bytes, reference_bytes: bytes) -> PairwiseResult:
        """
        Match a query image against one reference image.

        Raises:
            ServiceError: If either image cannot be decoded
        """
        result = self.match_features(self.describe(query_bytes), self.describe(reference_bytes))

        self.logger.info(
            "Match completed",
            extra={
                "query_features": result.query_features,
                "reference_features": result.reference_features,
                "filtered_matches": result.filtered_matches,
                "inliers": result.inliers,
                "area_ratio": result.area_ratio,
                "is_match": result.is_match,
            },
        )
        return result

    def match_batch(self, query_bytes: bytes, references: Sequence[bytes]) -> BatchPairwiseResult:
        """
        Match a query image against several reference images in one search.

        Raises:
            ServiceError: If any image cannot be decoded
        """
        query = self.describe(query_bytes)
        described = [self.describe(reference) for reference in references]

        candidates = self.match_finder.find_batch(
            query.descriptors, [r.descriptors for r in described]
        )
        matches = self.filter(candidates)
        batch = self.verifier.verify_batch(
            query.keypoints, [r.keypoints for r in described], matches
        )

        results: list[PairwiseResult] = []
        for image_idx, reference in enumerate(described):
            filtered = sum(1 for m in matches if m.image_idx == image_idx)
            partial = VerificationResult(
                matches=[m for m in batch.matches if m.image_idx == image_idx],
                homography=batch.homographies[image_idx],
                estimated=batch.estimated[image_idx],
            )
            results.append(self._finish(query, reference, filtered, partial))

        outcome = BatchPairwiseResult(query_features=query.count, results=results)
        self.logger.info(
            "Batch match completed",
            extra={
                "query_features": query.count,
                "references": len(references),
                "best_index": outcome.best_index,
            },
        )
        return outcome
