"""
RANSAC-based geometric verification.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

import cv2
import numpy as np

from identisnap.services.homography import MIN_CORRESPONDENCES

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from identisnap.services.feature_extractor import Keypoint
    from identisnap.services.homography import HomographyEstimator
    from identisnap.services.match_finder import Correspondence

DEFAULT_REPROJ_THRESHOLD = 3.0
DEFAULT_MIN_AREA_RATIO = 0.0005


def identity() -> NDArray[np.float64]:
    """The "no geometry could be estimated" homography."""
    return np.eye(3, dtype=np.float64)


@dataclass
class VerificationResult:
    """Outcome of verifying one query/reference pair."""

    matches: list[Correspondence]
    homography: NDArray[np.float64] = field(default_factory=identity)
    estimated: bool = False
    """Whether homography came from the estimator rather than the fallback."""

    area_ratio: float | None = None


@dataclass
class BatchVerificationResult:
    """Outcome of verifying a query against several reference images."""

    matches: list[Correspondence]
    homographies: list[NDArray[np.float64]]
    """One per reference image, in reference order."""

    estimated: list[bool]


def projected_area_ratio(homography: NDArray[np.float64], width: float, height: float) -> float:
    """
    Area of the projected width x height rectangle divided by its own area.

    Returns 0.0 for degenerate projections (points sent to infinity).
    """
    corners = np.float32([[0, 0], [width, 0], [width, height], [0, height]]).reshape(-1, 1, 2)
    original_area = float(width) * float(height)
    if original_area <= 0:
        return 0.0

    with np.errstate(divide="ignore", invalid="ignore"):
        projected = cv2.perspectiveTransform(corners, np.asarray(homography, dtype=np.float64))
    if not np.isfinite(projected).all():
        return 0.0

    return float(cv2.contourArea(projected.astype(np.float32))) / original_area


class RANSACVerifier:
    """Keep only correspondences consistent with a robustly estimated homography."""

    def __init__(
        self,
        estimator: HomographyEstimator,
        reproj_threshold: float = DEFAULT_REPROJ_THRESHOLD,
        min_area_ratio: float = DEFAULT_MIN_AREA_RATIO,
    ) -> None:
        """
        Initialize RANSAC verifier.

        Args:
            estimator: Robust homography estimator
            reproj_threshold: Maximum reprojection error (pixels) to count as inlier
            min_area_ratio: Projected/original area ratio below which a fit is
                treated as collapsed and its matches discarded
        """
        self.estimator = estimator
        self.reproj_threshold = reproj_threshold
        self.min_area_ratio = min_area_ratio

    def _fit(
        self,
        query_kps: Sequence[Keypoint],
        reference_kps: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> tuple[NDArray[np.float64] | None, NDArray[np.bool_]]:
        src = np.float64([query_kps[m.query_idx].pt for m in matches])
        dst = np.float64([reference_kps[m.reference_idx].pt for m in matches])
        return self.estimator.fit(src, dst, self.reproj_threshold)

    def _inlier_mask(
        self,
        query_kps: Sequence[Keypoint],
        reference_kps: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> tuple[NDArray[np.bool_], NDArray[np.float64] | None]:
        if len(matches) < MIN_CORRESPONDENCES:
            return np.ones(len(matches), dtype=bool), None

        H, mask = self._fit(query_kps, reference_kps, matches)
        if H is None:
            return np.zeros(len(matches), dtype=bool), None
        return mask, H

    def verify(
        self,
        query_kps: Sequence[Keypoint],
        reference_kps: Sequence[Keypoint],
        matches: Sequence[Correspondence],
    ) -> VerificationResult:
        """
        Estimate the query-to-reference homography and keep its inliers.

        Fewer than 4 matches cannot define a homography: they are returned
        unchanged together with the identity. When the estimator fails the
        identity is returned with no inliers.
        """
        mask, H = self._inlier_mask(query_kps, reference_kps, matches)
        inliers = [m for m, keep in zip(matches, mask, strict=True) if keep]
        if H is None:
            return VerificationResult(matches=inliers)
        return VerificationResult(matches=inliers, homography=H, estimated=True)

    def verify_batch(
        self,
        query_kps: Sequence[Keypoint],
        reference_kp_sets: Sequence[Sequence[Keypoint]],
        matches: Sequence[Correspondence],
    ) -> BatchVerificationResult:
        """
        Verify matches against several reference images independently.

        Matches are partitioned by image_idx and a homography is estimated per
        partition. A partition without matches records the identity, so the
        returned homographies stay aligned with reference_kp_sets. Retained
        matches keep their original relative order.
        """
        keep = np.zeros(len(matches), dtype=bool)
        homographies: list[NDArray[np.float64]] = []
        estimated: list[bool] = []

        for image_idx, reference_kps in enumerate(reference_kp_sets):
            members = np.array(
                [i for i, m in enumerate(matches) if m.image_idx == image_idx], dtype=np.int64
            )
            if len(members) == 0:
                # keeps homographies index-aligned with the reference images
                homographies.append(identity())
                estimated.append(False)
                continue

            mask, H = self._inlier_mask(query_kps, reference_kps, [matches[i] for i in members])
            keep[members[mask]] = True
            homographies.append(identity() if H is None else H)
            estimated.append(H is not None)

        return BatchVerificationResult(
            matches=[m for m, k in zip(matches, keep, strict=True) if k],
            homographies=homographies,
            estimated=estimated,
        )

    def reference_area_ratio(
        self,
        homography: NDArray[np.float64],
        reference_size: tuple[int, int],
    ) -> float:
        """
        Project the reference image's corners back through the inverse homography.

        Returns the projected quadrilateral's area over the reference image
        area; a singular homography yields 0.0.
        """
        if not np.isfinite(homography).all():
            return 0.0
        try:
            inverse = np.linalg.inv(homography)
        except np.linalg.LinAlgError:
            return 0.0
        if not np.isfinite(inverse).all():
            return 0.0

        width, height = reference_size
        return projected_area_ratio(inverse, width, height)

    def check_plausibility(
        self,
        result: VerificationResult,
        reference_size: tuple[int, int],
    ) -> VerificationResult:
        """
        Discard every match when the estimated homography collapses the image.

        A fit that squeezes the image towards a single point is almost always
        a spurious consensus among wrong matches.
        """
        if not result.estimated:
            return result

        ratio = self.reference_area_ratio(result.homography, reference_size)
        if ratio < self.min_area_ratio:
            return replace(result, matches=[], area_ratio=ratio)
        return replace(result, area_ratio=ratio)
