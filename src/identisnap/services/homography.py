"""
Robust homography estimation.

Two interchangeable estimators: OpenCV's RANSAC implementation, and a pure
numpy RANSAC over normalized DLT fits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

MIN_CORRESPONDENCES = 4
_W_EPSILON = 1e-8


class HomographyEstimator(Protocol):
    """Fit a homography mapping src points to dst points, tolerating outliers."""

    def fit(
        self,
        src: NDArray[np.float64],
        dst: NDArray[np.float64],
        threshold: float,
    ) -> tuple[NDArray[np.float64] | None, NDArray[np.bool_]]:
        """
        Args:
            src: (N, 2) source points
            dst: (N, 2) destination points
            threshold: Maximum reprojection error (pixels) of an inlier

        Returns:
            Tuple of (3x3 homography or None on failure, (N,) inlier mask)
        """
        ...


class OpenCVHomographyEstimator:
    """RANSAC homography via cv2.findHomography."""

    def __init__(self, max_iters: int, confidence: float) -> None:
        self.max_iters = max_iters
        self.confidence = confidence

    def fit(
        self,
        src: NDArray[np.float64],
        dst: NDArray[np.float64],
        threshold: float,
    ) -> tuple[NDArray[np.float64] | None, NDArray[np.bool_]]:
        n = len(src)
        if n < MIN_CORRESPONDENCES:
            return None, np.zeros(n, dtype=bool)

        try:
            H, mask = cv2.findHomography(
                np.float32(src).reshape(-1, 1, 2),
                np.float32(dst).reshape(-1, 1, 2),
                cv2.RANSAC,
                ransacReprojThreshold=threshold,
                maxIters=self.max_iters,
                confidence=self.confidence,
            )
        except cv2.error:
            return None, np.zeros(n, dtype=bool)

        if H is None or mask is None:
            return None, np.zeros(n, dtype=bool)
        return H.astype(np.float64), mask.ravel().astype(bool)


def normalize_points(points: NDArray[np.float64]) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Hartley normalization: centroid at origin, mean distance sqrt(2).

    Returns:
        Tuple of (normalized (N, 2) points, 3x3 transform T with p' = T p)
    """
    centroid = points.mean(axis=0)
    centered = points - centroid
    avg_dist = np.sqrt((centered**2).sum(axis=1)).mean()
    scale = np.sqrt(2) / avg_dist if avg_dist > 0 else 1.0

    T = np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ]
    )
    return centered * scale, T


def compute_homography_dlt(
    src: NDArray[np.float64],
    dst: NDArray[np.float64],
) -> NDArray[np.float64] | None:
    """
    Direct Linear Transform: solve dst ~ H src in the least-squares sense.

    Returns:
        3x3 homography with H[2, 2] == 1, or None if the fit is degenerate
    """
    if len(src) < MIN_CORRESPONDENCES:
        return None

    src_norm, T_src = normalize_points(src)
    dst_norm, T_dst = normalize_points(dst)

    x, y = src_norm[:, 0], src_norm[:, 1]
    xp, yp = dst_norm[:, 0], dst_norm[:, 1]
    zeros = np.zeros_like(x)
    ones = np.ones_like(x)

    # Two rows per correspondence of the homogeneous system A h = 0
    A = np.empty((2 * len(src), 9))
    A[0::2] = np.stack([-x, -y, -ones, zeros, zeros, zeros, x * xp, y * xp, xp], axis=1)
    A[1::2] = np.stack([zeros, zeros, zeros, -x, -y, -ones, x * yp, y * yp, yp], axis=1)

    try:
        _, _, Vt = np.linalg.svd(A)
        H = np.linalg.inv(T_dst) @ Vt[-1].reshape(3, 3) @ T_src
    except np.linalg.LinAlgError:
        return None

    if abs(H[2, 2]) < _W_EPSILON or not np.isfinite(H).all():
        return None
    return H / H[2, 2]


def reprojection_errors(
    H: NDArray[np.float64],
    src: NDArray[np.float64],
    dst: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Euclidean distance between H src and dst; points sent to infinity get inf."""
    src_h = np.hstack([src, np.ones((len(src), 1))])
    projected = src_h @ H.T
    w = projected[:, 2]

    errors = np.full(len(src), np.inf)
    valid = np.abs(w) > _W_EPSILON
    if valid.any():
        xy = projected[valid, :2] / w[valid, None]
        errors[valid] = np.sqrt(((xy - dst[valid]) ** 2).sum(axis=1))
    return errors


class RANSACHomographyEstimator:
    """
    RANSAC over minimal 4-point DLT fits.

    Each iteration fits a homography to a random 4-correspondence sample and
    counts the correspondences whose reprojection error is below the
    threshold. The model with the most inliers is refit on all of its
    inliers, and the inlier set is recomputed under the refit model.
    """

    def __init__(self, max_iters: int, confidence: float, seed: int | None = None) -> None:
        self.max_iters = max_iters
        self.confidence = confidence
        self.rng = np.random.default_rng(seed)

    def _required_iterations(self, inlier_ratio: float) -> int:
        if inlier_ratio <= 0.0:
            return self.max_iters
        if inlier_ratio >= 1.0:
            return 1
        good_sample = inlier_ratio**MIN_CORRESPONDENCES
        needed = np.log(1.0 - self.confidence) / np.log(1.0 - good_sample)
        return int(min(self.max_iters, max(1, np.ceil(needed))))

    def fit(
        self,
        src: NDArray[np.float64],
        dst: NDArray[np.float64],
        threshold: float,
    ) -> tuple[NDArray[np.float64] | None, NDArray[np.bool_]]:
        src = np.asarray(src, dtype=np.float64)
        dst = np.asarray(dst, dtype=np.float64)
        n = len(src)
        if n < MIN_CORRESPONDENCES:
            return None, np.zeros(n, dtype=bool)

        best_H: NDArray[np.float64] | None = None
        best_inliers = np.zeros(n, dtype=bool)
        best_count = 0

        iterations = self.max_iters
        i = 0
        while i < iterations:
            i += 1
            sample = self.rng.choice(n, MIN_CORRESPONDENCES, replace=False)
            H = compute_homography_dlt(src[sample], dst[sample])
            if H is None:
                continue

            inliers = reprojection_errors(H, src, dst) < threshold
            count = int(inliers.sum())
            if count > best_count:
                best_H, best_inliers, best_count = H, inliers, count
                iterations = self._required_iterations(count / n)

        if best_H is None or best_count < MIN_CORRESPONDENCES:
            return None, np.zeros(n, dtype=bool)

        refined = compute_homography_dlt(src[best_inliers], dst[best_inliers])
        if refined is not None:
            refined_inliers = reprojection_errors(refined, src, dst) < threshold
            if refined_inliers.sum() >= best_count:
                best_H, best_inliers = refined, refined_inliers

        return best_H, best_inliers
