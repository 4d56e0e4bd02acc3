"""
RootSIFT descriptor normalization.

Arandjelovic & Zisserman, "Three things everyone should know to improve
object retrieval": L1-normalize each descriptor, then take the element-wise
square root. Euclidean distance on the result approximates the Hellinger
kernel on the original histograms.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

T = TypeVar("T")


def root_sift(descriptors: NDArray[np.float32]) -> NDArray[np.float32]:
    """
    Rewrite descriptors in place into RootSIFT form.

    A row whose L1 norm is zero becomes NaN in every component. That row is
    left for the caller to detect with degenerate_rows(); it is not clamped.

    Args:
        descriptors: Float array of shape (N, D), modified in place

    Returns:
        The same array, for chaining

    Raises:
        ValueError: If descriptors is empty or not a 2-D float array
    """
    if descriptors.ndim != 2 or descriptors.shape[0] == 0:
        raise ValueError(f"Descriptors must be a non-empty (N, D) array, got {descriptors.shape}")
    if not np.issubdtype(descriptors.dtype, np.floating):
        raise ValueError(f"Descriptors must be floating point, got {descriptors.dtype}")

    # abs first, otherwise sqrt of negative values
    np.abs(descriptors, out=descriptors)
    sums = descriptors.sum(axis=1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        np.divide(descriptors, sums, out=descriptors)
    np.sqrt(descriptors, out=descriptors)
    return descriptors


def degenerate_rows(descriptors: NDArray[np.float32]) -> NDArray[np.bool_]:
    """Mask of rows containing NaN or infinite values."""
    if descriptors.shape[0] == 0:
        return np.zeros(0, dtype=bool)
    return ~np.isfinite(descriptors).all(axis=1)


def drop_degenerate(
    keypoints: list[T],
    descriptors: NDArray[np.float32],
) -> tuple[list[T], NDArray[np.float32], int]:
    """
    Remove non-finite descriptor rows together with their keypoints.

    Returns:
        Tuple of (kept keypoints, kept descriptors, number of rows dropped)
    """
    bad = degenerate_rows(descriptors)
    dropped = int(bad.sum())
    if dropped == 0:
        return keypoints, descriptors, 0

    keep = ~bad
    kept_keypoints = [kp for kp, ok in zip(keypoints, keep, strict=True) if ok]
    return kept_keypoints, np.ascontiguousarray(descriptors[keep]), dropped
