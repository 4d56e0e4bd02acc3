"""
SIFT feature extraction from images.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

from identisnap.core.exceptions import ServiceError


@dataclass(frozen=True)
class Keypoint:
    """A detected keypoint in pixel coordinates."""

    x: float
    y: float
    size: float
    angle: float

    @property
    def pt(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass
class ExtractedFeatures:
    """Keypoints and descriptors of one image, in matching order."""

    keypoints: list[Keypoint]
    descriptors: NDArray[np.float32]
    image_size: tuple[int, int]
    """(width, height) of the decoded image."""

    @property
    def count(self) -> int:
        return len(self.keypoints)


class FeatureExtractor(Protocol):
    """Capability turning encoded images into keypoints and descriptors."""

    @property
    def descriptor_size(self) -> int: ...

    def extract(self, image_bytes: bytes) -> ExtractedFeatures: ...

    def extract_batch(self, images: Sequence[bytes]) -> list[ExtractedFeatures]: ...


def decode_image(image_bytes: bytes) -> NDArray[np.uint8]:
    """
    Decode image bytes into a grayscale array.

    Raises:
        ServiceError: If image cannot be decoded
    """
    nparr = np.frombuffer(image_bytes, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_GRAYSCALE) if nparr.size else None

    if image is None:
        raise ServiceError(
            error="invalid_image",
            message="Failed to decode image data",
            status_code=400,
            details=None,
        )
    return image


class SIFTFeatureExtractor:
    """Extract SIFT features from images."""

    def __init__(
        self,
        max_features: int,
        contrast_threshold: float,
        edge_threshold: float,
        sigma: float,
    ) -> None:
        """
        Initialize SIFT feature extractor.

        Args:
            max_features: Maximum number of features to retain (0 keeps all)
            contrast_threshold: Filter for weak features in low-contrast regions
            edge_threshold: Filter for edge-like features
            sigma: Gaussian sigma applied to the input at octave 0
        """
        self.sift = cv2.SIFT_create(
            nfeatures=max_features,
            contrastThreshold=contrast_threshold,
            edgeThreshold=edge_threshold,
            sigma=sigma,
        )

    @property
    def descriptor_size(self) -> int:
        return int(self.sift.descriptorSize())

    def extract(self, image_bytes: bytes) -> ExtractedFeatures:
        """
        Extract SIFT features from image bytes.

        Args:
            image_bytes: Raw image bytes (JPEG, PNG, or WebP)

        Returns:
            ExtractedFeatures with float32 descriptors of shape (N, 128);
            an image without features yields an empty (0, 128) array.

        Raises:
            ServiceError: If image cannot be decoded
        """
        gray = decode_image(image_bytes)
        height, width = gray.shape[:2]

        cv_keypoints, descriptors = self.sift.detectAndCompute(gray, None)

        if descriptors is None:
            descriptors = np.empty((0, self.descriptor_size), dtype=np.float32)

        keypoints = [
            Keypoint(
                x=float(kp.pt[0]),
                y=float(kp.pt[1]),
                size=float(kp.size),
                angle=float(kp.angle),
            )
            for kp in cv_keypoints
        ]

        return ExtractedFeatures(
            keypoints=keypoints,
            descriptors=np.ascontiguousarray(descriptors, dtype=np.float32),
            image_size=(width, height),
        )

    def extract_batch(self, images: Sequence[bytes]) -> list[ExtractedFeatures]:
        """
        Extract features from several images.

        Every image is decoded before any result is returned, so a single
        undecodable image fails the whole batch.
        """
        return [self.extract(image_bytes) for image_bytes in images]
