"""
Lightweight recognition against one location's persisted index.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from identisnap.logging import get_logger
from identisnap.services.descriptor_index import DescriptorIndex, DimensionMismatchError
from identisnap.services.descriptor_normalizer import drop_degenerate, root_sift
from identisnap.services.match_finder import ApproximateMatchFinder
from identisnap.services.ratio_filter import DEFAULT_RATIO, ratio_filter
from identisnap.utils.image import read_image_file

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from identisnap.services.descriptor_index import LocationTag
    from identisnap.services.feature_extractor import FeatureExtractor
    from identisnap.services.search_backend import SearchBackend


class Recogniser:
    """
    Count ratio-test survivors of a query image against one location.

    The index is loaded once at construction and only read afterwards. An
    instance is not safe for concurrent queries; hold one per caller or
    serialise access.
    """

    def __init__(
        self,
        index_path: Path,
        extractor: FeatureExtractor,
        backend: SearchBackend,
        ratio: float = DEFAULT_RATIO,
        root_sift: bool = True,
    ) -> None:
        """
        Args:
            index_path: Index file of the location (".faiss" suffix optional)
            extractor: Feature extractor matching the one used at ingestion
            backend: Search backend able to load the index
            ratio: Lowe ratio threshold
            root_sift: Whether query descriptors are RootSIFT-normalized

        Raises:
            IndexLoadError: If the index cannot be loaded
        """
        self.logger = get_logger("recogniser")
        self.extractor = extractor
        self.ratio = ratio
        self.root_sift = root_sift
        self.match_finder = ApproximateMatchFinder(backend, k=2)

        self.logger.info("Loading index", extra={"index_path": str(index_path)})
        self.index = DescriptorIndex.load(Path(index_path), backend)
        self.logger.info(
            "Loaded index",
            extra={"location": self.index.location.key, "descriptors": self.index.count},
        )

    @property
    def location(self) -> LocationTag:
        return self.index.location

    def describe(self, image_bytes: bytes) -> NDArray[np.float32]:
        """
        Extract query descriptors in the form the index was built with.

        Raises:
            ServiceError: If the image cannot be decoded
        """
        features = self.extractor.extract(image_bytes)
        descriptors = features.descriptors
        if self.root_sift and len(descriptors) > 0:
            root_sift(descriptors)
            _, descriptors, _ = drop_degenerate(features.keypoints, descriptors)
        return descriptors

    def count_matches(self, descriptors: NDArray[np.float32]) -> int:
        """Number of descriptors passing the ratio test against this index."""
        if len(descriptors) == 0:
            return 0
        if descriptors.shape[1] != self.index.dimension:
            raise DimensionMismatchError(self.index.dimension, descriptors.shape[1])
        candidates = self.match_finder.find_in_index(descriptors, self.index)
        return len(ratio_filter(candidates, self.ratio))

    def query(self, image_bytes: bytes) -> int:
        """
        Confidence that the image shows this location.

        Returns:
            Number of query descriptors passing the ratio test; higher means a
            stronger match

        Raises:
            ServiceError: If the image cannot be decoded
            DimensionMismatchError: If the extractor's descriptors don't fit the index
        """
        descriptors = self.describe(image_bytes)
        matches = self.count_matches(descriptors)

        self.logger.debug(
            "Query completed",
            extra={
                "location": self.index.location.key,
                "query_features": len(descriptors),
                "matches": matches,
            },
        )
        return matches

    def query_path(self, image_path: Path) -> int:
        """Query with an image file."""
        return self.query(read_image_file(Path(image_path)))
