"""
k-nearest-neighbour descriptor matching.

Shapes descriptor sets into search-backend queries and maps every result
position back to the reference image and descriptor it came from.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from identisnap.services.descriptor_index import DescriptorIndex
    from identisnap.services.search_backend import SearchBackend


@dataclass(frozen=True)
class Correspondence:
    """A candidate match between a query descriptor and a reference descriptor."""

    query_idx: int
    reference_idx: int
    """Descriptor index within the reference image identified by image_idx."""

    distance: float
    image_idx: int | None = None
    """Reference image index when matching against several images."""


Candidates = list[list[Correspondence]]
"""Per query descriptor, its nearest correspondences ordered by distance."""


def image_offsets(counts: Sequence[int]) -> NDArray[np.int64]:
    """Start position of every image's descriptors in a concatenated set."""
    offsets = np.zeros(len(counts), dtype=np.int64)
    if len(counts) > 1:
        offsets[1:] = np.cumsum(counts[:-1])
    return offsets


def to_candidates(
    distances: NDArray[np.float32],
    positions: NDArray[np.int64],
    counts: Sequence[int] | None,
) -> Candidates:
    """
    Convert raw k-NN output into correspondences.

    Args:
        distances: (n_queries, k) distances
        positions: (n_queries, k) global positions, -1 when missing
        counts: Per-image descriptor counts of the searched set, or None
            when the set holds a single image

    Returns:
        One list of correspondences per query row, invalid positions dropped
    """
    offsets = image_offsets(counts) if counts is not None else None

    candidates: Candidates = []
    for query_idx in range(positions.shape[0]):
        row: list[Correspondence] = []
        for distance, position in zip(distances[query_idx], positions[query_idx], strict=True):
            if position < 0:
                continue
            if offsets is None:
                row.append(Correspondence(query_idx, int(position), float(distance)))
                continue
            image_idx = int(np.searchsorted(offsets, position, side="right")) - 1
            row.append(
                Correspondence(
                    query_idx=query_idx,
                    reference_idx=int(position - offsets[image_idx]),
                    distance=float(distance),
                    image_idx=image_idx,
                )
            )
        candidates.append(row)
    return candidates


class ApproximateMatchFinder:
    """Find the k nearest reference descriptors for each query descriptor."""

    def __init__(self, backend: SearchBackend, k: int = 2) -> None:
        """
        Args:
            backend: Search capability used to build and query indexes
            k: Number of neighbours per query descriptor
        """
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        self.backend = backend
        self.k = k

    def _search(self, index: Any, query: NDArray[np.float32], total: int) -> tuple[Any, Any]:
        effective_k = min(self.k, total)
        return self.backend.knn(index, query, effective_k)

    def find(
        self,
        query: NDArray[np.float32],
        reference: NDArray[np.float32],
    ) -> Candidates:
        """Match query descriptors against one reference descriptor set."""
        if len(query) == 0 or len(reference) == 0:
            return [[] for _ in range(len(query))]

        index = self.backend.build(reference)
        distances, positions = self._search(index, query, len(reference))
        return to_candidates(distances, positions, None)

    def find_batch(
        self,
        query: NDArray[np.float32],
        references: Sequence[NDArray[np.float32]],
    ) -> Candidates:
        """
        Match query descriptors against several reference images at once.

        Every correspondence carries the index of its reference image in
        `references` and a descriptor index local to that image.
        """
        counts = [len(reference) for reference in references]
        total = sum(counts)
        if len(query) == 0 or total == 0:
            return [[] for _ in range(len(query))]

        index = self.backend.build(np.concatenate([r for r in references if len(r)], axis=0))
        distances, positions = self._search(index, query, total)
        return to_candidates(distances, positions, counts)

    def find_in_index(
        self,
        query: NDArray[np.float32],
        descriptor_index: DescriptorIndex,
    ) -> Candidates:
        """Match query descriptors against a persisted location index."""
        total = descriptor_index.count
        if len(query) == 0 or total == 0:
            return [[] for _ in range(len(query))]

        distances, positions = self._search(descriptor_index.search_index, query, total)
        return to_candidates(distances, positions, descriptor_index.image_counts)
