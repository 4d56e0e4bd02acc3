"""
Nearest-neighbour search over descriptor sets, backed by FAISS.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, Protocol

import faiss
import numpy as np

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray


class SearchBackend(Protocol):
    """Build, query and persist a k-NN structure over descriptors."""

    def build(self, descriptors: NDArray[np.float32]) -> Any: ...

    def knn(
        self,
        index: Any,
        queries: NDArray[np.float32],
        k: int,
    ) -> tuple[NDArray[np.float32], NDArray[np.int64]]: ...

    def count(self, index: Any) -> int: ...

    def save(self, index: Any, path: Path) -> None: ...

    def load(self, path: Path) -> Any: ...


class FAISSSearchBackend:
    """
    L2 nearest-neighbour search with FAISS.

    `flat` is exhaustive and exact; `hnsw` is the approximate graph index.
    Distances returned by knn() are Euclidean, not FAISS's squared L2.
    """

    def __init__(
        self,
        index_type: Literal["flat", "hnsw"],
        hnsw_m: int,
        ef_search: int,
        ef_construction: int,
    ) -> None:
        if index_type not in ("flat", "hnsw"):
            raise ValueError(f"Unsupported index type: {index_type}")
        self.index_type = index_type
        self.hnsw_m = hnsw_m
        self.ef_search = ef_search
        self.ef_construction = ef_construction

    def _create(self, dimension: int) -> faiss.Index:
        if self.index_type == "flat":
            return faiss.IndexFlatL2(dimension)
        index = faiss.IndexHNSWFlat(dimension, self.hnsw_m)
        index.hnsw.efConstruction = self.ef_construction
        index.hnsw.efSearch = self.ef_search
        return index

    def build(self, descriptors: NDArray[np.float32]) -> faiss.Index:
        """
        Build a new index over all rows of descriptors.

        Raises:
            ValueError: If descriptors is not a 2-D array
        """
        if descriptors.ndim != 2:
            raise ValueError(f"Descriptors must be 2-D, got shape {descriptors.shape}")

        index = self._create(int(descriptors.shape[1]))
        if descriptors.shape[0] > 0:
            add_fn: Any = index.add
            add_fn(np.ascontiguousarray(descriptors, dtype=np.float32))
        return index

    def knn(
        self,
        index: faiss.Index,
        queries: NDArray[np.float32],
        k: int,
    ) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
        """
        Find the k nearest indexed rows for every query row.

        Returns:
            Tuple of (distances, positions), both shaped (n_queries, k).
            Missing neighbours have position -1.
        """
        n_queries = int(queries.shape[0])
        if n_queries == 0 or index.ntotal == 0:
            return (
                np.empty((n_queries, k), dtype=np.float32),
                np.full((n_queries, k), -1, dtype=np.int64),
            )

        search_fn: Any = index.search
        squared, positions = search_fn(np.ascontiguousarray(queries, dtype=np.float32), k)
        distances = np.sqrt(np.maximum(squared, 0.0)).astype(np.float32)
        return distances, positions.astype(np.int64)

    def count(self, index: faiss.Index) -> int:
        return int(index.ntotal)

    def save(self, index: faiss.Index, path: Path) -> None:
        faiss.write_index(index, str(path))

    def load(self, path: Path) -> faiss.Index:
        # read_index already returns the concrete index type
        index = faiss.read_index(str(path))
        if isinstance(index, faiss.IndexHNSW):
            index.hnsw.efSearch = self.ef_search
        return index
