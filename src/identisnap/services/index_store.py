"""
Location ingestion: images in, persisted descriptor index and ledger line out.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from identisnap.logging import get_logger
from identisnap.services.descriptor_index import DescriptorIndex, LocationTag
from identisnap.services.descriptor_normalizer import drop_degenerate, root_sift
from identisnap.utils.image import read_image_file

if TYPE_CHECKING:
    from collections.abc import Sequence

    from identisnap.services.bin_ledger import BinLedger, LedgerEntry
    from identisnap.services.feature_extractor import FeatureExtractor
    from identisnap.services.search_backend import SearchBackend


class IngestionError(Exception):
    """Raised when a batch cannot be turned into an index record."""

    pass


@dataclass
class IngestResult:
    """Summary of one ingested location."""

    location: LocationTag
    index_path: Path
    entry: LedgerEntry
    image_count: int
    descriptor_count: int
    dropped_descriptors: int


def split_filenames(filenames: str) -> list[str]:
    """Split a colon-delimited filename list, ignoring empty segments."""
    return [name for name in filenames.split(":") if name]


class DescriptorIndexStore:
    """Build, persist and register per-location descriptor indexes."""

    def __init__(
        self,
        extractor: FeatureExtractor,
        backend: SearchBackend,
        index_dir: Path,
        ledger: BinLedger,
        root_sift: bool = True,
    ) -> None:
        self.extractor = extractor
        self.backend = backend
        self.index_dir = Path(index_dir)
        self.ledger = ledger
        self.root_sift = root_sift
        self.logger = get_logger("index_store")

    def ingest(
        self,
        location: LocationTag,
        images: Sequence[bytes],
        image_names: Sequence[str] | None = None,
    ) -> IngestResult:
        """
        Ingest a batch of images for one location.

        All images are decoded and described before anything touches disk, so
        an undecodable image aborts the batch with no index file and no ledger
        line. The ledger line is appended only after the index is persisted.

        Raises:
            ServiceError: If an image cannot be decoded
            IngestionError: If the batch is empty or yields no descriptors
            IndexSaveError: If the index cannot be written
        """
        if not images:
            raise IngestionError(f"No images given for location {location}")
        names = list(image_names) if image_names is not None else [
            f"image-{i}" for i in range(len(images))
        ]
        if len(names) != len(images):
            raise IngestionError("image_names must align with images")

        features = self.extractor.extract_batch(images)

        descriptor_sets = []
        image_counts: list[int] = []
        dropped = 0
        for feature in features:
            descriptors = feature.descriptors
            if self.root_sift and len(descriptors) > 0:
                root_sift(descriptors)
                _, descriptors, n_dropped = drop_degenerate(feature.keypoints, descriptors)
                dropped += n_dropped
            descriptor_sets.append(descriptors)
            image_counts.append(len(descriptors))

        total = sum(image_counts)
        if total == 0:
            raise IngestionError(f"No descriptors extracted for location {location}")
        if dropped:
            self.logger.warning(
                "Dropped zero-norm descriptors",
                extra={"location": location.key, "dropped": dropped},
            )

        all_descriptors = np.concatenate([d for d in descriptor_sets if len(d)], axis=0)
        descriptor_index = DescriptorIndex(
            location=location,
            search_index=self.backend.build(all_descriptors),
            dimension=int(all_descriptors.shape[1]),
            image_counts=image_counts,
            image_names=names,
        )

        with self.ledger.transaction() as allocator:
            entry = allocator.reserve(location, total)
            descriptor_index.start_bin = entry.start_bin
            descriptor_index.end_bin = entry.end_bin
            index_path = descriptor_index.save(self.index_dir, self.backend)
            allocator.commit()

        self.logger.info(
            "Location ingested",
            extra={
                "location": location.key,
                "images": len(images),
                "descriptors": total,
                "start_bin": entry.start_bin,
                "end_bin": entry.end_bin,
                "index_path": str(index_path),
            },
        )

        return IngestResult(
            location=location,
            index_path=index_path,
            entry=entry,
            image_count=len(images),
            descriptor_count=total,
            dropped_descriptors=dropped,
        )

    def ingest_folder(self, image_dir: Path, filenames: Sequence[str]) -> IngestResult:
        """
        Ingest images stored in a folder.

        The location is taken from the first filename, which must start with
        "<lat>,<lng>".

        Raises:
            ServiceError: If any image is missing or unreadable
        """
        if not filenames:
            raise IngestionError("No filenames given")

        location = LocationTag.from_filename(filenames[0])
        images = [read_image_file(Path(image_dir) / name) for name in filenames]
        return self.ingest(location, images, list(filenames))
