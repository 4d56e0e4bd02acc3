"""
Persisted per-location descriptor index.

An index record is a searchable structure over every descriptor ingested for
one location, stored next to a JSON metadata file:

    <index_dir>/<lat>,<lng>.faiss
    <index_dir>/<lat>,<lng>.json
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from identisnap.services.search_backend import SearchBackend

INDEX_SUFFIX = ".faiss"
METADATA_SUFFIX = ".json"


class DescriptorIndexError(Exception):
    """Base exception for descriptor index operations."""

    pass


class InvalidLocationError(DescriptorIndexError):
    """Raised when a location tag cannot be parsed."""

    def __init__(self, text: str, reason: str) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"Invalid location '{text}': {reason}")


class DimensionMismatchError(DescriptorIndexError):
    """Raised when descriptor dimension doesn't match index dimension."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            f"Descriptor dimension {received} does not match index dimension {expected}"
        )


class IndexSaveError(DescriptorIndexError):
    """Raised when index save operation fails."""

    pass


class IndexLoadError(DescriptorIndexError):
    """Raised when index load operation fails."""

    pass


@dataclass(frozen=True)
class LocationTag:
    """
    Latitude/longitude pair identifying a catalogued location.

    The text is kept exactly as given so that file names and ledger lines
    round-trip without float reformatting.
    """

    lat: str
    lng: str

    def __post_init__(self) -> None:
        for name, value in (("latitude", self.lat), ("longitude", self.lng)):
            try:
                float(value)
            except ValueError as e:
                raise InvalidLocationError(f"{self.lat},{self.lng}", f"{name} is not a number") from e

    @property
    def latitude(self) -> float:
        return float(self.lat)

    @property
    def longitude(self) -> float:
        return float(self.lng)

    @property
    def key(self) -> str:
        return f"{self.lat},{self.lng}"

    @classmethod
    def parse(cls, text: str) -> LocationTag:
        """Parse "lat,lng"."""
        parts = [part.strip() for part in text.split(",")]
        if len(parts) != 2:
            raise InvalidLocationError(text, "expected 'lat,lng'")
        return cls(parts[0], parts[1])

    @classmethod
    def from_filename(cls, filename: str) -> LocationTag:
        """Location of an image named "<lat>,<lng>[,anything].<ext>"."""
        parts = Path(filename).name.split(",")
        if len(parts) < 2:
            raise InvalidLocationError(filename, "filename must start with '<lat>,<lng>'")
        lng = parts[1] if len(parts) > 2 else Path(parts[1]).stem
        return cls(parts[0].strip(), lng.strip())

    def __str__(self) -> str:
        return self.key


def index_paths(index_dir: Path, location: LocationTag) -> tuple[Path, Path]:
    """Index and metadata file paths for a location."""
    base = index_dir / location.key
    return base.with_name(base.name + INDEX_SUFFIX), base.with_name(base.name + METADATA_SUFFIX)


def _staging_path(target: Path, suffix: str) -> Path:
    return target.with_name(f".{target.name}.{suffix}")


def _write_synced(path: Path, write: Any) -> None:
    write(path)
    with path.open("rb") as f:
        os.fsync(f.fileno())


@dataclass
class DescriptorIndex:
    """
    Searchable descriptors of one location.

    Attributes:
        location: Location the descriptors were ingested for
        search_index: Backend structure over the concatenated descriptors
        dimension: Descriptor dimension
        image_counts: Descriptors contributed by each ingested image, in order
        image_names: Name of each ingested image, aligned with image_counts
        start_bin: First global descriptor id, once allocated
        end_bin: Last global descriptor id, once allocated
    """

    location: LocationTag
    search_index: Any
    dimension: int
    image_counts: list[int]
    image_names: list[str] = field(default_factory=list)
    start_bin: int | None = None
    end_bin: int | None = None

    @property
    def count(self) -> int:
        return sum(self.image_counts)

    def metadata(self) -> dict[str, Any]:
        return {
            "location": {"lat": self.location.lat, "lng": self.location.lng},
            "dimension": self.dimension,
            "count": self.count,
            "image_counts": self.image_counts,
            "image_names": self.image_names,
            "start_bin": self.start_bin,
            "end_bin": self.end_bin,
        }

    def save(self, index_dir: Path, backend: SearchBackend) -> Path:
        """
        Persist index and metadata as one record.

        Both files are written and synced to temporary names first, then
        swapped in. The previous index file is kept as a backup until the
        metadata swap succeeds, so a failed save leaves the previous record
        (or no record) in place.

        Returns:
            Path of the written index file

        Raises:
            IndexSaveError: If save operation fails
        """
        index_path, metadata_path = index_paths(index_dir, self.location)
        index_tmp = _staging_path(index_path, "tmp")
        metadata_tmp = _staging_path(metadata_path, "tmp")
        backup = _staging_path(index_path, "bak")
        try:
            index_dir.mkdir(parents=True, exist_ok=True)
            _write_synced(index_tmp, lambda p: backend.save(self.search_index, p))
            _write_synced(
                metadata_tmp,
                lambda p: p.write_text(json.dumps(self.metadata(), indent=2)),
            )
            self._swap_in(index_tmp, index_path, metadata_tmp, metadata_path, backup)
        except Exception as e:
            raise IndexSaveError(f"Failed to save index for {self.location}: {e}") from e
        finally:
            index_tmp.unlink(missing_ok=True)
            metadata_tmp.unlink(missing_ok=True)
        return index_path

    @staticmethod
    def _swap_in(
        index_tmp: Path,
        index_path: Path,
        metadata_tmp: Path,
        metadata_path: Path,
        backup: Path,
    ) -> None:
        had_index = index_path.exists()
        if had_index:
            os.replace(index_path, backup)
        try:
            os.replace(index_tmp, index_path)
            os.replace(metadata_tmp, metadata_path)
        except Exception:
            if had_index:
                os.replace(backup, index_path)
            else:
                index_path.unlink(missing_ok=True)
            raise
        backup.unlink(missing_ok=True)

    @classmethod
    def load(cls, index_path: Path, backend: SearchBackend) -> DescriptorIndex:
        """
        Load an index record from its index file path.

        The metadata file is expected beside it with a .json suffix.

        Raises:
            IndexLoadError: If files are missing or inconsistent
        """
        index_path = Path(index_path)
        if index_path.suffix != INDEX_SUFFIX:
            index_path = index_path.with_name(index_path.name + INDEX_SUFFIX)
        metadata_path = index_path.with_suffix(METADATA_SUFFIX)

        if not index_path.exists():
            raise IndexLoadError(f"Index file not found: {index_path}")
        if not metadata_path.exists():
            raise IndexLoadError(f"Metadata file not found: {metadata_path}")

        try:
            search_index = backend.load(index_path)
            metadata = json.loads(metadata_path.read_text())

            for key in ("location", "dimension", "image_counts"):
                if key not in metadata:
                    raise IndexLoadError(f"Metadata missing required '{key}' field")

            image_counts = [int(c) for c in metadata["image_counts"]]
            if backend.count(search_index) != sum(image_counts):
                raise IndexLoadError(
                    f"Index count ({backend.count(search_index)}) doesn't match "
                    f"metadata count ({sum(image_counts)})"
                )

            return cls(
                location=LocationTag(metadata["location"]["lat"], metadata["location"]["lng"]),
                search_index=search_index,
                dimension=int(metadata["dimension"]),
                image_counts=image_counts,
                image_names=list(metadata.get("image_names", [])),
                start_bin=metadata.get("start_bin"),
                end_bin=metadata.get("end_bin"),
            )
        except IndexLoadError:
            raise
        except Exception as e:
            raise IndexLoadError(f"Failed to load index: {e}") from e
