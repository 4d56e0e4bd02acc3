"""Unit tests for the persisted descriptor index."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

import numpy as np
import pytest

from identisnap.services.descriptor_index import (
    DescriptorIndex,
    IndexLoadError,
    IndexSaveError,
    InvalidLocationError,
    LocationTag,
    index_paths,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
class TestLocationTag:
    """Tests for LocationTag."""

    def test_parse(self) -> None:
        tag = LocationTag.parse("51.5, -0.12")

        assert tag == LocationTag("51.5", "-0.12")
        assert tag.key == "51.5,-0.12"
        assert tag.latitude == 51.5
        assert tag.longitude == -0.12

    def test_keeps_text_verbatim(self) -> None:
        assert str(LocationTag("51.50", "-0.120")) == "51.50,-0.120"

    @pytest.mark.parametrize("text", ["51.5", "51.5,-0.12,3", "abc,1.0", ""])
    def test_parse_rejects_invalid(self, text: str) -> None:
        with pytest.raises(InvalidLocationError):
            LocationTag.parse(text)

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("51.5,-0.12,1.jpg", LocationTag("51.5", "-0.12")),
            ("51.5,-0.12.jpg", LocationTag("51.5", "-0.12")),
            ("/data/48.85,2.35,front,left.png", LocationTag("48.85", "2.35")),
        ],
    )
    def test_from_filename(self, filename: str, expected: LocationTag) -> None:
        assert LocationTag.from_filename(filename) == expected

    def test_from_filename_without_location(self) -> None:
        with pytest.raises(InvalidLocationError):
            LocationTag.from_filename("holiday.jpg")

    def test_index_paths(self, tmp_path: Path) -> None:
        index_path, metadata_path = index_paths(tmp_path, LocationTag("51.5", "-0.12"))

        assert index_path == tmp_path / "51.5,-0.12.faiss"
        assert metadata_path == tmp_path / "51.5,-0.12.json"


@pytest.fixture
def descriptor_index(flat_backend) -> DescriptorIndex:
    rng = np.random.default_rng(0)
    descriptors = rng.random((15, 8)).astype(np.float32)
    return DescriptorIndex(
        location=LocationTag("51.5", "-0.12"),
        search_index=flat_backend.build(descriptors),
        dimension=8,
        image_counts=[10, 5],
        image_names=["a.jpg", "b.jpg"],
        start_bin=0,
        end_bin=14,
    )


@pytest.mark.unit
class TestDescriptorIndex:
    """Tests for DescriptorIndex persistence."""

    def test_save_writes_both_files(self, tmp_path: Path, descriptor_index, flat_backend) -> None:
        index_path = descriptor_index.save(tmp_path / "indexes", flat_backend)

        assert index_path == tmp_path / "indexes" / "51.5,-0.12.faiss"
        assert index_path.exists()
        metadata = json.loads((tmp_path / "indexes" / "51.5,-0.12.json").read_text())
        assert metadata["location"] == {"lat": "51.5", "lng": "-0.12"}
        assert metadata["count"] == 15
        assert metadata["image_counts"] == [10, 5]
        assert (metadata["start_bin"], metadata["end_bin"]) == (0, 14)

    def test_save_leaves_no_temporary_files(
        self, tmp_path: Path, descriptor_index, flat_backend
    ) -> None:
        descriptor_index.save(tmp_path, flat_backend)

        assert sorted(p.name for p in tmp_path.iterdir()) == ["51.5,-0.12.faiss", "51.5,-0.12.json"]

    def test_save_replaces_existing_record(
        self, tmp_path: Path, descriptor_index, flat_backend
    ) -> None:
        descriptor_index.save(tmp_path, flat_backend)
        descriptor_index.start_bin, descriptor_index.end_bin = 100, 114

        index_path = descriptor_index.save(tmp_path, flat_backend)

        assert DescriptorIndex.load(index_path, flat_backend).start_bin == 100

    def test_load_roundtrip(self, tmp_path: Path, descriptor_index, flat_backend) -> None:
        index_path = descriptor_index.save(tmp_path, flat_backend)

        loaded = DescriptorIndex.load(index_path, flat_backend)

        assert loaded.location == descriptor_index.location
        assert loaded.count == 15
        assert loaded.image_counts == [10, 5]
        assert loaded.image_names == ["a.jpg", "b.jpg"]
        assert flat_backend.count(loaded.search_index) == 15

    def test_load_accepts_path_without_suffix(
        self, tmp_path: Path, descriptor_index, flat_backend
    ) -> None:
        descriptor_index.save(tmp_path, flat_backend)

        loaded = DescriptorIndex.load(tmp_path / "51.5,-0.12", flat_backend)

        assert loaded.count == 15

    def test_load_missing_index(self, tmp_path: Path, flat_backend) -> None:
        with pytest.raises(IndexLoadError, match="not found"):
            DescriptorIndex.load(tmp_path / "1.0,2.0.faiss", flat_backend)

    def test_load_missing_metadata(self, tmp_path: Path, descriptor_index, flat_backend) -> None:
        index_path = descriptor_index.save(tmp_path, flat_backend)
        (tmp_path / "51.5,-0.12.json").unlink()

        with pytest.raises(IndexLoadError, match="Metadata file not found"):
            DescriptorIndex.load(index_path, flat_backend)

    def test_load_count_mismatch(self, tmp_path: Path, descriptor_index, flat_backend) -> None:
        index_path = descriptor_index.save(tmp_path, flat_backend)
        metadata_path = tmp_path / "51.5,-0.12.json"
        metadata = json.loads(metadata_path.read_text())
        metadata["image_counts"] = [10, 6]
        metadata_path.write_text(json.dumps(metadata))

        with pytest.raises(IndexLoadError, match="doesn't match"):
            DescriptorIndex.load(index_path, flat_backend)

    def test_load_corrupt_metadata(self, tmp_path: Path, descriptor_index, flat_backend) -> None:
        index_path = descriptor_index.save(tmp_path, flat_backend)
        (tmp_path / "51.5,-0.12.json").write_text("{not json")

        with pytest.raises(IndexLoadError):
            DescriptorIndex.load(index_path, flat_backend)

    def test_save_failure_raises(self, tmp_path: Path, descriptor_index, flat_backend) -> None:
        blocker = tmp_path / "indexes"
        blocker.write_text("a file where a directory should be")

        with pytest.raises(IndexSaveError):
            descriptor_index.save(blocker, flat_backend)

    def test_failed_metadata_write_keeps_previous_record(
        self, tmp_path: Path, descriptor_index, flat_backend
    ) -> None:
        index_path = descriptor_index.save(tmp_path, flat_backend)
        replacement = make_replacement(flat_backend)

        with (
            patch.object(DescriptorIndex, "metadata", side_effect=OSError("disk full")),
            pytest.raises(IndexSaveError),
        ):
            replacement.save(tmp_path, flat_backend)

        assert DescriptorIndex.load(index_path, flat_backend).count == 15
        assert sorted(p.name for p in tmp_path.iterdir()) == ["51.5,-0.12.faiss", "51.5,-0.12.json"]

    def test_failed_metadata_swap_restores_previous_index(
        self, tmp_path: Path, descriptor_index, flat_backend
    ) -> None:
        index_path = descriptor_index.save(tmp_path, flat_backend)
        replacement = make_replacement(flat_backend)

        with (
            patch(
                "identisnap.services.descriptor_index.os.replace",
                side_effect=replace_failing_on(".json"),
            ),
            pytest.raises(IndexSaveError),
        ):
            replacement.save(tmp_path, flat_backend)

        loaded = DescriptorIndex.load(index_path, flat_backend)
        assert loaded.count == 15
        assert flat_backend.count(loaded.search_index) == 15
        assert sorted(p.name for p in tmp_path.iterdir()) == ["51.5,-0.12.faiss", "51.5,-0.12.json"]

    def test_failed_first_save_leaves_no_files(
        self, tmp_path: Path, descriptor_index, flat_backend
    ) -> None:
        with (
            patch(
                "identisnap.services.descriptor_index.os.replace",
                side_effect=replace_failing_on(".json"),
            ),
            pytest.raises(IndexSaveError),
        ):
            descriptor_index.save(tmp_path, flat_backend)

        assert list(tmp_path.iterdir()) == []


def make_replacement(backend) -> DescriptorIndex:
    """A record for the same location with a different descriptor count."""
    descriptors = np.random.default_rng(1).random((20, 8)).astype(np.float32)
    return DescriptorIndex(
        location=LocationTag("51.5", "-0.12"),
        search_index=backend.build(descriptors),
        dimension=8,
        image_counts=[20],
        start_bin=15,
        end_bin=34,
    )


def replace_failing_on(suffix: str):
    """os.replace stand-in that fails when the destination has the given suffix."""
    real_replace = os.replace

    def replace(src, dst) -> None:
        if str(dst).endswith(suffix):
            raise OSError("disk full")
        real_replace(src, dst)

    return replace
