"""
Primitive-argument entry points for host programs.

These mirror the two calls a host needs: ingest a folder of images for one
location, and count matches of a query image against one location's index.
"""

from __future__ import annotations

from pathlib import Path

from identisnap.components import create_index_store, create_recogniser
from identisnap.config import get_settings
from identisnap.services.index_store import split_filenames


def save_features(img_folder: str, img_filenames: str, out_folder: str, ledger_filename: str) -> None:
    """
    Ingest a location from images in a folder.

    Args:
        img_folder: Folder holding the images
        img_filenames: Colon-delimited image filenames; the first one must
            start with "<lat>,<lng>"
        out_folder: Folder receiving the index record
        ledger_filename: Bin ledger file to append to
    """
    store = create_index_store(
        get_settings(),
        index_dir=Path(out_folder),
        ledger_path=Path(ledger_filename),
    )
    store.ingest_folder(Path(img_folder), split_filenames(img_filenames))


def query(index_filename: str, image_path: str) -> int:
    """Number of ratio-test matches of an image against one location index."""
    recogniser = create_recogniser(get_settings(), Path(index_filename))
    return recogniser.query_path(Path(image_path))
