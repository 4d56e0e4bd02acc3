"""Image input utilities."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path

from identisnap.core.exceptions import ServiceError


def decode_base64_image(base64_string: str) -> bytes:
    """
    Decode base64 string to bytes.

    Args:
        base64_string: Base64-encoded image data, optionally a data URL

    Returns:
        Raw image bytes

    Raises:
        ServiceError: If base64 decoding fails
    """
    if "," in base64_string:
        base64_string = base64_string.split(",", 1)[1]

    try:
        return base64.b64decode(base64_string, validate=True)
    except binascii.Error as e:
        raise ServiceError(
            error="decode_error",
            message=f"Invalid Base64 encoding: {e}",
            status_code=400,
            details=None,
        ) from e


def read_image_file(path: Path) -> bytes:
    """
    Read raw image bytes from disk.

    Raises:
        ServiceError: If the file does not exist or cannot be read
    """
    try:
        return path.read_bytes()
    except FileNotFoundError as e:
        raise ServiceError(
            error="image_not_found",
            message=f"Can't read image '{path}'",
            status_code=404,
            details={"path": str(path)},
        ) from e
    except OSError as e:
        raise ServiceError(
            error="image_unreadable",
            message=f"Can't read image '{path}': {e}",
            status_code=400,
            details={"path": str(path)},
        ) from e
