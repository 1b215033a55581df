"""
File utilities - upload storage and extension checks.
"""

import os
import re
import time
from pathlib import Path
from typing import Union

from app.config import logger
from app.errors import InvalidInput

ALLOWED_EXTENSIONS = (".pdf", ".png", ".jpg", ".jpeg")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")

_UNSAFE_CHARS = re.compile(r"[^\w.\-]+", re.UNICODE)


def get_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def is_allowed_file(filename: str) -> bool:
    return get_extension(filename) in ALLOWED_EXTENSIONS


def is_image_file(filename: str) -> bool:
    return get_extension(filename) in IMAGE_EXTENSIONS


def safe_filename(filename: str) -> str:
    """Basename of ``filename`` with path separators and odd characters replaced."""
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    name = _UNSAFE_CHARS.sub("_", name).lstrip(".")
    return name or "upload"


def build_upload_path(data: bytes, filename: str, upload_root: Union[str, Path]) -> str:
    """
    Target path ``<upload_root>/<unix_ns>_<filename>`` for an upload, without writing it.

    Raises InvalidInput for empty uploads or unsupported extensions.
    """
    if not is_allowed_file(filename):
        raise InvalidInput(
            f"Unsupported file type: {get_extension(filename) or 'none'}. "
            f"Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )
    if not data:
        raise InvalidInput("Uploaded file is empty")
    return os.path.join(str(upload_root), f"{time.time_ns()}_{safe_filename(filename)}")


def write_upload(data: bytes, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    logger.info(f"Saved upload ({len(data)} bytes) to {path}")
    return path
