"""Image metadata captured into history items."""

import os
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from picnexus.utils.logger import log


@dataclass
class ImageMetadata:
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    format: Optional[str] = None


def read_image_metadata(file_path: str) -> ImageMetadata:
    """Read dimensions/format without decoding pixel data. Never raises."""
    meta = ImageMetadata()
    try:
        meta.file_size = os.path.getsize(file_path)
    except OSError:
        return meta
    try:
        with Image.open(file_path) as img:
            meta.width, meta.height = img.size
            meta.format = (img.format or "").lower() or None
    except (UnidentifiedImageError, OSError) as e:
        log(f"Could not read image metadata for {os.path.basename(file_path)}: {e}",
            level="debug", category="uploads")
    return meta
