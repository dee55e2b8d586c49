"""Image acquisition: where photos to classify come from.

The camera/gallery UI lives outside this package. The classifier only needs
something that returns a file path for a source, or ``None`` when the user
picked nothing.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tif", ".tiff"})


class ImageSource(StrEnum):
    CAMERA = "camera"
    GALLERY = "gallery"


class ImagePicker(Protocol):
    """Protocol for image acquisition."""

    async def pick_image(self, source: ImageSource) -> Path | None:
        """Return the path of the selected image, or None if nothing was selected."""
        ...


class DirectoryImagePicker:
    """Picks the most recently modified image from a per-source directory.

    A camera app or sync client drops photos into these directories; a
    source without a configured directory, or with no images, selects nothing.
    """

    def __init__(self, camera_dir: Path | None = None, gallery_dir: Path | None = None) -> None:
        self._directories: dict[ImageSource, Path | None] = {
            ImageSource.CAMERA: camera_dir,
            ImageSource.GALLERY: gallery_dir,
        }

    async def pick_image(self, source: ImageSource) -> Path | None:
        directory = self._directories[ImageSource(source)]
        if directory is None:
            logger.info("No directory configured for %s", source)
            return None
        return await asyncio.to_thread(self._newest_image, directory)

    @staticmethod
    def _newest_image(directory: Path) -> Path | None:
        if not directory.is_dir():
            logger.warning("Image directory %s does not exist", directory)
            return None
        candidates = [
            path for path in directory.iterdir() if path.is_file() and path.suffix.lower() in IMAGE_SUFFIXES
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda path: path.stat().st_mtime)
