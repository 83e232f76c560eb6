"""Image preprocessing pipeline.

Handles decoding, EXIF orientation, size validation, uniform scale-to-fit
letterboxing onto a square canvas, and conversion to the RGB uint8 pixel
buffer the classifier consumes.
"""

from __future__ import annotations

import io
import logging
import struct
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from terrainrisk.config import Settings

logger = logging.getLogger(__name__)


class PreprocessingError(ValueError):
    """Raised when an image cannot be turned into a classifier pixel buffer."""


def scale_factor(source_size: tuple[int, int], target_size: tuple[int, int]) -> float:
    """Return the uniform scale that fits ``source_size`` inside ``target_size``.

    Raises:
        PreprocessingError: If the source has a zero or negative dimension.
    """
    source_w, source_h = source_size
    if source_w <= 0 or source_h <= 0:
        raise PreprocessingError(f"Source image has no area: {source_w}x{source_h}")
    target_w, target_h = target_size
    return min(target_w / source_w, target_h / source_h)


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> Image.Image:
        """Decode raw image bytes into an upright Pillow image.

        Args:
            image_bytes: Raw file bytes (any supported format).

        Returns:
            Decoded image with EXIF orientation applied.

        Raises:
            PreprocessingError: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def preprocess(self, image: Image.Image) -> NDArray[np.uint8]:
        """Prepare an image for the classifier.

        Args:
            image: Source image of any size and mode.

        Returns:
            HxWx3 RGB uint8 array with the classifier's input dimensions.

        Raises:
            PreprocessingError: If resizing or pixel conversion fails.
        """
        ...


class PillowPreprocessor:
    """Letterboxes images onto a square canvas and converts them to pixel buffers."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._target = settings.target_size

    @property
    def target_size(self) -> int:
        return self._target

    # -- Public API ---------------------------------------------------------

    def decode_image(self, image_bytes: bytes) -> Image.Image:
        """Decode raw bytes, enforcing the configured file and pixel limits."""
        if len(image_bytes) > self._settings.max_file_size:
            raise PreprocessingError(
                f"Image file is {len(image_bytes)} bytes, limit is {self._settings.max_file_size}"
            )

        try:
            with Image.open(io.BytesIO(image_bytes)) as opened:
                width, height = opened.size
                if width * height > self._settings.max_image_pixels:
                    raise PreprocessingError(
                        f"Image has {width * height} pixels, limit is {self._settings.max_image_pixels}"
                    )
                image = ImageOps.exif_transpose(opened)
                image.load()
        except PreprocessingError:
            raise
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            EOFError,
            SyntaxError,
            ValueError,
            IndexError,
            struct.error,
            MemoryError,
        ) as exc:
            # Pillow reports corrupt data through any of these.
            raise PreprocessingError(f"Could not decode image: {exc}") from exc

        logger.debug("Decoded %sx%s %s image", image.width, image.height, image.mode)
        return image

    def resize(self, image: Image.Image) -> Image.Image:
        """Scale ``image`` uniformly into a black ``target x target`` RGB canvas."""
        target = self._target
        factor = scale_factor(image.size, (target, target))
        scaled_size = (
            min(target, max(1, round(image.width * factor))),
            min(target, max(1, round(image.height * factor))),
        )

        try:
            scaled = image.convert("RGB").resize(scaled_size, Image.Resampling.BILINEAR)
            canvas = Image.new("RGB", (target, target))
            canvas.paste(scaled, self._offset(scaled_size))
        except (OSError, ValueError, MemoryError) as exc:
            raise PreprocessingError(f"Could not resize image: {exc}") from exc
        return canvas

    def to_pixel_buffer(self, image: Image.Image) -> NDArray[np.uint8]:
        """Convert ``image`` to a writable HxWx3 RGB uint8 array (alpha is skipped)."""
        try:
            pixels = np.array(image.convert("RGB"), dtype=np.uint8)
        except (OSError, ValueError, MemoryError) as exc:
            raise PreprocessingError(f"Could not convert image to pixel buffer: {exc}") from exc

        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise PreprocessingError(f"Unexpected pixel buffer shape {pixels.shape}")
        return pixels

    def preprocess(self, image: Image.Image) -> NDArray[np.uint8]:
        """Resize then convert; the result always has the target dimensions."""
        pixels = self.to_pixel_buffer(self.resize(image))
        expected = (self._target, self._target, 3)
        if pixels.shape != expected:
            raise PreprocessingError(f"Pixel buffer shape {pixels.shape} does not match {expected}")
        return pixels

    # -- Internal -----------------------------------------------------------

    def _offset(self, scaled_size: tuple[int, int]) -> tuple[int, int]:
        if self._settings.letterbox_anchor == "origin":
            return (0, 0)
        scaled_w, scaled_h = scaled_size
        return ((self._target - scaled_w) // 2, (self._target - scaled_h) // 2)
