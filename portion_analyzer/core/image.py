"""Image loading and working-copy preparation shared by the detectors."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import ImageReadError
from .types import ImageInput


def load_image(image_input: ImageInput) -> np.ndarray:
    """Decode ``image_input`` into an RGB ``uint8`` array of shape (H, W, 3).

    Accepts a path, a PIL image, or an array that is grayscale, RGB or RGBA.
    Anything that cannot be turned into a non-empty image raises
    :class:`ImageReadError`.
    """
    if isinstance(image_input, np.ndarray):
        return _array_to_rgb(image_input)
    if isinstance(image_input, Image.Image):
        try:
            return np.asarray(image_input.convert("RGB"), dtype=np.uint8).copy()
        except OSError as exc:
            raise ImageReadError(f"Unreadable image: {exc}") from exc
    path = Path(image_input)
    if not path.exists():
        raise ImageReadError(f"Image file not found: {path}")
    try:
        with Image.open(path) as handle:
            return np.asarray(handle.convert("RGB"), dtype=np.uint8).copy()
    except UnidentifiedImageError as exc:
        raise ImageReadError(f"Unsupported image file: {path}") from exc
    except OSError as exc:
        raise ImageReadError(f"Corrupt image file {path}: {exc}") from exc


def _array_to_rgb(array: np.ndarray) -> np.ndarray:
    if array.size == 0 or array.ndim not in (2, 3):
        raise ImageReadError(f"Expected a 2D or 3D pixel array, got shape {array.shape}")
    if array.dtype != np.uint8:
        if not np.issubdtype(array.dtype, np.number):
            raise ImageReadError(f"Unsupported pixel dtype {array.dtype}")
        array = np.clip(array, 0, 255).astype(np.uint8)
    if array.ndim == 2:
        return cv2.cvtColor(array, cv2.COLOR_GRAY2RGB)
    channels = array.shape[2]
    if channels == 1:
        return cv2.cvtColor(array[:, :, 0], cv2.COLOR_GRAY2RGB)
    if channels == 3:
        return np.ascontiguousarray(array)
    if channels == 4:
        return cv2.cvtColor(array, cv2.COLOR_RGBA2RGB)
    raise ImageReadError(f"Unsupported channel count: {channels}")


def to_gray(rgb: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)


@dataclass(frozen=True, eq=False)
class WorkingImage:
    """Grayscale, contrast-enhanced copy of an image at detection resolution.

    ``scale`` maps original coordinates to working coordinates; divide by it
    to map results back.
    """

    gray: np.ndarray
    scale: float
    original_size: Tuple[int, int]  # (width, height)

    @property
    def width(self) -> int:
        return int(self.gray.shape[1])

    @property
    def height(self) -> int:
        return int(self.gray.shape[0])

    @property
    def area(self) -> float:
        return float(self.width * self.height)


def prepare_working_image(
    rgb: np.ndarray,
    working_width: int = 640,
    clahe_clip_limit: float = 2.0,
    clahe_tile_grid: int = 8,
) -> WorkingImage:
    """Downscale to ``working_width`` if wider, convert to gray and apply CLAHE."""
    height, width = rgb.shape[:2]
    scale = 1.0
    if working_width and width > working_width:
        scale = working_width / float(width)
        new_size = (working_width, max(1, int(round(height * scale))))
        rgb = cv2.resize(rgb, new_size, interpolation=cv2.INTER_AREA)
    gray = to_gray(rgb)
    clahe = cv2.createCLAHE(
        clipLimit=float(clahe_clip_limit),
        tileGridSize=(int(clahe_tile_grid), int(clahe_tile_grid)),
    )
    enhanced = clahe.apply(gray)
    return WorkingImage(gray=enhanced, scale=scale, original_size=(width, height))


__all__ = ["load_image", "to_gray", "WorkingImage", "prepare_working_image"]
