"""Pre-flight checks on a captured photo before it is sent for estimation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple, Union

import cv2
import numpy as np

from .image import load_image, to_gray
from .types import ImageInput


@dataclass(frozen=True)
class ImageValid:
    brightness: float
    sharpness: float
    resolution: Tuple[int, int]


@dataclass(frozen=True)
class ImageInvalid:
    issues: List[str]


ImageValidation = Union[ImageValid, ImageInvalid]


def image_brightness(rgb: np.ndarray) -> float:
    """Mean luminance (0-255) using ITU-R BT.601 weights."""
    weights = np.array([0.299, 0.587, 0.114], dtype=np.float64)
    return float((rgb.astype(np.float64) @ weights).mean())


def image_sharpness(rgb: np.ndarray) -> float:
    """Variance of the Laplacian; low values mean a blurry capture."""
    return float(cv2.Laplacian(to_gray(rgb), cv2.CV_64F).var())


def validate_image(
    image: ImageInput,
    min_width: int = 1920,
    min_height: int = 1080,
    min_brightness: float = 40.0,
    max_brightness: float = 220.0,
    min_sharpness: float = 100.0,
) -> ImageValidation:
    rgb = load_image(image)
    height, width = rgb.shape[:2]
    issues: List[str] = []

    if width < min_width or height < min_height:
        issues.append(
            f"Resolution too low: {width}x{height} (minimum {min_width}x{min_height})"
        )

    brightness = image_brightness(rgb)
    if brightness < min_brightness:
        issues.append("Image is too dark - try better lighting")
    elif brightness > max_brightness:
        issues.append("Image is overexposed - reduce lighting")

    sharpness = image_sharpness(rgb)
    if sharpness < min_sharpness:
        issues.append("Image is blurry - hold the camera steady")

    if issues:
        return ImageInvalid(issues=issues)
    return ImageValid(brightness=brightness, sharpness=sharpness, resolution=(width, height))


def has_reference_object_hint(
    image: ImageInput,
    bright_threshold: int = 200,
    min_ratio: float = 0.02,
    max_ratio: float = 0.15,
) -> bool:
    """Cheap check for a bright object (e.g. a white syringe) in the frame."""
    rgb = load_image(image)
    bright = np.all(rgb > bright_threshold, axis=2)
    ratio = float(bright.mean()) if bright.size else 0.0
    return min_ratio <= ratio <= max_ratio


__all__ = [
    "ImageInvalid",
    "ImageValid",
    "ImageValidation",
    "has_reference_object_hint",
    "image_brightness",
    "image_sharpness",
    "validate_image",
]
