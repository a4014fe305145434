"""
Pytest configuration and global fixtures.
"""
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


def draw_plate(width=640, height=480, radius=150, background=30, plate=230):
    """Bright filled disk centred on a dark table."""
    image = np.full((height, width, 3), background, dtype=np.uint8)
    cv2.circle(image, (width // 2, height // 2), radius, (plate, plate, plate), -1)
    return image


def draw_bar(width=600, height=400, top_left=(80, 190), size=(200, 20), value=240):
    """Filled bright rectangle, e.g. a syringe seen from above."""
    image = np.full((height, width, 3), 20, dtype=np.uint8)
    x, y = top_left
    w, h = size
    cv2.rectangle(image, (x, y), (x + w - 1, y + h - 1), (value, value, value), -1)
    return image


@pytest.fixture
def plate_image():
    """640x480 image of a 150 px radius plate in the centre."""
    return draw_plate()


@pytest.fixture
def blank_image():
    """Featureless gray frame."""
    return np.full((480, 640, 3), 40, dtype=np.uint8)


@pytest.fixture
def syringe_image():
    """600x400 image with a 200x20 px bar in the left half."""
    return draw_bar()


@pytest.fixture
def card_image():
    """640x480 image with a credit-card shaped rectangle in the centre."""
    return draw_bar(width=640, height=480, top_left=(213, 172), size=(214, 135))


@pytest.fixture
def temp_dir(tmp_path):
    """Provide temporary directory for test files."""
    return tmp_path


@pytest.fixture
def plate_image_path(temp_dir, plate_image):
    """Plate photo saved as PNG."""
    from PIL import Image

    img_path = temp_dir / "plate.png"
    Image.fromarray(plate_image).save(img_path)
    return img_path
