"""Volume geometry helpers."""

from .geometry import cylinder_volume_cm3, plate_diameter_cm, plate_width_pixels

__all__ = ["cylinder_volume_cm3", "plate_diameter_cm", "plate_width_pixels"]
