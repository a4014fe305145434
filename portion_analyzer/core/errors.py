"""Exceptions raised by the portion analyzer."""

from __future__ import annotations


class ImageReadError(ValueError):
    """The input could not be decoded into a usable image."""


class EstimationCancelled(RuntimeError):
    """A portion estimation was cancelled or exceeded its time budget."""


__all__ = ["ImageReadError", "EstimationCancelled"]
