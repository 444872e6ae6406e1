"""Tagloom - qualification rule designer for member segmentation tags."""

__version__ = "0.4.0"
