"""ACER Music file storage core."""

__version__ = '0.1.0'
