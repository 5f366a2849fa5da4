"""Teletext archive browser with a thumbnail generation pipeline."""

__version__ = "0.1.0"
