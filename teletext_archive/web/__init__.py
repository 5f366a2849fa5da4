"""Web application for browsing the archive."""

from .server import create_app

__all__ = ["create_app"]
