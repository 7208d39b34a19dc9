"""Web interface for VidLearn."""

from .server import create_app

__all__ = ["create_app"]
