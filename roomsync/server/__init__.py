"""HTTP server for room synchronization."""

from .app import create_app

__all__ = ["create_app"]
