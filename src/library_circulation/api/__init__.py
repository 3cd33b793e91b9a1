"""HTTP API for the library circulation server."""

from .app import create_app

__all__ = ["create_app"]
