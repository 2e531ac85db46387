"""HTTP surface for registering and removing stock checks."""

from .app import create_app

__all__ = ["create_app"]
