"""HTTP surface of the task board engine."""

from .api import create_app

__all__ = ["create_app"]
