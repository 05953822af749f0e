"""HTTP surface for the watch progress tracker."""

from .api import create_app

__all__ = ["create_app"]
