"""Command-line interface for image-sorter."""

from .main import cli

__all__ = ["cli"]
