"""Utility modules for the analytics warehouse."""

from .logging import setup_logging, get_logger

__all__ = [
    "setup_logging",
    "get_logger",
]
