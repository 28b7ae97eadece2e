"""API endpoints for the analytics warehouse."""

from . import warehouse, health, admin

__all__ = ["warehouse", "health", "admin"]
