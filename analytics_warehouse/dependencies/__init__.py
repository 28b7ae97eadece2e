"""Dependencies package for the warehouse HTTP surface."""

from .services import get_warehouse, WarehouseDep

__all__ = [
    "get_warehouse",
    "WarehouseDep",
]
