"""Core primitives shared by the warehouse services."""

from .buckets import bucket_starts, normalize, truncate
from .clock import Clock, ManualClock, SystemClock

__all__ = [
    "bucket_starts",
    "normalize",
    "truncate",
    "Clock",
    "ManualClock",
    "SystemClock",
]
