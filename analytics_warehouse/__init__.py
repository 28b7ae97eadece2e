"""In-memory analytics warehouse: multi-granularity metric aggregates."""

__version__ = "1.0.0"
