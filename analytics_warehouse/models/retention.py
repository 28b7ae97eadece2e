"""Retention policy and sweep result models."""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List

from .aggregates import CompressionLevel
from .errors import InvalidPolicyError


@dataclass(frozen=True)
class RetentionPolicy:
    """Lifecycle thresholds for one data-type category.

    Ages are measured in days from a row's bucket start. Rows younger than
    ``archive_after_days`` are live, rows younger than ``purge_after_days``
    are archived, anything older is purged.
    """

    data_type: str
    retention_period_days: int
    archive_after_days: int
    compression_level: CompressionLevel
    purge_after_days: int
    is_active: bool = True

    def __post_init__(self):
        if self.compression_level is None:
            raise InvalidPolicyError("compression_level must not be null")
        if not isinstance(self.compression_level, CompressionLevel):
            try:
                level = CompressionLevel(str(self.compression_level).lower())
            except ValueError:
                raise InvalidPolicyError(
                    f"Unknown compression level: {self.compression_level}"
                ) from None
            object.__setattr__(self, "compression_level", level)
        self.validate()

    def validate(self) -> None:
        if not self.data_type:
            raise InvalidPolicyError("Retention policy requires a data type")
        for name in ("retention_period_days", "archive_after_days", "purge_after_days"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidPolicyError(
                    f"{name} must be a non-negative integer, got {value!r}"
                )
        if not isinstance(self.is_active, bool):
            raise InvalidPolicyError(
                f"is_active must be a boolean, got {self.is_active!r}"
            )
        if self.archive_after_days >= self.purge_after_days:
            raise InvalidPolicyError(
                f"archive_after_days ({self.archive_after_days}) must be less than "
                f"purge_after_days ({self.purge_after_days}) for '{self.data_type}'"
            )
        if self.retention_period_days > self.purge_after_days:
            raise InvalidPolicyError(
                f"retention_period_days ({self.retention_period_days}) must not "
                f"exceed purge_after_days ({self.purge_after_days}) for "
                f"'{self.data_type}'"
            )

    def with_changes(self, **changes: Any) -> "RetentionPolicy":
        """Return a validated copy with the given fields replaced."""
        allowed = {f.name for f in fields(self)} - {"data_type"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidPolicyError(
                f"Unknown policy fields: {', '.join(sorted(unknown))}"
            )
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_type": self.data_type,
            "retention_period_days": self.retention_period_days,
            "archive_after_days": self.archive_after_days,
            "compression_level": self.compression_level.value,
            "purge_after_days": self.purge_after_days,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetentionPolicy":
        return cls(
            data_type=data["data_type"],
            retention_period_days=data["retention_period_days"],
            archive_after_days=data["archive_after_days"],
            compression_level=data.get("compression_level", CompressionLevel.NONE),
            purge_after_days=data["purge_after_days"],
            is_active=data.get("is_active", True),
        )


@dataclass
class SweepSummary:
    """Outcome of one lifecycle sweep across all data types."""

    sweep: str
    processed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    rows_affected: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sweep": self.sweep,
            "processed": list(self.processed),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "rows_affected": self.rows_affected,
            "cancelled": self.cancelled,
        }
