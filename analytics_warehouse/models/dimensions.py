"""Dimension sets: the tag pairs that split a metric bucket into rows."""

import math
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from .errors import ValidationError

DimensionValue = Union[str, int, float]


class DimensionSet:
    """Immutable, hashable set of (key, value) pairs sorted by key.

    Two sets are equal when they carry the same keys with equal values,
    regardless of the order the producer supplied them in. Values are
    restricted to strings and numbers.
    """

    __slots__ = ("_pairs", "_hash")

    def __init__(self, pairs: Tuple[Tuple[str, DimensionValue], ...] = ()):
        self._pairs = tuple(sorted(pairs, key=lambda pair: pair[0]))
        self._hash = hash(self._pairs)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "DimensionSet":
        """Build a set from a producer mapping, validating every pair."""
        if mapping is None:
            return EMPTY_DIMENSIONS
        if isinstance(mapping, DimensionSet):
            return mapping
        if not isinstance(mapping, Mapping):
            raise ValidationError(
                f"Dimensions must be a mapping, got {type(mapping).__name__}"
            )

        pairs = []
        for key, value in mapping.items():
            if not isinstance(key, str) or not key:
                raise ValidationError(f"Dimension keys must be non-empty strings: {key!r}")
            # bool is an int subclass
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                raise ValidationError(
                    f"Dimension '{key}' has unsupported value type "
                    f"{type(value).__name__}"
                )
            if isinstance(value, float) and not math.isfinite(value):
                raise ValidationError(f"Dimension '{key}' must be finite")
            pairs.append((key, value))
        return cls(tuple(pairs))

    @property
    def pairs(self) -> Tuple[Tuple[str, DimensionValue], ...]:
        return self._pairs

    def keys(self) -> Tuple[str, ...]:
        return tuple(key for key, _ in self._pairs)

    def get(self, key: str, default: Any = None) -> Any:
        for pair_key, value in self._pairs:
            if pair_key == key:
                return value
        return default

    def matches(self, dimension_filter: Optional["DimensionSet"]) -> bool:
        """True when every filter pair is present here with an equal value."""
        if not dimension_filter:
            return True
        own = dict(self._pairs)
        for key, value in dimension_filter.pairs:
            if key not in own or own[key] != value:
                return False
        return True

    def to_dict(self) -> Dict[str, DimensionValue]:
        return dict(self._pairs)

    def __iter__(self) -> Iterator[Tuple[str, DimensionValue]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __bool__(self) -> bool:
        return bool(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DimensionSet):
            return NotImplemented
        return self._pairs == other._pairs

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        return f"DimensionSet({self.to_dict()!r})"


EMPTY_DIMENSIONS = DimensionSet()
