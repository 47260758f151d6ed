# geolook/core/value_filter.py
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from .models import Bucket, parse_value

T = TypeVar("T")


class FilterMode(Enum):
    NONE = "none"
    BETWEEN = "between"
    GREATER = "greater"
    LESS = "less"

    @classmethod
    def parse(cls, value: Any) -> "FilterMode":
        if isinstance(value, FilterMode):
            return value
        if value is None or str(value).strip() == "":
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            # unknown modes from the UI leave the series untouched
            return cls.NONE


def _bucket_value(point: Any) -> Optional[float]:
    if isinstance(point, Bucket):
        return point.average
    return parse_value(point)


@dataclass(frozen=True)
class ValueFilter:
    """Post-hoc range filter over an aggregated series.

    Missing bounds never reject input: they just disable that side of the
    comparison, so half-filled forms keep the pipeline running.
    """
    mode: FilterMode = FilterMode.NONE
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    @classmethod
    def build(cls, mode: Any = None, min_value: Any = None, max_value: Any = None) -> "ValueFilter":
        return cls(FilterMode.parse(mode), parse_value(min_value), parse_value(max_value))

    @property
    def is_active(self) -> bool:
        if self.mode is FilterMode.BETWEEN:
            return self.min_value is not None or self.max_value is not None
        if self.mode is FilterMode.GREATER:
            return self.min_value is not None
        if self.mode is FilterMode.LESS:
            return self.max_value is not None
        return False

    def accepts(self, value: Optional[float]) -> bool:
        if not self.is_active:
            return True
        if value is None:
            return False
        if self.mode in (FilterMode.BETWEEN, FilterMode.GREATER) and self.min_value is not None:
            if value < self.min_value:
                return False
        if self.mode in (FilterMode.BETWEEN, FilterMode.LESS) and self.max_value is not None:
            if value > self.max_value:
                return False
        return True

    def apply(self, series: Sequence[T], value_of: Callable[[T], Optional[float]] = _bucket_value) -> List[T]:
        if not self.is_active:
            return list(series)
        return [point for point in series if self.accepts(value_of(point))]

    def to_dict(self) -> dict:
        return {"filterType": self.mode.value, "minValue": self.min_value, "maxValue": self.max_value}


NO_FILTER = ValueFilter()


def filter_series(series: Sequence[T], mode: Any = FilterMode.NONE,
                  min_value: Any = None, max_value: Any = None) -> List[T]:
    return ValueFilter.build(mode, min_value, max_value).apply(series)
