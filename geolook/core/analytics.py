# geolook/core/analytics.py
"""Range, correlation and comparison queries over historical readings.

Everything here is a pure function of the reading snapshot it is given:
results are built fully in memory and returned, so an abandoned query
leaves nothing behind.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np

from .aggregator import IntervalAggregator, interval_width, split_by_sensor
from .correlation import (
    MAX_COMPARISON_SERIES,
    CorrelationResult,
    IntersectionPoint,
    describe,
    find_intersections,
    join_series,
    summarize,
)
from .errors import InvalidInputError
from .models import Bucket, Reading
from .sensor_catalog import get_sensor, require_known
from .value_filter import NO_FILTER, ValueFilter

logger = logging.getLogger(__name__)

Fetch = Callable[[datetime, datetime], Iterable[Reading]]


def _check_window(start: datetime, end: datetime, field_name: str = "from_timestamp") -> None:
    if start >= end:
        raise InvalidInputError("From date must be before To date", field=field_name)


def _in_window(readings: Iterable[Reading], start: datetime, end: datetime) -> Iterator[Reading]:
    for reading in readings:
        if start <= reading.timestamp <= end:
            yield reading


@dataclass(frozen=True)
class SeriesStats:
    count: int = 0
    mean: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def to_dict(self) -> dict:
        return {"count": self.count, "average": self.mean, "min": self.minimum, "max": self.maximum}


def series_stats(buckets: Sequence[Bucket]) -> SeriesStats:
    if not buckets:
        return SeriesStats()
    values = np.fromiter((bucket.average for bucket in buckets), dtype=float, count=len(buckets))
    return SeriesStats(
        count=len(buckets),
        mean=float(values.mean()),
        minimum=float(values.min()),
        maximum=float(values.max()),
    )


def _date_range(start: Optional[datetime], end: Optional[datetime]) -> dict:
    if start is None or end is None:
        return {"from": None, "to": None, "durationDays": 0, "durationHours": 0}
    duration = end - start
    return {
        "from": start.isoformat(),
        "to": end.isoformat(),
        "durationDays": duration.days,
        "durationHours": duration.seconds // 3600,
    }


# ==================== Range query ====================

@dataclass(frozen=True)
class RangeQuery:
    from_timestamp: datetime
    to_timestamp: datetime
    interval_minutes: float
    sensor_types: Sequence[str]

    def validate(self) -> None:
        _check_window(self.from_timestamp, self.to_timestamp)
        interval_width(self.interval_minutes)
        require_known(self.sensor_types)


@dataclass
class RangeResult:
    series: Dict[str, List[Bucket]]
    stats: Dict[str, SeriesStats]
    total_records: int
    processed_records: int
    covered_from: Optional[datetime]
    covered_to: Optional[datetime]
    interval_minutes: float

    def to_dict(self) -> dict:
        return {
            "series": {key: [b.to_dict() for b in buckets] for key, buckets in self.series.items()},
            "stats": {key: stats.to_dict() for key, stats in self.stats.items()},
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "dataPoints": sum(len(buckets) for buckets in self.series.values()),
            "intervalMinutes": self.interval_minutes,
            "dateRange": _date_range(self.covered_from, self.covered_to),
        }


def run_range_query(readings: Iterable[Reading], query: RangeQuery,
                    value_filter: ValueFilter = NO_FILTER) -> RangeResult:
    query.validate()
    sensors = require_known(query.sensor_types)
    aggregator = IntervalAggregator(query.interval_minutes, sensors)
    buckets = aggregator.iter_buckets(_in_window(readings, query.from_timestamp, query.to_timestamp))
    series = {key: value_filter.apply(values) for key, values in split_by_sensor(buckets, sensors).items()}
    return RangeResult(
        series=series,
        stats={key: series_stats(values) for key, values in series.items()},
        total_records=aggregator.total_records,
        processed_records=aggregator.processed_records,
        covered_from=aggregator.first_timestamp,
        covered_to=aggregator.last_timestamp,
        interval_minutes=query.interval_minutes,
    )


# ==================== Correlation query ====================

@dataclass(frozen=True)
class CorrelationQuery:
    sensor_a: str
    sensor_b: str
    from_timestamp: datetime
    to_timestamp: datetime
    interval_minutes: float = 5
    filter_a: ValueFilter = NO_FILTER
    filter_b: ValueFilter = NO_FILTER

    def validate(self) -> None:
        get_sensor(self.sensor_a, "sensor_a")
        get_sensor(self.sensor_b, "sensor_b")
        _check_window(self.from_timestamp, self.to_timestamp)
        interval_width(self.interval_minutes)


@dataclass
class CorrelationReport:
    result: CorrelationResult
    series_a: List[Bucket]
    series_b: List[Bucket]
    total_records: int
    covered_from: Optional[datetime] = None
    covered_to: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = self.result.to_dict()
        data.update({
            "correlation": self.result.coefficient,
            "summary": summarize(self.result),
            "seriesA": [b.to_dict() for b in self.series_a],
            "seriesB": [b.to_dict() for b in self.series_b],
            "totalRecords": self.total_records,
            "dateRange": _date_range(self.covered_from, self.covered_to),
        })
        return data


def run_correlation_query(readings: Iterable[Reading], query: CorrelationQuery) -> CorrelationReport:
    """Bucket both sensors on one anchor, filter each series, then correlate the joined intervals."""
    query.validate()
    sensors = [query.sensor_a] if query.sensor_a == query.sensor_b else [query.sensor_a, query.sensor_b]
    aggregator = IntervalAggregator(query.interval_minutes, sensors)
    window = _in_window(readings, query.from_timestamp, query.to_timestamp)
    by_sensor = split_by_sensor(aggregator.iter_buckets(window), sensors)

    series_a = query.filter_a.apply(by_sensor[query.sensor_a])
    series_b = query.filter_b.apply(by_sensor[query.sensor_b])
    result = describe(query.sensor_a, query.sensor_b, join_series(series_a, series_b))
    logger.info(
        "Correlation %s/%s: r=%.3f over %s intervals",
        query.sensor_a, query.sensor_b, result.coefficient, result.pair_count,
    )
    return CorrelationReport(
        result=result,
        series_a=series_a,
        series_b=series_b,
        total_records=aggregator.total_records,
        covered_from=aggregator.first_timestamp,
        covered_to=aggregator.last_timestamp,
    )


# ==================== Comparison query ====================

@dataclass(frozen=True)
class ComparisonRange:
    label: str
    from_timestamp: datetime
    to_timestamp: datetime


@dataclass(frozen=True)
class ComparisonQuery:
    sensor_type: str
    ranges: Sequence[ComparisonRange]
    interval_minutes: float = 5
    value_filter: ValueFilter = NO_FILTER

    def validate(self) -> None:
        get_sensor(self.sensor_type)
        interval_width(self.interval_minutes)
        if not self.ranges:
            raise InvalidInputError("At least one comparison range is required", field="ranges")
        if len(self.ranges) > MAX_COMPARISON_SERIES:
            raise InvalidInputError(
                f"At most {MAX_COMPARISON_SERIES} comparison ranges are allowed", field="ranges"
            )
        for item in self.ranges:
            if not item.label.strip():
                raise InvalidInputError("Each comparison range needs a label", field="label")
            _check_window(item.from_timestamp, item.to_timestamp, "ranges")


@dataclass
class ComparisonSeries:
    label: str
    from_timestamp: datetime
    to_timestamp: datetime
    buckets: List[Bucket]
    original_count: int
    stats: SeriesStats = field(default_factory=SeriesStats)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "from": self.from_timestamp.isoformat(),
            "to": self.to_timestamp.isoformat(),
            "data": [b.to_dict() for b in self.buckets],
            "originalDataLength": self.original_count,
            "stats": self.stats.to_dict(),
        }


@dataclass
class ComparisonReport:
    sensor_type: str
    series: List[ComparisonSeries]
    intersections: List[IntersectionPoint]

    def to_dict(self) -> dict:
        return {
            "sensorType": self.sensor_type,
            "series": [s.to_dict() for s in self.series],
            "intersections": [p.to_dict() for p in self.intersections],
        }


def run_comparison_query(fetch: Fetch, query: ComparisonQuery) -> ComparisonReport:
    """Overlay one sensor across several date ranges; each range keeps its own bucket anchor."""
    query.validate()
    series = []
    for item in query.ranges:
        aggregator = IntervalAggregator(query.interval_minutes, [query.sensor_type])
        window = _in_window(fetch(item.from_timestamp, item.to_timestamp), item.from_timestamp, item.to_timestamp)
        buckets = list(aggregator.iter_buckets(window))
        kept = query.value_filter.apply(buckets)
        series.append(ComparisonSeries(
            label=item.label,
            from_timestamp=item.from_timestamp,
            to_timestamp=item.to_timestamp,
            buckets=kept,
            original_count=len(buckets),
            stats=series_stats(kept),
        ))
    intersections = find_intersections(
        [[b.average for b in s.buckets] for s in series],
        [s.label for s in series],
    )
    return ComparisonReport(sensor_type=query.sensor_type, series=series, intersections=intersections)


# ==================== Async facade ====================

class AnalyticsService:
    """Runs queries against a reading store off the event loop, with a timeout."""

    def __init__(self, store, timeout: float = 30.0):
        self.store = store
        self.timeout = timeout

    async def _run(self, fn, *args):
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)

    def _range_sync(self, query: RangeQuery, value_filter: ValueFilter) -> RangeResult:
        query.validate()
        readings = self.store.fetch(query.from_timestamp, query.to_timestamp)
        return run_range_query(readings, query, value_filter)

    def _correlation_sync(self, query: CorrelationQuery) -> CorrelationReport:
        query.validate()
        readings = self.store.fetch(query.from_timestamp, query.to_timestamp)
        return run_correlation_query(readings, query)

    async def range(self, query: RangeQuery, value_filter: ValueFilter = NO_FILTER) -> RangeResult:
        return await self._run(self._range_sync, query, value_filter)

    async def correlation(self, query: CorrelationQuery) -> CorrelationReport:
        return await self._run(self._correlation_sync, query)

    async def comparison(self, query: ComparisonQuery) -> ComparisonReport:
        return await self._run(run_comparison_query, self.store.fetch, query)
