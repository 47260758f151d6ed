# geolook/core/aggregator.py
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .errors import InvalidInputError
from .models import Bucket, Reading
from .sensor_catalog import require_known

logger = logging.getLogger(__name__)


def interval_width(interval_minutes) -> timedelta:
    try:
        minutes = float(interval_minutes)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid interval: {interval_minutes}", field="interval_minutes") from None
    if minutes <= 0:
        raise InvalidInputError("Interval must be greater than zero minutes", field="interval_minutes")
    return timedelta(minutes=minutes)


class IntervalAggregator:
    """Buckets an ascending stream of readings into fixed-width intervals.

    Buckets are anchored to the first reading seen, not to wall-clock
    boundaries, so bucket 0 is never empty. Only the open bucket is held in
    memory; it is emitted as soon as a reading for a later bucket arrives.

    After iterating, ``total_records``, ``processed_records``,
    ``first_timestamp`` and ``last_timestamp`` describe what was consumed.
    """

    def __init__(self, interval_minutes, sensor_types: Iterable[str],
                 anchor: Optional[datetime] = None):
        self.width = interval_width(interval_minutes)
        self.sensor_types: List[str] = require_known(sensor_types)
        self.anchor = anchor
        self.total_records = 0
        self.processed_records = 0
        self.first_timestamp: Optional[datetime] = None
        self.last_timestamp: Optional[datetime] = None

    def bucket_index(self, timestamp: datetime) -> int:
        return int((timestamp - self.anchor) // self.width)

    def iter_buckets(self, readings: Iterable[Reading]) -> Iterator[Bucket]:
        current_index: Optional[int] = None
        sums: Dict[str, float] = {}
        counts: Dict[str, int] = {}

        for reading in readings:
            ts = reading.timestamp
            if self.last_timestamp is not None and ts < self.last_timestamp:
                raise InvalidInputError(
                    f"Readings must be sorted ascending by timestamp ({ts.isoformat()} "
                    f"after {self.last_timestamp.isoformat()})",
                    field="timestamp",
                )
            if self.anchor is None:
                self.anchor = ts
            if self.first_timestamp is None:
                self.first_timestamp = ts
            self.last_timestamp = ts
            self.total_records += 1

            index = self.bucket_index(ts)
            if index < 0:
                raise InvalidInputError("Reading precedes the bucket anchor", field="timestamp")
            if current_index is not None and index != current_index:
                yield from self._emit(current_index, sums, counts)
                sums, counts = {}, {}
            current_index = index

            contributed = False
            for sensor in self.sensor_types:
                value = reading.valid_value(sensor)
                if value is None:
                    continue
                sums[sensor] = sums.get(sensor, 0.0) + value
                counts[sensor] = counts.get(sensor, 0) + 1
                contributed = True
            if contributed:
                self.processed_records += 1

        if current_index is not None:
            yield from self._emit(current_index, sums, counts)

    def _emit(self, index: int, sums: Dict[str, float], counts: Dict[str, int]) -> Iterator[Bucket]:
        start = self.anchor + self.width * index
        for sensor in self.sensor_types:
            count = counts.get(sensor, 0)
            if count:
                yield Bucket(
                    bucket_start=start,
                    sensor_type=sensor,
                    average=sums[sensor] / count,
                    sample_count=count,
                    interval_index=index,
                )


def aggregate(readings: Iterable[Reading], interval_minutes, sensor_types: Iterable[str]) -> List[Bucket]:
    """Average readings per sensor per interval; result ordered by time then sensor."""
    aggregator = IntervalAggregator(interval_minutes, sensor_types)
    buckets = list(aggregator.iter_buckets(readings))
    logger.debug("Aggregated %s readings into %s buckets", aggregator.total_records, len(buckets))
    return buckets


def split_by_sensor(buckets: Iterable[Bucket], sensor_types: Sequence[str]) -> Dict[str, List[Bucket]]:
    series: Dict[str, List[Bucket]] = {sensor: [] for sensor in sensor_types}
    for bucket in buckets:
        series.setdefault(bucket.sensor_type, []).append(bucket)
    return series
