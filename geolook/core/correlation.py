# geolook/core/correlation.py
"""Pairwise statistics between sensor streams.

Correlation is always computed on interval averages rather than raw
per-reading pairs, which evens out sensors reporting at different rates.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .aggregator import IntervalAggregator
from .errors import InsufficientDataError, InvalidInputError
from .models import Bucket, Reading
from .sensor_catalog import get_sensor, label_for

logger = logging.getLogger(__name__)

MAX_COMPARISON_SERIES = 15

STRENGTH_LEVELS = [
    (0.8, "very strong"),
    (0.6, "strong"),
    (0.4, "moderate"),
    (0.2, "weak"),
]
NO_STRENGTH = "very weak or none"

# (sensor_a, sensor_b) -> what the relationship usually means on site
EXPLANATIONS = {
    ("temperature", "hum"): (
        "Temperature and humidity typically have an inverse relationship. Warmer air can hold "
        "more moisture, so relative humidity often drops as temperature rises."
    ),
    ("ws_2", "tilt_NS"): (
        "Wind speed and tilt may correlate during strong wind events where the structure "
        "is pushed by wind force."
    ),
    ("curr_rain", "hum"): (
        "Rainfall and humidity are directly related as rain increases atmospheric moisture content."
    ),
}
DEFAULT_EXPLANATION = (
    "The relationship between these sensors may indicate environmental interactions or equipment behavior."
)


@dataclass(frozen=True)
class CorrelationResult:
    sensor_a: str
    sensor_b: str
    coefficient: float
    pair_count: int
    strength: str
    direction: str
    undefined: bool = False

    def to_dict(self) -> dict:
        return {
            "sensorA": self.sensor_a,
            "sensorB": self.sensor_b,
            "coefficient": self.coefficient,
            "pairCount": self.pair_count,
            "strength": self.strength,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class IntersectionPoint:
    x: float
    y: float
    series: Tuple[int, int]
    labels: Tuple[str, str]

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "datasets": list(self.series), "labels": list(self.labels)}


def pearson(pairs: Sequence[Tuple[float, float]]) -> float:
    """Raw Pearson r. Raises InsufficientDataError when r is undefined."""
    n = len(pairs)
    if n < 2:
        raise InsufficientDataError(f"Need at least 2 pairs, got {n}")
    data = np.asarray(pairs, dtype=float)
    x, y = data[:, 0], data[:, 1]
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        raise InsufficientDataError("Zero variance in at least one series")
    # (nΣxy − ΣxΣy) / sqrt((nΣx² − (Σx)²)(nΣy² − (Σy)²)), evaluated on
    # mean-centred values so large offsets (e.g. pressure ~1000) keep precision
    dx, dy = x - x.mean(), y - y.mean()
    denominator = np.sqrt(np.dot(dx, dx) * np.dot(dy, dy))
    if denominator == 0:
        raise InsufficientDataError("Zero variance in at least one series")
    r = np.dot(dx, dy) / denominator
    return float(np.clip(r, -1.0, 1.0))


def correlate(pairs: Sequence[Tuple[float, float]]) -> float:
    """Pearson r of the pairs, or 0.0 when it is not defined."""
    try:
        return pearson(pairs)
    except InsufficientDataError:
        return 0.0


def strength_of(coefficient: float) -> str:
    magnitude = abs(coefficient)
    for floor, name in STRENGTH_LEVELS:
        if magnitude >= floor:
            return name
    return NO_STRENGTH


def direction_of(coefficient: float) -> str:
    if coefficient > 0:
        return "positive"
    if coefficient < 0:
        return "negative"
    return "none"


def describe(sensor_a: str, sensor_b: str, pairs: Sequence[Tuple[float, float]]) -> CorrelationResult:
    undefined = False
    try:
        coefficient = pearson(pairs)
    except InsufficientDataError as exc:
        logger.debug("Correlation %s/%s undefined: %s", sensor_a, sensor_b, exc)
        coefficient, undefined = 0.0, True
    return CorrelationResult(
        sensor_a=sensor_a,
        sensor_b=sensor_b,
        coefficient=coefficient,
        pair_count=len(pairs),
        strength=strength_of(coefficient),
        direction=direction_of(coefficient),
        undefined=undefined,
    )


def summarize(result: CorrelationResult) -> Dict[str, str]:
    explanation = EXPLANATIONS.get((result.sensor_a, result.sensor_b)) \
        or EXPLANATIONS.get((result.sensor_b, result.sensor_a)) \
        or DEFAULT_EXPLANATION
    text = (
        f"{result.strength} {result.direction} correlation (r = {result.coefficient:.3f}) "
        f"between {label_for(result.sensor_a)} and {label_for(result.sensor_b)}."
    )
    return {"text": text, "explanation": explanation}


def join_series(series_a: Iterable[Bucket], series_b: Iterable[Bucket]) -> List[Tuple[float, float]]:
    """Pair up two bucket series on their interval index; unmatched buckets are dropped."""
    by_index = {bucket.interval_index: bucket.average for bucket in series_b}
    return [
        (bucket.average, by_index[bucket.interval_index])
        for bucket in series_a
        if bucket.interval_index in by_index
    ]


def pair_by_interval(readings: Iterable[Reading], sensor_a: str, sensor_b: str, interval_minutes,
                     anchor: Optional[datetime] = None) -> List[Tuple[float, float]]:
    """Bucket both sensors on one shared anchor and pair their per-interval averages."""
    get_sensor(sensor_a, "sensor_a")
    get_sensor(sensor_b, "sensor_b")
    aggregator = IntervalAggregator(interval_minutes, [sensor_a, sensor_b], anchor=anchor)
    series_a, series_b = [], []
    for bucket in aggregator.iter_buckets(readings):
        (series_a if bucket.sensor_type == sensor_a else series_b).append(bucket)
    if sensor_a == sensor_b:
        series_b = series_a
    return join_series(series_a, series_b)


def find_intersections(series: Sequence[Sequence[float]],
                       labels: Optional[Sequence[str]] = None) -> List[IntersectionPoint]:
    """Approximate crossing points between every pair of comparison series.

    A crossing is flagged between k and k+1 whenever the sign of the gap
    between the two series changes; it is placed at k + 0.5 with the mean of
    the four bracketing values as its height.
    """
    if len(series) > MAX_COMPARISON_SERIES:
        raise InvalidInputError(
            f"At most {MAX_COMPARISON_SERIES} series can be compared, got {len(series)}", field="series"
        )
    if labels is None:
        labels = [f"Series {i + 1}" for i in range(len(series))]
    arrays = [np.asarray(values, dtype=float) for values in series]

    points: List[IntersectionPoint] = []
    for i in range(len(arrays)):
        for j in range(i + 1, len(arrays)):
            length = min(len(arrays[i]), len(arrays[j]))
            if length < 2:
                continue
            a, b = arrays[i][:length], arrays[j][:length]
            signs = np.sign(a - b)
            for k in np.nonzero(signs[:-1] != signs[1:])[0]:
                k = int(k)
                points.append(IntersectionPoint(
                    x=k + 0.5,
                    y=float((a[k] + a[k + 1] + b[k] + b[k + 1]) / 4),
                    series=(i, j),
                    labels=(labels[i], labels[j]),
                ))
    return points
