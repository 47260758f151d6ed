"""
Tests for the correlation engine

Run with: pytest tests/test_correlation.py -v
"""

import pytest

from geolook.core.correlation import (
    MAX_COMPARISON_SERIES,
    correlate,
    describe,
    find_intersections,
    join_series,
    pair_by_interval,
    pearson,
    strength_of,
    summarize,
)
from geolook.core.errors import InsufficientDataError, InvalidInputError
from geolook.core.models import Bucket


class TestCorrelate:
    def test_perfect_positive(self):
        result = describe("temperature", "VP_mbar", [(1, 2), (2, 4), (3, 6)])

        assert result.coefficient == pytest.approx(1.0)
        assert result.strength == "very strong"
        assert result.direction == "positive"
        assert result.pair_count == 3

    def test_identical_series(self):
        pairs = [(v, v) for v in (3.2, 7.9, 1.4, 5.5)]
        assert correlate(pairs) == pytest.approx(1.0)

    def test_negated_series(self):
        pairs = [(v, -v) for v in (3.2, 7.9, 1.4, 5.5)]
        assert correlate(pairs) == pytest.approx(-1.0)

    @pytest.mark.parametrize("pairs", [[], [(1.0, 2.0)]])
    def test_fewer_than_two_pairs(self, pairs):
        assert correlate(pairs) == 0.0
        with pytest.raises(InsufficientDataError):
            pearson(pairs)

    def test_constant_series_is_undefined(self):
        pairs = [(5.0, 1.0), (5.0, 2.0), (5.0, 3.0)]

        result = describe("temperature", "hum", pairs)

        assert correlate(pairs) == 0.0
        assert result.undefined
        assert result.coefficient == 0.0
        assert result.strength == "very weak or none"
        assert result.direction == "none"

    def test_large_offsets_keep_precision(self):
        pairs = [(1013.1, 1.0), (1013.2, 2.0), (1013.3, 3.0), (1013.4, 4.0)]
        assert correlate(pairs) == pytest.approx(1.0)

    def test_coefficient_stays_in_range(self):
        pairs = [(0.1 * i, 0.3 * i + 7) for i in range(50)]
        assert -1.0 <= correlate(pairs) <= 1.0


class TestLabels:
    @pytest.mark.parametrize(
        "coefficient,expected",
        [
            (0.8, "very strong"),
            (-0.85, "very strong"),
            (0.79, "strong"),
            (0.6, "strong"),
            (0.4, "moderate"),
            (0.2, "weak"),
            (0.19, "very weak or none"),
            (0.0, "very weak or none"),
        ],
    )
    def test_strength_of(self, coefficient, expected):
        assert strength_of(coefficient) == expected

    def test_summary_for_known_pair(self):
        result = describe("temperature", "hum", [(1, 3), (2, 2), (3, 1)])

        summary = summarize(result)

        assert summary["text"] == (
            "very strong negative correlation (r = -1.000) between Temperature and Humidity."
        )
        assert "inverse relationship" in summary["explanation"]

    def test_summary_explanation_is_order_independent(self):
        forward = summarize(describe("temperature", "hum", [(1, 3), (2, 2), (3, 1)]))
        reverse = summarize(describe("hum", "temperature", [(1, 3), (2, 2), (3, 1)]))

        assert forward["explanation"] == reverse["explanation"]

    def test_summary_default_explanation(self):
        summary = summarize(describe("bv", "wd", [(1, 1), (2, 2)]))
        assert "environmental interactions" in summary["explanation"]


class TestPairing:
    def test_join_series_drops_unmatched_intervals(self, base_time):
        series_a = [Bucket(base_time, "temperature", v, 1, i) for i, v in [(0, 10.0), (1, 11.0), (3, 13.0)]]
        series_b = [Bucket(base_time, "hum", v, 1, i) for i, v in [(0, 50.0), (3, 47.0), (4, 46.0)]]

        assert join_series(series_a, series_b) == [(10.0, 50.0), (13.0, 47.0)]

    def test_pair_by_interval_uses_bucket_averages(self, make_reading):
        readings = [
            make_reading(0, temperature="10", hum="50"),
            make_reading(1, temperature="12", hum="40"),
            make_reading(5, temperature="20", hum="30"),
        ]

        assert pair_by_interval(readings, "temperature", "hum", 5) == [(11.0, 45.0), (20.0, 30.0)]

    def test_pair_by_interval_skips_intervals_missing_one_sensor(self, make_reading):
        readings = [
            make_reading(0, temperature="10", hum="0"),
            make_reading(5, temperature="20", hum="30"),
        ]

        assert pair_by_interval(readings, "temperature", "hum", 5) == [(20.0, 30.0)]

    def test_pair_by_interval_rejects_unknown_sensor(self, make_reading):
        with pytest.raises(InvalidInputError) as exc_info:
            pair_by_interval([make_reading(0, temperature="1")], "temperature", "bogus", 5)
        assert exc_info.value.field == "sensor_b"


class TestIntersections:
    def test_single_crossing(self):
        points = find_intersections([[1, 3], [2, 2]])

        assert len(points) == 1
        assert points[0].x == 0.5
        assert points[0].y == 2.0
        assert points[0].to_dict() == {"x": 0.5, "y": 2.0, "datasets": [0, 1], "labels": ["Series 1", "Series 2"]}

    def test_parallel_series_never_cross(self):
        assert find_intersections([[1, 2, 3], [2, 3, 4]]) == []

    def test_every_pair_is_scanned(self):
        points = find_intersections([[0, 2], [2, 0], [1, 1]], labels=["a", "b", "c"])

        assert sorted(p.labels for p in points) == [("a", "b"), ("a", "c"), ("b", "c")]

    def test_uses_shortest_common_length(self):
        points = find_intersections([[1, 3, 0, 0], [2, 2]])
        assert [p.x for p in points] == [0.5]

    def test_too_many_series(self):
        with pytest.raises(InvalidInputError):
            find_intersections([[1, 2]] * (MAX_COMPARISON_SERIES + 1))
