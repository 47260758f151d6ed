"""
Tests for post-aggregation value filtering

Run with: pytest tests/test_value_filter.py -v
"""

import pytest

from geolook.core.models import Bucket
from geolook.core.value_filter import FilterMode, ValueFilter, filter_series

VALUES = [5, 10, 15, 20, 25]


class TestFilterModes:
    def test_between_is_inclusive(self):
        assert filter_series(VALUES, "between", 10, 20) == [10, 15, 20]

    def test_greater_keeps_values_at_min(self):
        assert filter_series(VALUES, "greater", 15) == [15, 20, 25]

    def test_less_keeps_values_at_max(self):
        assert filter_series(VALUES, "less", max_value=15) == [5, 10, 15]

    def test_between_with_only_one_bound(self):
        assert filter_series(VALUES, "between", min_value=15) == [15, 20, 25]
        assert filter_series(VALUES, "between", max_value=10) == [5, 10]

    def test_none_mode_passes_everything(self):
        assert filter_series(VALUES, FilterMode.NONE, 100, 200) == VALUES


class TestMissingBounds:
    """A half-filled form never rejects the series"""

    def test_greater_without_min_is_a_no_op(self):
        assert filter_series(VALUES, "greater", max_value=1) == VALUES

    def test_blank_and_non_numeric_bounds_count_as_absent(self):
        value_filter = ValueFilter.build("between", "", "abc")

        assert not value_filter.is_active
        assert value_filter.apply(VALUES) == VALUES

    def test_string_bounds_are_parsed(self):
        assert filter_series(VALUES, "between", "10", "15.5") == [10, 15]

    def test_unknown_mode_is_ignored(self):
        assert FilterMode.parse("sideways") is FilterMode.NONE
        assert filter_series(VALUES, "sideways", 10, 20) == VALUES


class TestFilterBehaviour:
    def test_idempotent(self):
        value_filter = ValueFilter.build("between", 8, 22)

        once = value_filter.apply(VALUES)

        assert value_filter.apply(once) == once

    def test_returns_a_new_list(self):
        result = ValueFilter.build().apply(VALUES)

        assert result == VALUES
        assert result is not VALUES

    def test_missing_values_are_dropped_when_active(self):
        assert filter_series([None, 12, "x", 8], "greater", 10) == [12]

    def test_filters_buckets_on_average(self, base_time):
        buckets = [
            Bucket(base_time, "temperature", average, 1, index)
            for index, average in enumerate([12.0, 18.0, 31.0])
        ]

        kept = filter_series(buckets, "less", max_value=20)

        assert [b.average for b in kept] == [12.0, 18.0]

    def test_to_dict(self):
        assert ValueFilter.build("GREATER", "3").to_dict() == {
            "filterType": "greater",
            "minValue": 3.0,
            "maxValue": None,
        }

    @pytest.mark.parametrize("mode", ["between", "greater", "less"])
    def test_empty_series(self, mode):
        assert filter_series([], mode, 1, 2) == []
