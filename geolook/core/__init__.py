"""Headless monitoring core: classification, aggregation, correlation and alert rules"""

from .aggregator import IntervalAggregator, aggregate
from .alert_engine import AlertHistory, AlertRuleEngine
from .analytics import AnalyticsService, ComparisonQuery, CorrelationQuery, RangeQuery
from .correlation import correlate, describe, find_intersections
from .errors import ConcurrencyConflictError, GeolookError, InsufficientDataError, InvalidInputError
from .models import AlertEvent, AlertLevel, AlertRule, Bucket, Condition, Reading, SafetyTier
from .safety import classify, classify_reading
from .value_filter import FilterMode, ValueFilter, filter_series

__all__ = [
    "AlertEvent", "AlertHistory", "AlertLevel", "AlertRule", "AlertRuleEngine", "AnalyticsService",
    "Bucket", "ComparisonQuery", "ConcurrencyConflictError", "Condition", "CorrelationQuery",
    "FilterMode", "GeolookError", "InsufficientDataError", "IntervalAggregator", "InvalidInputError",
    "RangeQuery", "Reading", "SafetyTier", "ValueFilter", "aggregate", "classify", "classify_reading",
    "correlate", "describe", "filter_series", "find_intersections",
]
