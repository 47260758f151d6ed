"""
Shared fixtures for the Geolook test suite.

API tests swap the module-level stores in ``main`` for fresh in-memory ones,
so nothing here needs InfluxDB, PostgreSQL or an MQTT broker.
"""

import os

# Keep optional integrations off regardless of the developer's .env
for _var in ("MQTT_BROKER", "INFLUX_URL", "PG_HOST", "LLM_API_KEY", "EMAIL_PASSWORD"):
    os.environ[_var] = ""

from datetime import datetime, timedelta, timezone

import pytest

from geolook.core.alert_engine import AlertHistory, AlertRuleEngine
from geolook.core.analytics import AnalyticsService
from geolook.core.models import AlertRule, Condition, Reading
from geolook.reading_store import MemoryReadingStore
from geolook.rule_store import MemoryRuleStore

BASE_TIME = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_reading(base_time):
    """Build a Reading ``minutes`` after base_time with the given sensor values."""

    def _make(minutes=0.0, **values):
        return Reading(timestamp=base_time + timedelta(minutes=minutes), values=values)

    return _make


@pytest.fixture
def make_rule():
    def _make(rule_id="rule-1", sensor_type="temperature", condition=Condition.ABOVE,
              threshold=40.0, cooldown_minutes=5, **kwargs):
        return AlertRule(
            id=rule_id,
            sensor_type=sensor_type,
            condition=condition,
            threshold=threshold,
            cooldown_minutes=cooldown_minutes,
            **kwargs,
        )

    return _make


@pytest.fixture
def app_state(monkeypatch):
    """``main`` with fresh in-memory stores and notifications switched off."""
    import main

    store = MemoryReadingStore(1000)
    rules = MemoryRuleStore()
    monkeypatch.setattr(main, "reading_store", store)
    monkeypatch.setattr(main, "rule_store", rules)
    monkeypatch.setattr(main, "engine", AlertRuleEngine(on_fire=rules.save_last_triggered))
    monkeypatch.setattr(main, "history", AlertHistory(100))
    monkeypatch.setattr(main, "analytics", AnalyticsService(store, timeout=5))
    monkeypatch.setattr(main, "event_loop", None)
    monkeypatch.setattr(main.llm_client, "api_key", None)
    monkeypatch.setattr(main.email_notifier, "password", None)
    monkeypatch.setattr(main.manager, "active_connections", [])
    return main


@pytest.fixture
def test_client(app_state):
    """Provide a test client for API tests."""
    from fastapi.testclient import TestClient

    return TestClient(app_state.app)
