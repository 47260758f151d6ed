"""
Tests for threshold rules, cooldown handling and alert history

Run with: pytest tests/test_alert_engine.py -v
"""

import threading
from datetime import timedelta

import pytest

from geolook.core.alert_engine import AlertHistory, AlertRuleEngine, in_cooldown
from geolook.core.errors import ConcurrencyConflictError
from geolook.core.models import AlertEvent, AlertLevel, Condition


class TestRuleEvaluation:
    def test_warning_then_suppressed_by_cooldown(self, make_rule, make_reading, base_time):
        """45 then 46 one minute later against ABOVE 40 / 5 min"""
        engine = AlertRuleEngine()
        rule = make_rule(threshold=40, cooldown_minutes=5)

        first = engine.evaluate(rule, make_reading(0, temperature="45"), now=base_time)
        second = engine.evaluate(rule, make_reading(1, temperature="46"), now=base_time + timedelta(minutes=1))

        assert first is not None
        assert first.level is AlertLevel.WARNING
        assert first.message == "Temperature is 45.00°C, above threshold 40°C (warning range)"
        assert first.id == f"rule-1_{int(base_time.timestamp())}"
        assert second is None
        assert rule.last_triggered == base_time

    @pytest.mark.parametrize("gap_minutes,expected_events", [(2, 1), (10, 2), (5, 2)])
    def test_cooldown_window(self, make_rule, make_reading, base_time, gap_minutes, expected_events):
        engine = AlertRuleEngine()
        rule = make_rule(cooldown_minutes=5)

        events = [
            engine.evaluate(rule, make_reading(minute, temperature="45"), now=base_time + timedelta(minutes=minute))
            for minute in (0, gap_minutes)
        ]

        assert len([e for e in events if e]) == expected_events

    def test_below_condition_and_critical_level(self, make_rule, make_reading, base_time):
        engine = AlertRuleEngine()
        rule = make_rule(sensor_type="bv", condition=Condition.BELOW, threshold=11.5)

        event = engine.evaluate(rule, make_reading(0, bv="9.2"), now=base_time)

        assert event.level is AlertLevel.CRITICAL
        assert event.message == "Battery Voltage is 9.20V, below threshold 11.5V (critical range)"

    def test_safe_value_fires_as_notice(self, make_rule, make_reading, base_time):
        engine = AlertRuleEngine()
        rule = make_rule(threshold=30)

        event = engine.evaluate(rule, make_reading(0, temperature="35"), now=base_time)

        assert event.level is AlertLevel.NOTICE

    def test_threshold_itself_does_not_fire(self, make_rule, make_reading, base_time):
        engine = AlertRuleEngine()
        assert engine.evaluate(make_rule(threshold=40), make_reading(0, temperature="40"), now=base_time) is None

    def test_inactive_rule_and_missing_value(self, make_rule, make_reading, base_time):
        engine = AlertRuleEngine()

        assert engine.evaluate(make_rule(is_active=False), make_reading(0, temperature="99"), now=base_time) is None
        assert engine.evaluate(make_rule(), make_reading(0, hum="99"), now=base_time) is None
        assert engine.evaluate(make_rule(), make_reading(0, temperature=""), now=base_time) is None

    def test_evaluate_all(self, make_rule, make_reading, base_time):
        engine = AlertRuleEngine()
        rules = [
            make_rule("hot", threshold=40),
            make_rule("windy", sensor_type="ws_2", threshold=12),
            make_rule("dry", sensor_type="hum", condition=Condition.BELOW, threshold=20),
        ]

        events = engine.evaluate_all(rules, make_reading(0, temperature="45", ws_2="15", hum="60"), now=base_time)

        assert [e.rule_id for e in events] == ["hot", "windy"]
        assert all(e.timestamp == base_time for e in events)

    def test_to_dict(self, make_rule, make_reading, base_time):
        event = AlertRuleEngine().evaluate(make_rule(), make_reading(0, temperature="45.458"), now=base_time)

        data = event.to_dict()

        assert data["ruleId"] == "rule-1"
        assert data["sensorType"] == "temperature"
        assert data["value"] == 45.46
        assert data["level"] == "WARNING"
        assert data["condition"] == "ABOVE"
        assert data["threshold"] == 40.0
        assert data["timestamp"] == base_time.isoformat()


class TestPersistenceHook:
    def test_on_fire_receives_previous_value(self, make_rule, make_reading, base_time):
        calls = []
        engine = AlertRuleEngine(on_fire=lambda rule, previous: calls.append((rule.last_triggered, previous)))
        rule = make_rule()

        engine.evaluate(rule, make_reading(0, temperature="45"), now=base_time)
        later = base_time + timedelta(minutes=6)
        engine.evaluate(rule, make_reading(6, temperature="45"), now=later)

        assert calls == [(base_time, None), (later, base_time)]

    def test_conflict_cancels_the_alert(self, make_rule, make_reading, base_time):
        def conflict(rule, previous):
            raise ConcurrencyConflictError("fired elsewhere")

        engine = AlertRuleEngine(on_fire=conflict)

        assert engine.evaluate(make_rule(), make_reading(0, temperature="45"), now=base_time) is None

    def test_other_persistence_errors_still_alert(self, make_rule, make_reading, base_time):
        def broken(rule, previous):
            raise RuntimeError("database down")

        engine = AlertRuleEngine(on_fire=broken)

        assert engine.evaluate(make_rule(), make_reading(0, temperature="45"), now=base_time) is not None

    def test_failed_write_does_not_mute_the_rule(self, make_rule, make_reading, base_time):
        """The first write fails; later firings past the cooldown still alert"""
        stored = {"last_triggered": None}
        failures = [RuntimeError("database down")]

        def save(rule, previous):
            if failures:
                raise failures.pop()
            if stored["last_triggered"] != previous:
                raise ConcurrencyConflictError("stale", current=stored["last_triggered"], reloaded=True)
            stored["last_triggered"] = rule.last_triggered

        engine = AlertRuleEngine(on_fire=save)
        rule = make_rule(cooldown_minutes=5)

        fired = [
            engine.evaluate(rule, make_reading(m, temperature="45"), now=base_time + timedelta(minutes=m)) is not None
            for m in (0, 10, 20, 30, 40)
        ]

        assert fired == [True] * 5
        assert stored["last_triggered"] == base_time + timedelta(minutes=40)
        assert rule.last_triggered == stored["last_triggered"]

    def test_failed_write_restores_previous_value(self, make_rule, make_reading, base_time):
        def broken(rule, previous):
            raise RuntimeError("database down")

        engine = AlertRuleEngine(on_fire=broken)
        rule = make_rule(last_triggered=base_time - timedelta(hours=1))

        engine.evaluate(rule, make_reading(0, temperature="45"), now=base_time)

        assert rule.last_triggered == base_time - timedelta(hours=1)

    def test_conflict_adopts_the_stored_value(self, make_rule, make_reading, base_time):
        """Another process fired at t=0; its cooldown gates this process too"""
        stored = {"last_triggered": base_time}

        def save(rule, previous):
            if stored["last_triggered"] != previous:
                raise ConcurrencyConflictError("stale", current=stored["last_triggered"], reloaded=True)
            stored["last_triggered"] = rule.last_triggered

        engine = AlertRuleEngine(on_fire=save)
        rule = make_rule(cooldown_minutes=5)

        results = [
            engine.evaluate(rule, make_reading(m, temperature="45"), now=base_time + timedelta(minutes=m))
            for m in (1, 2, 6)
        ]

        assert [event is not None for event in results] == [False, False, True]
        assert stored["last_triggered"] == base_time + timedelta(minutes=6)

    def test_conflict_without_stored_value_restores_previous(self, make_rule, make_reading, base_time):
        def conflict(rule, previous):
            raise ConcurrencyConflictError("fired elsewhere")

        engine = AlertRuleEngine(on_fire=conflict)
        rule = make_rule()

        engine.evaluate(rule, make_reading(0, temperature="45"), now=base_time)

        assert rule.last_triggered is None


class TestConcurrency:
    def test_simultaneous_readings_fire_once(self, make_rule, make_reading, base_time):
        engine = AlertRuleEngine()
        rule = make_rule(cooldown_minutes=5)
        reading = make_reading(0, temperature="45")
        barrier = threading.Barrier(16)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            event = engine.evaluate(rule, reading, now=base_time)
            with results_lock:
                results.append(event)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len([e for e in results if e]) == 1

    def test_forget_drops_lock(self, make_rule):
        engine = AlertRuleEngine()
        lock = engine._lock_for("gone")

        engine.forget("gone")

        assert engine._lock_for("gone") is not lock

    def test_in_cooldown(self, make_rule, base_time):
        rule = make_rule(cooldown_minutes=5, last_triggered=base_time)

        assert in_cooldown(rule, base_time + timedelta(minutes=4, seconds=59))
        assert not in_cooldown(rule, base_time + timedelta(minutes=5))
        assert not in_cooldown(make_rule(), base_time)


def _event(index, level, timestamp):
    return AlertEvent(
        id=f"e{index}",
        rule_id="rule-1",
        sensor_type="temperature",
        value=45.0,
        level=level,
        message="test",
        timestamp=timestamp,
    )


class TestAlertHistory:
    def test_bounded_and_newest_first(self, base_time):
        history = AlertHistory(max_size=3)
        for i in range(5):
            history.record(_event(i, AlertLevel.WARNING, base_time + timedelta(minutes=i)))

        recent = history.recent(hours=1, now=base_time + timedelta(minutes=10))

        assert len(history) == 3
        assert [e.id for e in recent] == ["e4", "e3", "e2"]

    def test_filters(self, base_time):
        history = AlertHistory()
        history.record(_event(0, AlertLevel.CRITICAL, base_time - timedelta(hours=30)))
        history.record(_event(1, AlertLevel.CRITICAL, base_time - timedelta(hours=2)))
        history.record(_event(2, AlertLevel.WARNING, base_time - timedelta(hours=1)))
        history.record(_event(3, AlertLevel.NOTICE, base_time))

        assert [e.id for e in history.recent(24, now=base_time)] == ["e3", "e2", "e1"]
        assert [e.id for e in history.recent(24, level="critical", now=base_time)] == ["e1"]
        assert len(history.recent(24, level="all", now=base_time)) == 3
        assert [e.id for e in history.recent(48, limit=2, now=base_time)] == ["e3", "e2"]

    def test_summary(self, base_time):
        events = [
            _event(0, AlertLevel.CRITICAL, base_time),
            _event(1, AlertLevel.WARNING, base_time),
            _event(2, AlertLevel.WARNING, base_time),
        ]

        assert AlertHistory.summary(events) == {"total": 3, "critical": 1, "warning": 2, "notice": 0}
