# geolook/core/alert_engine.py
import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Iterable, List, Optional

from .errors import ConcurrencyConflictError
from .models import AlertEvent, AlertLevel, AlertRule, Condition, Reading, SafetyTier
from .safety import classify
from .sensor_catalog import label_for, unit_for

logger = logging.getLogger(__name__)

TIER_TO_LEVEL = {
    SafetyTier.CRITICAL: AlertLevel.CRITICAL,
    SafetyTier.WARNING: AlertLevel.WARNING,
    SafetyTier.SAFE: AlertLevel.NOTICE,
}


def condition_met(condition: Condition, value: float, threshold: float) -> bool:
    if condition is Condition.ABOVE:
        return value > threshold
    return value < threshold


def in_cooldown(rule: AlertRule, now: datetime) -> bool:
    if rule.last_triggered is None:
        return False
    return now - rule.last_triggered < timedelta(minutes=rule.cooldown_minutes)


def format_message(rule: AlertRule, value: float, level: AlertLevel) -> str:
    unit = unit_for(rule.sensor_type)
    word = "above" if rule.condition is Condition.ABOVE else "below"
    return (
        f"{label_for(rule.sensor_type)} is {value:.2f}{unit}, {word} threshold "
        f"{rule.threshold:g}{unit} ({level.value.lower()} range)"
    )


class AlertRuleEngine:
    """Evaluates threshold rules against incoming readings.

    ``last_triggered`` is the only rule field written here. The cooldown
    read-compare-write happens under a lock owned by the rule id, so two
    readings evaluated at the same time cannot both fire the same rule.

    ``on_fire(rule, previous)`` runs inside that lock to persist the new
    ``last_triggered``. Raising ConcurrencyConflictError from it cancels the
    alert and adopts the stored value; any other error keeps the alert and
    restores ``previous``.
    """

    def __init__(self, on_fire: Optional[Callable[[AlertRule, Optional[datetime]], None]] = None):
        self.on_fire = on_fire
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, rule_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(rule_id)
            if lock is None:
                lock = self._locks[rule_id] = threading.Lock()
            return lock

    def forget(self, rule_id: str) -> None:
        """Drop the lock of a rule the store has deleted."""
        with self._locks_guard:
            self._locks.pop(rule_id, None)

    def evaluate(self, rule: AlertRule, reading: Reading, now: Optional[datetime] = None) -> Optional[AlertEvent]:
        if not rule.is_active:
            return None
        value = reading.value(rule.sensor_type)
        if value is None:
            return None
        if not condition_met(rule.condition, value, rule.threshold):
            return None
        if now is None:
            now = datetime.now(timezone.utc)

        with self._lock_for(rule.id):
            if in_cooldown(rule, now):
                logger.debug("Rule %s suppressed (cooldown %s min)", rule.id, rule.cooldown_minutes)
                return None
            previous = rule.last_triggered
            rule.last_triggered = now
            if self.on_fire:
                try:
                    self.on_fire(rule, previous)
                except ConcurrencyConflictError as exc:
                    # another process fired this rule first; its timestamp gates the cooldown
                    rule.last_triggered = exc.current if exc.reloaded else previous
                    logger.info("Rule %s already fired elsewhere: %s", rule.id, exc)
                    return None
                except Exception as exc:  # pylint: disable=broad-except
                    # keep memory equal to the stored row
                    rule.last_triggered = previous
                    logger.error("Failed to persist lastTriggered for rule %s: %s", rule.id, exc)

        level = TIER_TO_LEVEL[classify(rule.sensor_type, value)]
        event = AlertEvent(
            id=f"{rule.id}_{int(now.timestamp())}",
            rule_id=rule.id,
            sensor_type=rule.sensor_type,
            value=value,
            level=level,
            message=format_message(rule, value, level),
            timestamp=now,
            threshold=rule.threshold,
            condition=rule.condition,
        )
        logger.warning("ALERT: [%s] %s", level.value, event.message)
        return event

    def evaluate_all(self, rules: Iterable[AlertRule], reading: Reading,
                     now: Optional[datetime] = None) -> List[AlertEvent]:
        if now is None:
            now = datetime.now(timezone.utc)
        events = []
        for rule in rules:
            event = self.evaluate(rule, reading, now)
            if event:
                events.append(event)
        return events


class AlertHistory:
    """Bounded, newest-last record of fired alerts."""

    def __init__(self, max_size: int = 100):
        self._events: Deque[AlertEvent] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: AlertEvent) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, hours: float = 24, level: Optional[str] = None, limit: Optional[int] = None,
               now: Optional[datetime] = None) -> List[AlertEvent]:
        if now is None:
            now = datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=hours)
        with self._lock:
            events = [event for event in reversed(self._events) if event.timestamp > cutoff]
        if level and level.lower() != "all":
            events = [event for event in events if event.level.value == level.upper()]
        if limit is not None:
            events = events[:limit]
        return events

    @staticmethod
    def summary(events: Iterable[AlertEvent]) -> Dict[str, int]:
        counts = {"total": 0, "critical": 0, "warning": 0, "notice": 0}
        for event in events:
            counts["total"] += 1
            counts[event.level.value.lower()] += 1
        return counts
