# geolook/core/models.py
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidInputError
from .sensor_catalog import CATALOG, METADATA_KEYS, get_sensor


class SafetyTier(Enum):
    SAFE = "SAFE"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertLevel(Enum):
    NOTICE = "NOTICE"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class Condition(Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"

    @classmethod
    def parse(cls, value: Any) -> "Condition":
        if isinstance(value, Condition):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidInputError(f"Unknown rule condition: {value}", field="condition") from None


def parse_value(raw: Any) -> Optional[float]:
    """Numeric view of a raw sensor field, or None when it carries no number."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_timestamp(raw: Any, field_name: str = "ts_server") -> datetime:
    """Accept datetime, ISO-8601 text or epoch seconds/milliseconds; always returns UTC-aware."""
    if isinstance(raw, datetime):
        ts = raw
    elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
        seconds = raw / 1000.0 if abs(raw) > 1e11 else float(raw)
        ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(raw, str) and raw.strip():
        try:
            ts = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            raise InvalidInputError(f"Invalid timestamp: {raw}", field=field_name) from None
    else:
        raise InvalidInputError(f"Missing timestamp in {field_name}", field=field_name)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


@dataclass(frozen=True)
class Reading:
    """One station snapshot. Never mutated after ingestion."""
    timestamp: datetime
    values: Mapping[str, Any]
    created_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Reading":
        timestamp = parse_timestamp(doc.get("ts_server"))
        created_raw = doc.get("createdAt")
        created_at = parse_timestamp(created_raw, "createdAt") if created_raw else None
        values = {k: v for k, v in doc.items() if k not in METADATA_KEYS}
        return cls(timestamp=timestamp, values=values, created_at=created_at)

    def value(self, sensor_type: str) -> Optional[float]:
        return parse_value(self.values.get(sensor_type))

    def valid_value(self, sensor_type: str) -> Optional[float]:
        """Like value(), but applies the sensor's "zero means no data" policy."""
        value = self.value(sensor_type)
        if value is None:
            return None
        sensor = CATALOG.get(sensor_type)
        if sensor is not None and sensor.zero_is_no_data and value == 0:
            return None
        return value

    def to_document(self) -> Dict[str, Any]:
        doc = dict(self.values)
        doc["ts_server"] = self.timestamp.isoformat()
        if self.created_at:
            doc["createdAt"] = self.created_at.isoformat()
        return doc


@dataclass(frozen=True)
class Bucket:
    bucket_start: datetime
    sensor_type: str
    average: float
    sample_count: int
    interval_index: int = 0

    def to_dict(self) -> dict:
        return {
            "bucketStart": self.bucket_start.isoformat(),
            "sensorType": self.sensor_type,
            "average": self.average,
            "sampleCount": self.sample_count,
            "intervalIndex": self.interval_index,
        }


@dataclass
class AlertRule:
    """User-defined threshold rule. The engine only ever writes ``last_triggered``."""
    id: str
    sensor_type: str
    condition: Condition
    threshold: float
    cooldown_minutes: int = 5
    is_active: bool = True
    last_triggered: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertRule":
        rule_id = data.get("id", data.get("_id"))
        if rule_id is None:
            raise InvalidInputError("Rule id is required", field="id")
        sensor_type = data.get("sensorType", data.get("sensor_type"))
        if sensor_type is None:
            raise InvalidInputError("Rule sensorType is required", field="sensorType")
        get_sensor(sensor_type, "sensorType")
        threshold = parse_value(data.get("threshold"))
        if threshold is None:
            raise InvalidInputError("Rule threshold must be numeric", field="threshold")
        cooldown = data.get("cooldownMinutes", data.get("cooldown_minutes", 5))
        try:
            cooldown_minutes = int(cooldown)
        except (TypeError, ValueError):
            raise InvalidInputError(f"Invalid cooldownMinutes: {cooldown}", field="cooldownMinutes") from None
        if isinstance(cooldown, bool) or cooldown_minutes < 0:
            raise InvalidInputError(f"Invalid cooldownMinutes: {cooldown}", field="cooldownMinutes")
        last = data.get("lastTriggered", data.get("last_triggered"))
        return cls(
            id=str(rule_id),
            sensor_type=sensor_type,
            condition=Condition.parse(data.get("condition", "above")),
            threshold=threshold,
            cooldown_minutes=cooldown_minutes,
            is_active=bool(data.get("isActive", data.get("is_active", True))),
            last_triggered=parse_timestamp(last, "lastTriggered") if last else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sensorType": self.sensor_type,
            "condition": self.condition.value,
            "threshold": self.threshold,
            "cooldownMinutes": self.cooldown_minutes,
            "isActive": self.is_active,
            "lastTriggered": _iso(self.last_triggered),
        }


@dataclass(frozen=True)
class AlertEvent:
    id: str
    rule_id: str
    sensor_type: str
    value: float
    level: AlertLevel
    message: str
    timestamp: datetime
    threshold: Optional[float] = None
    condition: Optional[Condition] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ruleId": self.rule_id,
            "sensorType": self.sensor_type,
            "value": round(self.value, 2),
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "threshold": self.threshold,
            "condition": self.condition.value if self.condition else None,
        }
