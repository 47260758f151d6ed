# geolook/core/sensor_catalog.py
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .errors import InvalidInputError


@dataclass(frozen=True)
class SensorType:
    """Static description of one station sensor."""
    key: str
    label: str
    unit: str
    color: str
    # zero means "station sent nothing" for these sensors
    zero_is_no_data: bool = False
    # advisory thresholds shown to rule authors: {"above": {...}, "below": {...}}
    recommended: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "unit": self.unit,
            "color": self.color,
            "zeroIsNoData": self.zero_is_no_data,
            "recommended": self.recommended,
        }


def _rec(above_warning, above_danger, below_warning, below_danger) -> Dict[str, Dict[str, float]]:
    return {
        "above": {"warning": above_warning, "danger": above_danger},
        "below": {"warning": below_warning, "danger": below_danger},
    }


SENSORS: List[SensorType] = [
    SensorType("temperature", "Temperature", "°C", "#FF6B6B",
               recommended=_rec(35, 40, 5, 0)),
    SensorType("hum", "Humidity", "%", "#4ECDC4", zero_is_no_data=True,
               recommended=_rec(80, 90, 20, 10)),
    SensorType("ws_2", "Wind Speed", "m/s", "#45B7D1",
               recommended=_rec(15, 25, 2, 1)),
    SensorType("wd", "Wind Direction", "°", "#96CEB4",
               recommended=_rec(300, 350, 30, 10)),
    SensorType("press_h", "Atmospheric Pressure", "hPa", "#FECA57", zero_is_no_data=True,
               recommended=_rec(1050, 1070, 980, 960)),
    SensorType("curr_rain", "Current Rainfall", "mm", "#54A0FF", zero_is_no_data=True,
               recommended=_rec(10, 20, 1, 0)),
    SensorType("max_WS", "Maximum Wind Speed", "m/s", "#5F27CD",
               recommended=_rec(20, 30, 3, 1)),
    SensorType("VP_mbar", "Vapor Pressure", "mbar", "#00D2D3", zero_is_no_data=True,
               recommended=_rec(25, 30, 5, 2)),
    SensorType("tilt_NS", "North-South Tilt", "°", "#FF9FF3",
               recommended=_rec(30, 45, -30, -45)),
    SensorType("tilt_WE", "West-East Tilt", "°", "#F368E0",
               recommended=_rec(30, 45, -30, -45)),
    SensorType("Strike", "Lightning Strike", "count", "#FF9F43",
               recommended=_rec(1, 5, -1, -5)),
    SensorType("bv", "Battery Voltage", "V", "#EE5253", zero_is_no_data=True,
               recommended=_rec(14.5, 15, 11.5, 11)),
]

CATALOG: Dict[str, SensorType] = {sensor.key: sensor for sensor in SENSORS}

# reading document keys that are metadata, not sensor channels
METADATA_KEYS = frozenset({"ts_server", "createdAt", "_id", "updatedAt", "__v"})


def is_known(key: str) -> bool:
    return key in CATALOG


def get_sensor(key: str, field_name: str = "sensor_type") -> SensorType:
    try:
        return CATALOG[key]
    except (KeyError, TypeError):
        raise InvalidInputError(f"Unknown sensor type: {key}", field=field_name) from None


def require_known(keys: Iterable[str], field_name: str = "sensor_types") -> List[str]:
    """Validate a list of sensor keys, preserving order and dropping duplicates."""
    seen: List[str] = []
    for key in keys:
        get_sensor(key, field_name)
        if key not in seen:
            seen.append(key)
    if not seen:
        raise InvalidInputError("At least one sensor type is required", field=field_name)
    return seen


def label_for(key: str) -> str:
    sensor = CATALOG.get(key)
    return sensor.label if sensor else key


def unit_for(key: str) -> str:
    sensor = CATALOG.get(key)
    return sensor.unit if sensor else ""
