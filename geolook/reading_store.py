# geolook/reading_store.py
import bisect
import logging
import threading
from datetime import datetime, timedelta
from typing import List, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from .core.errors import StoreUnavailableError
from .core.models import Reading, parse_value
from .core.sensor_catalog import CATALOG

logger = logging.getLogger(__name__)

MEASUREMENT = "sensor_reading"


def _timestamp(reading: Reading) -> datetime:
    return reading.timestamp


class MemoryReadingStore:
    """Keeps the most recent readings in memory, ordered by timestamp."""

    def __init__(self, max_readings: int = 100000):
        self.max_readings = max_readings
        self._readings: List[Reading] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._readings)

    def add(self, reading: Reading) -> None:
        with self._lock:
            if not self._readings or reading.timestamp >= self._readings[-1].timestamp:
                self._readings.append(reading)
            else:
                bisect.insort_right(self._readings, reading, key=_timestamp)
            overflow = len(self._readings) - self.max_readings
            if overflow > 0:
                del self._readings[:overflow]

    def fetch(self, start: datetime, end: datetime) -> List[Reading]:
        with self._lock:
            lo = bisect.bisect_left(self._readings, start, key=_timestamp)
            hi = bisect.bisect_right(self._readings, end, key=_timestamp)
            return self._readings[lo:hi]

    def latest(self) -> Optional[Reading]:
        with self._lock:
            return self._readings[-1] if self._readings else None

    def close(self) -> None:
        pass


class InfluxReadingStore:
    """InfluxDB-backed history: one ``sensor_reading`` point per station snapshot."""

    def __init__(self, url: str, token: str, org: str, bucket: str, client: Optional[InfluxDBClient] = None):
        self.org = org
        self.bucket = bucket
        self.client = client or InfluxDBClient(url=url, token=token, org=org)
        self.write_api = self.client.write_api(write_options=SYNCHRONOUS)
        logger.info("InfluxDB reading store ready (bucket=%s)", bucket)

    def to_point(self, reading: Reading) -> Point:
        point = Point(MEASUREMENT)
        for key in CATALOG:
            value = parse_value(reading.values.get(key))
            if value is not None:
                point = point.field(key, value)
        return point.time(reading.timestamp, WritePrecision.NS)

    def add(self, reading: Reading) -> None:
        try:
            self.write_api.write(bucket=self.bucket, org=self.org, record=self.to_point(reading))
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("InfluxDB write failed: %s", exc)

    def _query(self, flux: str) -> List[Reading]:
        try:
            tables = self.client.query_api().query(flux, org=self.org)
        except Exception as exc:
            logger.error("InfluxDB query failed: %s", exc)
            raise StoreUnavailableError(f"InfluxDB query failed: {exc}") from exc
        readings = []
        for table in tables:
            for record in table.records:
                values = {key: record.values[key] for key in CATALOG if record.values.get(key) is not None}
                readings.append(Reading(timestamp=record.get_time(), values=values))
        readings.sort(key=_timestamp)
        return readings

    def fetch(self, start: datetime, end: datetime) -> List[Reading]:
        # range() stop is exclusive
        stop = end + timedelta(microseconds=1)
        flux = f'''
        from(bucket: "{self.bucket}")
          |> range(start: {start.isoformat()}, stop: {stop.isoformat()})
          |> filter(fn: (r) => r["_measurement"] == "{MEASUREMENT}")
          |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
          |> sort(columns: ["_time"])
        '''
        return self._query(flux)

    def latest(self) -> Optional[Reading]:
        flux = f'''
        from(bucket: "{self.bucket}")
          |> range(start: -30d)
          |> filter(fn: (r) => r["_measurement"] == "{MEASUREMENT}")
          |> last()
          |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
        '''
        try:
            readings = self._query(flux)
        except StoreUnavailableError:
            # the dashboard tile shows "no data" instead of failing
            return None
        return readings[-1] if readings else None

    def close(self) -> None:
        self.client.close()
