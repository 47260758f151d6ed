from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt
from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from geolook import settings
from geolook.core.alert_engine import AlertHistory, AlertRuleEngine
from geolook.core.analytics import (
    AnalyticsService,
    ComparisonQuery,
    ComparisonRange,
    CorrelationQuery,
    RangeQuery,
)
from geolook.core.errors import InvalidInputError, StoreUnavailableError
from geolook.core.models import AlertEvent, Reading, SafetyTier, parse_timestamp
from geolook.core.safety import classify_reading, group_by_tier
from geolook.core.sensor_catalog import CATALOG, SENSORS
from geolook.core.value_filter import ValueFilter
from geolook.llm_client import LLMClient
from geolook.notifier import EmailNotifier
from geolook.reading_store import InfluxReadingStore, MemoryReadingStore
from geolook.rule_store import MemoryRuleStore, PostgresRuleStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# In-memory defaults; startup swaps in InfluxDB / PostgreSQL when configured.
reading_store = MemoryReadingStore(settings.MEMORY_STORE_MAX_READINGS)
rule_store = MemoryRuleStore()
engine = AlertRuleEngine(on_fire=rule_store.save_last_triggered)
history = AlertHistory(settings.ALERT_HISTORY_SIZE)
analytics = AnalyticsService(reading_store, timeout=settings.QUERY_TIMEOUT_SECONDS)
llm_client = LLMClient()
email_notifier = EmailNotifier()

mqtt_client: mqtt.Client | None = None
event_loop: asyncio.AbstractEventLoop | None = None
rule_refresh_task: asyncio.Task | None = None

app = FastAPI(title="Geolook Monitoring API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ConnectionManager:
    def __init__(self) -> None:
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("New WebSocket connection. Total: %s", len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info("WebSocket disconnected. Total: %s", len(self.active_connections))

    async def broadcast(self, message: dict) -> None:
        if not self.active_connections:
            return

        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Error broadcasting to WebSocket: %s", exc)
                self.disconnect(connection)


manager = ConnectionManager()


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):  # pylint: disable=unused-argument
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(asyncio.TimeoutError)
async def timeout_handler(request: Request, exc: asyncio.TimeoutError):  # pylint: disable=unused-argument
    return JSONResponse(status_code=504, content={"error": "Query timed out", "field": None})


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):  # pylint: disable=unused-argument
    return JSONResponse(status_code=503, content={"error": str(exc), "field": None})


# ==================== Live path ====================

def process_reading(doc: Any) -> Tuple[Reading, Dict[str, SafetyTier], List[AlertEvent]]:
    """Store, classify and evaluate one ingested document.

    Blocking; call it from a worker thread (MQTT callback or asyncio.to_thread),
    since rule stores may wait on the event loop to persist lastTriggered.
    """
    if not isinstance(doc, dict):
        raise InvalidInputError("Reading must be a JSON object", field="body")
    reading = Reading.from_document(doc)
    reading_store.add(reading)
    tiers = classify_reading(reading)
    events = engine.evaluate_all(rule_store.active_rules(), reading)
    for event in events:
        history.record(event)
    return reading, tiers, events


def reading_message(reading: Reading, tiers: Dict[str, SafetyTier]) -> dict:
    payload = reading.to_document()
    payload["status"] = {key: tier.value for key, tier in tiers.items()}
    return {"type": "reading", "payload": payload}


async def dispatch(reading: Reading, tiers: Dict[str, SafetyTier], events: List[AlertEvent]) -> None:
    await manager.broadcast(reading_message(reading, tiers))
    for event in events:
        await handle_alert(event.to_dict())


async def handle_alert(alert: dict):
    """LLM summary, e-mail for CRITICAL, then push to the dashboard."""
    try:
        llm_summary = await llm_client.generate_alert_summary(alert)
        if llm_summary:
            alert["llm_summary"] = llm_summary

        await email_notifier.send(alert)

        await manager.broadcast({
            "type": "alert",
            "payload": alert
        })

        logger.info("Alert handled: %s", alert["id"])
    except Exception as e:  # pylint: disable=broad-except
        logger.error("Alert handling error: %s", e)


def on_connect(client, userdata, flags, reason_code, properties):  # pylint: disable=unused-argument
    logger.info("MQTT Connected with result code %s", reason_code)
    client.subscribe(settings.MQTT_TOPIC)


def on_message(client, userdata, msg):  # pylint: disable=unused-argument
    try:
        doc = json.loads(msg.payload.decode())
        reading, tiers, events = process_reading(doc)
    except InvalidInputError as exc:
        logger.warning("Rejected MQTT document (%s): %s", exc.field, exc.message)
        return
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error processing MQTT message: %s", exc)
        return

    if event_loop and not event_loop.is_closed():
        asyncio.run_coroutine_threadsafe(dispatch(reading, tiers, events), event_loop)
    else:
        logger.warning("Event loop not ready. Skipping broadcast.")


async def rule_refresh_worker():
    """Periodically pick up rule edits made outside this process."""
    while True:
        await asyncio.sleep(settings.RULE_REFRESH_SECONDS)
        try:
            for rule_id in await rule_store.refresh():
                engine.forget(rule_id)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Rule refresh error: %s", e)


@app.on_event("startup")
async def startup_event() -> None:
    global event_loop, reading_store, rule_store, mqtt_client, rule_refresh_task  # noqa: PLW0603

    event_loop = asyncio.get_running_loop()

    if settings.influx_configured():
        reading_store = InfluxReadingStore(
            url=settings.INFLUX_URL,
            token=settings.INFLUX_TOKEN,
            org=settings.INFLUX_ORG,
            bucket=settings.INFLUX_BUCKET,
        )
        analytics.store = reading_store
    else:
        logger.warning("InfluxDB environment variables missing. Using in-memory reading store.")

    if settings.PG_HOST:
        store = PostgresRuleStore()
        await store.init()
        rule_store = store
        engine.on_fire = store.save_last_triggered
        rule_refresh_task = asyncio.create_task(rule_refresh_worker())
    else:
        logger.warning("PG_HOST not set. Using in-memory rule store.")

    if settings.MQTT_BROKER:
        try:
            mqtt_client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            if settings.MQTT_USER:
                mqtt_client.username_pw_set(settings.MQTT_USER, settings.MQTT_PASSWORD)
            mqtt_client.on_connect = on_connect
            mqtt_client.on_message = on_message
            mqtt_client.connect(settings.MQTT_BROKER, settings.MQTT_PORT, 60)
            mqtt_client.loop_start()
            logger.info("MQTT client started")
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to connect to MQTT broker: %s", exc)
            mqtt_client = None
    else:
        logger.info("MQTT_BROKER not set. Ingestion via POST /api/sensors/readings only.")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global rule_refresh_task  # noqa: PLW0603

    if rule_refresh_task:
        rule_refresh_task.cancel()
        try:
            await rule_refresh_task
        except asyncio.CancelledError:
            pass
        rule_refresh_task = None
    if mqtt_client:
        mqtt_client.loop_stop()
        mqtt_client.disconnect()
    await rule_store.close()
    reading_store.close()


# ==================== Helpers ====================

def _sensor_list(raw: Optional[str]) -> List[str]:
    if raw is None or not raw.strip():
        return list(CATALOG)
    return [key.strip() for key in raw.split(",") if key.strip()]


def _interval(raw: Any, default: float = settings.DEFAULT_INTERVAL_MINUTES) -> float:
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid interval: {raw}", field="intervalMinutes") from None


def _comparison_query(payload: Any) -> ComparisonQuery:
    if not isinstance(payload, dict):
        raise InvalidInputError("Comparison request must be a JSON object", field="body")
    ranges = []
    for item in payload.get("ranges") or []:
        if not isinstance(item, dict):
            raise InvalidInputError("Each comparison range must be an object", field="ranges")
        ranges.append(ComparisonRange(
            label=str(item.get("label") or ""),
            from_timestamp=parse_timestamp(item.get("from"), "from"),
            to_timestamp=parse_timestamp(item.get("to"), "to"),
        ))
    value_filter = payload.get("filter")
    if not isinstance(value_filter, dict):
        value_filter = {}
    return ComparisonQuery(
        sensor_type=payload.get("sensorType"),
        ranges=ranges,
        interval_minutes=_interval(payload.get("intervalMinutes")),
        value_filter=ValueFilter.build(
            value_filter.get("filterType"), value_filter.get("minValue"), value_filter.get("maxValue")
        ),
    )


# ==================== API endpoints ====================

@app.get("/api/sensors/catalog")
async def get_catalog():
    return {"sensors": [sensor.to_dict() for sensor in SENSORS]}


@app.get("/api/sensors/latest")
async def get_latest():
    """Most recent reading grouped into critical / warning / safe."""
    reading = await asyncio.to_thread(reading_store.latest)
    if reading is None:
        return {"reading": None, "groups": {"critical": [], "warning": [], "safe": []}}
    return {"reading": reading.to_document(), "groups": group_by_tier(reading)}


@app.post("/api/sensors/readings")
async def post_reading(payload: Any = Body(...)):
    reading, tiers, events = await asyncio.to_thread(process_reading, payload)
    await dispatch(reading, tiers, events)
    return {
        "status": "ok",
        "timestamp": reading.timestamp.isoformat(),
        "tiers": {key: tier.value for key, tier in tiers.items()},
        "alerts": [event.to_dict() for event in events],
    }


@app.get("/api/sensors/custom-range")
async def get_custom_range(
    fromDate: Optional[str] = None,
    toDate: Optional[str] = None,
    intervalMinutes: Optional[str] = None,
    sensors: Optional[str] = None,
    filterType: Optional[str] = None,
    minValue: Optional[str] = None,
    maxValue: Optional[str] = None,
    report: bool = False,
):
    query = RangeQuery(
        from_timestamp=parse_timestamp(fromDate, "fromDate"),
        to_timestamp=parse_timestamp(toDate, "toDate"),
        interval_minutes=_interval(intervalMinutes),
        sensor_types=_sensor_list(sensors),
    )
    result = await analytics.range(query, ValueFilter.build(filterType, minValue, maxValue))
    data = result.to_dict()
    if report:
        data["report"] = await llm_client.generate_range_report(data)
    return data


@app.get("/api/sensors/correlation")
async def get_correlation(
    sensor1: Optional[str] = None,
    sensor2: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    intervalMinutes: Optional[str] = None,
    filterType: Optional[str] = None,
    minValue1: Optional[str] = None,
    maxValue1: Optional[str] = None,
    minValue2: Optional[str] = None,
    maxValue2: Optional[str] = None,
):
    if not sensor1 or not sensor2:
        raise InvalidInputError("Both sensor1 and sensor2 are required", field="sensor1" if not sensor1 else "sensor2")
    query = CorrelationQuery(
        sensor_a=sensor1,
        sensor_b=sensor2,
        from_timestamp=parse_timestamp(startDate, "startDate"),
        to_timestamp=parse_timestamp(endDate, "endDate"),
        interval_minutes=_interval(intervalMinutes, 5),
        filter_a=ValueFilter.build(filterType, minValue1, maxValue1),
        filter_b=ValueFilter.build(filterType, minValue2, maxValue2),
    )
    report = await analytics.correlation(query)
    return report.to_dict()


@app.post("/api/sensors/comparison")
async def post_comparison(payload: Any = Body(...)):
    report = await analytics.comparison(_comparison_query(payload))
    return report.to_dict()


@app.get("/api/sensors/alerts")
async def get_alerts(hours: float = 24, level: Optional[str] = None, limit: Optional[int] = None):
    """Recent alerts, newest first, with per-level counts for the window."""
    window = history.recent(hours)
    return {
        "alerts": [event.to_dict() for event in history.recent(hours, level=level, limit=limit)],
        "summary": AlertHistory.summary(window),
    }


@app.get("/api/sensors/notifications")
async def get_notifications():
    return {"rules": [rule.to_dict() for rule in rule_store.all_rules()]}


@app.websocket("/ws/sensor")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            logger.info("Received from client: %s", data)
    except WebSocketDisconnect:
        manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
