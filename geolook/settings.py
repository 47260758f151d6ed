# geolook/settings.py
import os

from dotenv import load_dotenv

load_dotenv()

# MQTT ingestion (disabled when MQTT_BROKER is unset)
MQTT_BROKER = os.getenv("MQTT_BROKER")
MQTT_PORT = int(os.getenv("MQTT_PORT", 1883))
MQTT_TOPIC = os.getenv("MQTT_TOPIC", "sensors/station")
MQTT_USER = os.getenv("MQTT_USER")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD")

# Historical readings
INFLUX_URL = os.getenv("INFLUX_URL")
INFLUX_ORG = os.getenv("INFLUX_ORG")
INFLUX_BUCKET = os.getenv("INFLUX_BUCKET")
INFLUX_TOKEN = os.getenv("INFLUX_TOKEN")
MEMORY_STORE_MAX_READINGS = int(os.getenv("MEMORY_STORE_MAX_READINGS", 100000))

# Alert rules
PG_HOST = os.getenv("PG_HOST")

QUERY_TIMEOUT_SECONDS = float(os.getenv("QUERY_TIMEOUT_SECONDS", 30))
ALERT_HISTORY_SIZE = int(os.getenv("ALERT_HISTORY_SIZE", 100))
RULE_REFRESH_SECONDS = float(os.getenv("RULE_REFRESH_SECONDS", 60))
DEFAULT_INTERVAL_MINUTES = int(os.getenv("DEFAULT_INTERVAL_MINUTES", 5))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]


def influx_configured() -> bool:
    return all([INFLUX_URL, INFLUX_ORG, INFLUX_BUCKET, INFLUX_TOKEN])
