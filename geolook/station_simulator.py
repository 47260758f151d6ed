# geolook/station_simulator.py
"""
Weather/slope station telemetry simulator.

Publishes one reading document per interval to the MQTT topic the backend
listens on, in the same shape the field stations send (string values with
two decimals, ``ts_server`` and ``createdAt`` timestamps).
"""

import json
import math
import os
import random
import time
from datetime import datetime, timezone
from typing import Optional

import paho.mqtt.client as mqtt


# MQTT broker configuration
MQTT_BROKER = os.getenv("MQTT_BROKER", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", 1883))
MQTT_TOPIC = os.getenv("MQTT_TOPIC", "sensors/station")
PUBLISH_INTERVAL = float(os.getenv("SIMULATOR_INTERVAL", 5))


def _fmt(value: float) -> str:
    return f"{value:.2f}"


def generate_document(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> dict:
    """Generate one plausible station snapshot."""
    now = now or datetime.now(timezone.utc)
    rng = rng or random.Random()

    # diurnal temperature swing, humidity moving opposite to it
    phase = (now.hour + now.minute / 60) / 24 * 2 * math.pi
    temperature = 24 + 6 * math.sin(phase - math.pi / 2) + rng.uniform(-0.5, 0.5)
    humidity = min(100.0, max(5.0, 70 - 2.5 * (temperature - 24) + rng.uniform(-3, 3)))

    wind = max(0.0, rng.gauss(4, 2))
    raining = rng.random() < 0.15

    return {
        "temperature": _fmt(temperature),
        "hum": _fmt(humidity),
        "ws_2": _fmt(wind),
        "wd": _fmt(rng.uniform(0, 360)),
        "press_h": _fmt(1013 + rng.gauss(0, 4)),
        # no rain is reported as the "0.00" no-data sentinel
        "curr_rain": _fmt(rng.uniform(0.2, 8) if raining else 0),
        "max_WS": _fmt(wind + abs(rng.gauss(2, 1))),
        "VP_mbar": _fmt(6.11 * 10 ** (7.5 * temperature / (237.3 + temperature)) * humidity / 100),
        "tilt_NS": _fmt(rng.gauss(0.4, 0.3)),
        "tilt_WE": _fmt(rng.gauss(-0.2, 0.3)),
        "Strike": _fmt(rng.choice([0, 0, 0, 0, 1, 2])),
        "bv": _fmt(12.6 + rng.uniform(-0.4, 0.3)),
        "ts_server": now.isoformat(),
        "createdAt": now.isoformat(),
    }


def publish_reading(client: mqtt.Client) -> None:
    """Publish a generated reading to the configured MQTT broker."""

    try:
        doc = generate_document()
        payload = json.dumps(doc, ensure_ascii=False)

        result = client.publish(MQTT_TOPIC, payload, qos=1)

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            print(f"[{doc['ts_server']}] Station reading published")
        else:
            print(f"!! MQTT publish failed: {result.rc}")

    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error: {exc}")


def main():
    """Entry point."""

    print("=" * 50)
    print("Station telemetry simulation")
    print("=" * 50)
    print(f"MQTT broker: {MQTT_BROKER}:{MQTT_PORT}")
    print(f"Topic: {MQTT_TOPIC}")
    print(f"Publish interval: {PUBLISH_INTERVAL} seconds")
    print("=" * 50)
    print()

    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id="geolook-station-sim")
    client.connect(MQTT_BROKER, MQTT_PORT, 60)

    try:
        client.loop_start()  # Start MQTT network loop in a separate thread

        while True:
            publish_reading(client)
            time.sleep(PUBLISH_INTERVAL)

    except KeyboardInterrupt:
        print("\nKeyboard interrupt received. Stopping...")
        client.loop_stop()
        client.disconnect()
        print("MQTT connection closed.")


if __name__ == "__main__":
    main()
