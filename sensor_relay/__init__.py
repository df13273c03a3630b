"""Sensor Relay -- BLE temperature/humidity telemetry relay.

Discovers a single ESP32 sensor peripheral, subscribes to its
temperature/humidity characteristic and forwards every reading to an
MQTT broker and an HTTP collector.
"""

__version__ = "0.1.0"
