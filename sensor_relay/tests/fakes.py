"""In-memory fakes for the radio transport and MQTT client."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import aiomqtt

from sensor_relay.connection import (
    TELEMETRY_CHARACTERISTIC_UUID,
    TELEMETRY_SERVICE_UUID,
)
from sensor_relay.schemas import PeripheralHandle
from sensor_relay.transport.base import (
    LinkLostCallback,
    RadioTransport,
    ScanCallback,
    ValueCallback,
)

COLLECTOR_TEST_URL = "http://collector.test/api/sendData"

SENSOR = PeripheralHandle(identity="24:6F:28:AA:10:01", name="ESP32_BLE_Server", rssi=-60)
OTHER_SENSOR = PeripheralHandle(identity="24:6F:28:AA:20:02", name="ESP32_BLE_Server_2", rssi=-80)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeTransport(RadioTransport):
    """In-memory radio driven by the test."""

    def __init__(self) -> None:
        self.services: Dict[str, List[str]] = {
            TELEMETRY_SERVICE_UUID: [TELEMETRY_CHARACTERISTIC_UUID],
        }
        self.scan_callback: Optional[ScanCallback] = None
        self.scanning = False
        self.scan_starts = 0
        self.scan_error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.subscribe_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.connect_gate: Optional[asyncio.Event] = None
        self.connected: Set[str] = set()
        self.cancelled: List[str] = []
        self.value_callback: Optional[ValueCallback] = None
        self.link_lost: Optional[LinkLostCallback] = None

    async def start_scan(self, on_event: ScanCallback) -> None:
        if self.scan_error is not None:
            raise self.scan_error
        self.scan_callback = on_event
        self.scanning = True
        self.scan_starts += 1

    async def stop_scan(self) -> None:
        self.scanning = False

    async def connect(
        self,
        identity: str,
        on_link_lost: Optional[LinkLostCallback] = None,
    ) -> None:
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected.add(identity)
        self.link_lost = on_link_lost

    async def discover_services(self, identity: str) -> Dict[str, List[str]]:
        return self.services

    async def subscribe(
        self,
        identity: str,
        service_uuid: str,
        characteristic_uuid: str,
        on_value: ValueCallback,
    ) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.value_callback = on_value

    async def cancel_connection(self, identity: str) -> None:
        self.cancelled.append(identity)
        self.connected.discard(identity)
        if self.cancel_error is not None:
            raise self.cancel_error

    def is_connected(self, identity: str) -> bool:
        return identity in self.connected

    # -- test drivers -------------------------------------------------------

    def advertise(self, handle: PeripheralHandle) -> None:
        assert self.scan_callback is not None, "scan not started"
        self.scan_callback(None, handle)

    def glitch(self, message: str = "bad advertisement") -> None:
        assert self.scan_callback is not None, "scan not started"
        self.scan_callback(RuntimeError(message), None)

    def notify(self, value: Any = None, error: Optional[Exception] = None) -> None:
        assert self.value_callback is not None, "not subscribed"
        self.value_callback(error, value)


class FakeBroker:
    """Records what a ``BrokerSink`` publishes through fake MQTT clients."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, str]] = []
        self.connects = 0
        self.closes = 0
        self.fail_connect = False
        self.fail_publish = False

    def factory(self) -> "FakeMqttClient":
        return FakeMqttClient(self)


class FakeMqttClient:
    def __init__(self, broker: FakeBroker) -> None:
        self._broker = broker

    async def __aenter__(self) -> "FakeMqttClient":
        self._broker.connects += 1
        if self._broker.fail_connect:
            raise aiomqtt.MqttError("Connection refused")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._broker.closes += 1

    async def publish(self, topic: str, payload: Any = None, **kwargs: Any) -> None:
        if self._broker.fail_publish:
            raise aiomqtt.MqttError("Could not publish message")
        self._broker.published.append((topic, payload))


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until true or fail the test after *timeout*."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
