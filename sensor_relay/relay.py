"""Presentation boundary: the operations a UI calls and the state it renders.

A UI owns no telemetry logic.  It calls ``request_permissions``,
``scan_for_peripherals``, ``connect_to_device`` and
``disconnect_from_device`` and renders ``SensorRelay.state``.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Deque, Optional

import structlog

from sensor_relay.config import RelaySettings
from sensor_relay.connection import ConnectionManager
from sensor_relay.decoder import TelemetryDecoder
from sensor_relay.errors import ConnectFailed, ScanError
from sensor_relay.forwarder import BrokerSink, CollectorSink, TelemetryForwarder
from sensor_relay.permissions import PermissionGate
from sensor_relay.scanner import PeripheralRegistry
from sensor_relay.schemas import PeripheralHandle, RelayState
from sensor_relay.transport.base import RadioTransport

logger = structlog.get_logger(__name__)

_MAX_NOTICES = 20


class SensorRelay:
    """Facade wiring the gate, connection manager and forwarder together."""

    def __init__(
        self,
        transport: RadioTransport,
        settings: Optional[RelaySettings] = None,
        *,
        permission_gate: Optional[PermissionGate] = None,
        broker: Optional[BrokerSink] = None,
        collector: Optional[CollectorSink] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[RelayState], None]] = None,
    ) -> None:
        settings = settings or RelaySettings()
        self._gate = permission_gate or PermissionGate(
            api_level=settings.android_api_level
        )
        self._notices: Deque[str] = deque(maxlen=_MAX_NOTICES)
        self._on_notice = on_notice
        self._on_change = on_change

        self.forwarder = TelemetryForwarder(
            broker or BrokerSink(),
            collector or CollectorSink(),
            on_notice=self.notify,
        )
        self.manager = ConnectionManager(
            transport,
            TelemetryDecoder(strict_numeric=settings.strict_numeric),
            self.forwarder,
            registry=PeripheralRegistry(settings.device_name_filter),
            on_change=self._changed,
        )

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        await self.forwarder.start()

    async def aclose(self) -> None:
        await self.manager.aclose()
        await self.forwarder.close()

    # -- public API ---------------------------------------------------------

    async def request_permissions(self) -> bool:
        return await self._gate.ensure_authorized()

    async def scan_for_peripherals(self) -> bool:
        """Check permissions, then (re)start discovery.

        Returns ``False`` if permissions are denied or the radio cannot
        scan.
        """
        if not await self._gate.ensure_authorized():
            self.notify("Bluetooth permissions are required to scan")
            return False
        try:
            await self.manager.start_scan()
        except ScanError as exc:
            logger.error("scan_start_failed", error=str(exc))
            self.notify(f"Scan failed: {exc}")
            return False
        return True

    async def connect_to_device(self, handle: PeripheralHandle) -> bool:
        """Connect to *handle*.  Returns ``False`` if the attempt failed.

        ``InvalidState`` propagates: the UI must not offer connect while a
        device is connected.
        """
        try:
            await self.manager.connect(handle)
        except ConnectFailed as exc:
            logger.error("connect_to_device_failed", identity=exc.identity, reason=exc.reason)
            self.notify(f"Failed to connect to {handle.name or handle.identity}")
            return False
        return True

    async def disconnect_from_device(self) -> None:
        await self.manager.disconnect()

    @property
    def state(self) -> RelayState:
        reading = self.manager.last_reading
        return RelayState(
            state=self.manager.state,
            devices=self.manager.devices,
            connected_device=self.manager.connected_device,
            temperature=reading.temperature if reading else None,
            humidity=reading.humidity if reading else None,
            notices=list(self._notices),
        )

    def notify(self, message: str) -> None:
        """Record a user-visible notice."""
        self._notices.append(message)
        logger.info("notice", message=message)
        if self._on_notice is not None:
            self._on_notice(message)

    # -- internal -----------------------------------------------------------

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.state)
