"""BleakTransport -- host Bluetooth adapter via bleak.

Only imported when ``RADIO=ble`` so simulation mode works on hosts
without a Bluetooth stack.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import structlog
from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from sensor_relay.errors import ScanError
from sensor_relay.schemas import PeripheralHandle
from sensor_relay.transport.base import (
    LinkLostCallback,
    RadioTransport,
    ScanCallback,
    ValueCallback,
)

logger = structlog.get_logger(__name__)


class BleakTransport(RadioTransport):
    """Wraps ``BleakScanner``/``BleakClient`` for real BLE communication."""

    def __init__(self) -> None:
        self._scanner: Optional[BleakScanner] = None
        self._clients: Dict[str, BleakClient] = {}
        # Last advertisement per address; lets connect() skip a rescan.
        self._seen: Dict[str, BLEDevice] = {}

    # -- scanning -----------------------------------------------------------

    async def start_scan(self, on_event: ScanCallback) -> None:
        await self.stop_scan()

        def _detected(device: BLEDevice, adv: AdvertisementData) -> None:
            self._seen[device.address] = device
            try:
                handle = PeripheralHandle(
                    identity=device.address,
                    name=adv.local_name or device.name,
                    rssi=adv.rssi,
                )
            except ValueError as exc:
                on_event(exc, None)
                return
            on_event(None, handle)

        scanner = BleakScanner(detection_callback=_detected)
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise ScanError(f"Could not start BLE scan: {exc}") from exc
        self._scanner = scanner
        logger.info("ble_scan_started")

    async def stop_scan(self) -> None:
        if self._scanner is None:
            return
        scanner, self._scanner = self._scanner, None
        try:
            await scanner.stop()
        except BleakError as exc:
            logger.warning("ble_scan_stop_failed", error=str(exc))
        logger.info("ble_scan_stopped")

    # -- connection ---------------------------------------------------------

    async def connect(
        self,
        identity: str,
        on_link_lost: Optional[LinkLostCallback] = None,
    ) -> None:
        def _disconnected(_client: BleakClient) -> None:
            self._clients.pop(identity, None)
            if on_link_lost is not None:
                on_link_lost(identity)

        target = self._seen.get(identity, identity)
        client = BleakClient(target, disconnected_callback=_disconnected)
        await client.connect()
        self._clients[identity] = client
        logger.info("ble_connected", identity=identity)

    async def discover_services(self, identity: str) -> Dict[str, List[str]]:
        client = self._client(identity)
        # bleak resolves the GATT table as part of connect().
        return {
            service.uuid.lower(): [c.uuid.lower() for c in service.characteristics]
            for service in client.services
        }

    async def subscribe(
        self,
        identity: str,
        service_uuid: str,
        characteristic_uuid: str,
        on_value: ValueCallback,
    ) -> None:
        client = self._client(identity)
        service = client.services.get_service(service_uuid)
        if service is None:
            raise BleakError(f"Service {service_uuid} not found on {identity}")
        characteristic = service.get_characteristic(characteristic_uuid)
        if characteristic is None:
            raise BleakError(
                f"Characteristic {characteristic_uuid} not found on {identity}"
            )

        def _notified(_sender: object, data: bytearray) -> None:
            on_value(None, bytes(data))

        await client.start_notify(characteristic, _notified)
        logger.info(
            "ble_subscribed",
            identity=identity,
            characteristic=characteristic_uuid,
        )

    async def cancel_connection(self, identity: str) -> None:
        client = self._clients.pop(identity, None)
        if client is None:
            return
        if client.is_connected:
            await client.disconnect()
        logger.info("ble_disconnected", identity=identity)

    def is_connected(self, identity: str) -> bool:
        client = self._clients.get(identity)
        return client is not None and client.is_connected

    # -- internal -----------------------------------------------------------

    def _client(self, identity: str) -> BleakClient:
        client = self._clients.get(identity)
        if client is None:
            raise RuntimeError(f"BleakTransport is not connected to {identity}")
        return client
