"""Abstract base class for radio transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Union

from sensor_relay.schemas import PeripheralHandle

# (error, handle) -- exactly one of the two is set.
ScanCallback = Callable[[Optional[Exception], Optional[PeripheralHandle]], None]

# (error, value) -- ``value`` is raw bytes or base64 text.
ValueCallback = Callable[[Optional[Exception], Optional[Union[bytes, str]]], None]

LinkLostCallback = Callable[[str], None]


class RadioTransport(ABC):
    """Unified interface over a BLE central stack.

    Concrete implementations: ``SimulationTransport`` (fixture-based) and
    ``BleakTransport`` (bleak hardware wrapper).  Callbacks are invoked on
    the event loop thread.
    """

    @abstractmethod
    async def start_scan(self, on_event: ScanCallback) -> None:
        """Start delivering advertisements to *on_event*.

        Raises ``ScanError`` if the radio cannot scan at all.
        """

    @abstractmethod
    async def stop_scan(self) -> None:
        """Stop the active scan.  No-op if none is running."""

    @abstractmethod
    async def connect(
        self,
        identity: str,
        on_link_lost: Optional[LinkLostCallback] = None,
    ) -> None:
        """Open a GATT connection to the peripheral with *identity*."""

    @abstractmethod
    async def discover_services(self, identity: str) -> Dict[str, List[str]]:
        """Resolve the GATT table.

        Returns ``{service_uuid: [characteristic_uuid, ...]}`` with
        lower-case UUIDs.
        """

    @abstractmethod
    async def subscribe(
        self,
        identity: str,
        service_uuid: str,
        characteristic_uuid: str,
        on_value: ValueCallback,
    ) -> None:
        """Subscribe to value-change notifications of one characteristic."""

    @abstractmethod
    async def cancel_connection(self, identity: str) -> None:
        """Tear down the connection to *identity*."""

    @abstractmethod
    def is_connected(self, identity: str) -> bool:
        """Return ``True`` if *identity* has an active connection."""
