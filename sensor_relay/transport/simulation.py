"""Fixture-based simulation transport (no hardware required).

Loads scenarios from ``fixtures/simulation_scenarios.json`` and replays
their advertisements and notification payloads in a loop, the way a real
sensor keeps advertising and notifying until the link goes away.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from sensor_relay.errors import ScanError
from sensor_relay.schemas import PeripheralHandle
from sensor_relay.transport.base import (
    LinkLostCallback,
    RadioTransport,
    ScanCallback,
    ValueCallback,
)

_FIXTURES_DIR = Path(__file__).resolve().parent.parent / "fixtures"


class SimulationTransport(RadioTransport):
    """Replays synthetic BLE traffic from JSON fixture scenarios."""

    def __init__(
        self,
        scenario: str = "steady",
        advertise_interval: float = 0.05,
        notify_interval: Optional[float] = None,
    ) -> None:
        scenarios = _load_scenarios()
        if scenario not in scenarios:
            available = ", ".join(sorted(scenarios))
            raise ValueError(
                f"Unknown simulation scenario '{scenario}'. "
                f"Available: {available}"
            )
        self._scenario: Dict[str, Any] = scenarios[scenario]
        self._advertise_interval = advertise_interval
        self._notify_interval = (
            notify_interval
            if notify_interval is not None
            else float(self._scenario.get("notify_interval_seconds", 1.0))
        )
        self._scan_task: Optional[asyncio.Task] = None
        self._notify_task: Optional[asyncio.Task] = None
        self._connected: Optional[str] = None
        self._on_link_lost: Optional[LinkLostCallback] = None

    # -- scanning -----------------------------------------------------------

    async def start_scan(self, on_event: ScanCallback) -> None:
        await self.stop_scan()
        adverts = self._scenario.get("advertisements", [])
        if not adverts:
            raise ScanError("Simulated radio has nothing to scan")
        self._scan_task = asyncio.create_task(self._advertise(adverts, on_event))

    async def stop_scan(self) -> None:
        await _cancel(self._scan_task)
        self._scan_task = None

    @property
    def is_scanning(self) -> bool:
        return self._scan_task is not None and not self._scan_task.done()

    # -- connection ---------------------------------------------------------

    async def connect(
        self,
        identity: str,
        on_link_lost: Optional[LinkLostCallback] = None,
    ) -> None:
        await asyncio.sleep(0)
        if self._scenario.get("connect_fails"):
            raise ConnectionError(f"Simulated peripheral {identity} refused connection")
        known = {
            a.get("identity") for a in self._scenario.get("advertisements", [])
        }
        if identity not in known:
            raise ConnectionError(f"No simulated peripheral with identity {identity}")
        self._connected = identity
        self._on_link_lost = on_link_lost

    async def discover_services(self, identity: str) -> Dict[str, List[str]]:
        self._check_connected(identity)
        return {
            service.lower(): [c.lower() for c in chars]
            for service, chars in self._scenario.get("services", {}).items()
        }

    async def subscribe(
        self,
        identity: str,
        service_uuid: str,
        characteristic_uuid: str,
        on_value: ValueCallback,
    ) -> None:
        services = await self.discover_services(identity)
        if characteristic_uuid.lower() not in services.get(service_uuid.lower(), []):
            raise LookupError(
                f"Characteristic {characteristic_uuid} not found on {identity}"
            )
        await _cancel(self._notify_task)
        self._notify_task = asyncio.create_task(self._notify(identity, on_value))

    async def cancel_connection(self, identity: str) -> None:
        if self._connected != identity:
            return
        await _cancel(self._notify_task)
        self._notify_task = None
        self._connected = None
        self._on_link_lost = None

    def is_connected(self, identity: str) -> bool:
        return self._connected == identity

    # -- internal -----------------------------------------------------------

    async def _advertise(
        self, adverts: List[Dict[str, Any]], on_event: ScanCallback
    ) -> None:
        for entry in itertools.cycle(adverts):
            if "error" in entry:
                on_event(ScanError(entry["error"]), None)
            else:
                on_event(None, PeripheralHandle(**entry))
            await asyncio.sleep(self._advertise_interval)

    async def _notify(self, identity: str, on_value: ValueCallback) -> None:
        payloads = self._scenario.get("notifications", [])
        drop_after = self._scenario.get("drop_after_notifications")
        sent = 0
        for entry in itertools.cycle(payloads):
            await asyncio.sleep(self._notify_interval)
            if drop_after is not None and sent >= drop_after:
                self._drop_link(identity)
                return
            if isinstance(entry, dict):
                on_value(RuntimeError(entry.get("error", "notification error")), None)
            else:
                on_value(None, entry)
            sent += 1

    def _drop_link(self, identity: str) -> None:
        callback = self._on_link_lost
        self._connected = None
        self._on_link_lost = None
        self._notify_task = None
        if callback is not None:
            callback(identity)

    def _check_connected(self, identity: str) -> None:
        if self._connected != identity:
            raise RuntimeError("SimulationTransport is not connected")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_scenarios_cache: Optional[Dict[str, Any]] = None


def _load_scenarios() -> Dict[str, Any]:
    global _scenarios_cache
    if _scenarios_cache is None:
        path = _FIXTURES_DIR / "simulation_scenarios.json"
        with open(path, encoding="utf-8") as fh:
            _scenarios_cache = json.load(fh)
    return _scenarios_cache


async def _cancel(task: Optional[asyncio.Task]) -> None:
    """Cancel *task* and wait for it to finish."""
    if task is None or task.done():
        return
    if task is asyncio.current_task():
        return
    task.cancel()
    await asyncio.wait({task})
