"""Headless asyncio driver: scan, connect, relay until shutdown."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

import structlog

from sensor_relay.config import RelaySettings
from sensor_relay.relay import SensorRelay
from sensor_relay.schemas import ConnectionState, PeripheralHandle
from sensor_relay.transport.base import RadioTransport

logger = structlog.get_logger(__name__)

_POLL_SECONDS = 0.1


def create_transport(settings: RelaySettings) -> RadioTransport:
    """Factory: return the right transport for the current config.

    ``BleakTransport`` is imported lazily so simulation mode works on
    hosts without a Bluetooth stack.
    """
    if settings.is_simulation:
        from sensor_relay.transport.simulation import SimulationTransport

        return SimulationTransport(scenario=settings.sim_scenario)

    from sensor_relay.transport.live import BleakTransport

    return BleakTransport()


async def run_relay(
    settings: RelaySettings,
    *,
    once: bool = False,
    address: Optional[str] = None,
    relay: Optional[SensorRelay] = None,
) -> None:
    """Run the relay.

    Parameters
    ----------
    settings:
        Fully-resolved relay configuration.
    once:
        If ``True``, exit after the first reading has been forwarded.
    address:
        Connect only to the peripheral with this identity.
    relay:
        Pre-built relay to drive instead of one built from *settings*.
    """
    shutdown_event = asyncio.Event()

    # --- signal handling ---------------------------------------------------
    def _request_shutdown() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_shutdown)

    if relay is None:
        relay = SensorRelay(create_transport(settings), settings)

    await relay.start()
    try:
        await _loop(relay, settings, shutdown_event, once=once, address=address)
    finally:
        await relay.aclose()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)


async def _loop(
    relay: SensorRelay,
    settings: RelaySettings,
    shutdown_event: asyncio.Event,
    *,
    once: bool,
    address: Optional[str],
) -> None:
    """Scan-connect-relay loop; rescans after a failed or lost link."""

    while not shutdown_event.is_set():
        # --- scan ----------------------------------------------------------
        if not await relay.scan_for_peripherals():
            logger.error("scan_unavailable")
            return

        handle = await _wait_for_peripheral(
            relay, settings.scan_timeout_seconds, address, shutdown_event
        )
        if handle is None:
            await relay.manager.stop_scan()
            if shutdown_event.is_set():
                return
            logger.warning(
                "no_peripheral_found",
                timeout=settings.scan_timeout_seconds,
                address=address,
            )
            if once:
                return
            continue

        # --- connect -------------------------------------------------------
        if not await relay.connect_to_device(handle):
            if once:
                return
            await _interruptible_sleep(settings.reconnect_delay_seconds, shutdown_event)
            continue

        # --- relay ---------------------------------------------------------
        if once:
            await _wait_for_first_forward(
                relay, settings.reading_timeout_seconds, shutdown_event
            )
            await relay.disconnect_from_device()
            return

        while (
            not shutdown_event.is_set()
            and relay.manager.state is ConnectionState.CONNECTED
        ):
            await _interruptible_sleep(_POLL_SECONDS * 10, shutdown_event)

        if shutdown_event.is_set():
            await relay.disconnect_from_device()
            return

        await _wait_for_idle(relay, shutdown_event)
        logger.warning("link_down_rescanning", identity=handle.identity)
        await _interruptible_sleep(settings.reconnect_delay_seconds, shutdown_event)


async def _wait_for_peripheral(
    relay: SensorRelay,
    timeout: float,
    address: Optional[str],
    shutdown_event: asyncio.Event,
) -> Optional[PeripheralHandle]:
    """Return the first registered peripheral (or *address*), or ``None``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not shutdown_event.is_set() and loop.time() < deadline:
        if address is not None:
            handle = relay.manager.registry.get(address)
        else:
            devices = relay.manager.devices
            handle = devices[0] if devices else None
        if handle is not None:
            return handle
        await _interruptible_sleep(_POLL_SECONDS, shutdown_event)
    return None


async def _wait_for_idle(relay: SensorRelay, shutdown_event: asyncio.Event) -> None:
    """Wait for link-loss cleanup to bring the manager back to IDLE."""
    while (
        not shutdown_event.is_set()
        and relay.manager.state is not ConnectionState.IDLE
    ):
        await _interruptible_sleep(_POLL_SECONDS, shutdown_event)


async def _wait_for_first_forward(
    relay: SensorRelay,
    timeout: float,
    shutdown_event: asyncio.Event,
) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not shutdown_event.is_set() and loop.time() < deadline:
        if relay.manager.last_outcomes is not None:
            broker, collector = relay.manager.last_outcomes
            logger.info(
                "first_reading_forwarded",
                broker_sent=broker.sent,
                collector_sent=collector.sent,
            )
            return
        if relay.manager.state is not ConnectionState.CONNECTED:
            return
        await _interruptible_sleep(_POLL_SECONDS, shutdown_event)
    logger.warning("no_reading_received", timeout=timeout)


async def _interruptible_sleep(
    seconds: float, event: asyncio.Event
) -> None:
    """Sleep for *seconds* but wake early if *event* is set."""
    try:
        await asyncio.wait_for(event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
