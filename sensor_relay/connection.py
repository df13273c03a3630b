"""Connection state machine for the single telemetry peripheral.

``ConnectionManager`` owns the scan session, at most one peripheral
connection, the notification channel of that connection and the most
recent ``Reading``::

    IDLE -> SCANNING -> CONNECTING -> CONNECTED -> DISCONNECTING -> IDLE

Only one connect/disconnect transition is in flight at a time.  A connect
request while CONNECTING/CONNECTED is rejected with ``InvalidState``.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, List, Optional, Set, Tuple, Union

import structlog

from sensor_relay.decoder import TelemetryDecoder
from sensor_relay.errors import ConnectFailed, InvalidState
from sensor_relay.forwarder import TelemetryForwarder
from sensor_relay.scanner import PeripheralRegistry, ScanStream
from sensor_relay.schemas import (
    ConnectionState,
    ForwardOutcome,
    PeripheralHandle,
    Reading,
)
from sensor_relay.transport.base import RadioTransport

logger = structlog.get_logger(__name__)

TELEMETRY_SERVICE_UUID = "4fafc201-1fb5-459e-8fcc-c5c9c331914b"
TELEMETRY_CHARACTERISTIC_UUID = "beb5483e-36e1-4688-b7f5-ea07361b26a8"

_END = object()

Notification = Tuple[Optional[Exception], Optional[Union[bytes, str]]]


class NotificationChannel:
    """Single-consumer, in-order queue of notifications for one connection.

    Closing the channel ends iteration immediately, even if events are
    still queued.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(
        self,
        error: Optional[Exception],
        value: Optional[Union[bytes, str]],
    ) -> None:
        if not self._closed:
            self._queue.put_nowait((error, value))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_END)

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self._drain()

    async def _drain(self) -> AsyncIterator[Notification]:
        while True:
            item = await self._queue.get()
            if item is _END or self._closed:
                return
            yield item


class ConnectionManager:
    """Drives scan/connect/disconnect and the decode-and-forward pipeline."""

    def __init__(
        self,
        transport: RadioTransport,
        decoder: TelemetryDecoder,
        forwarder: TelemetryForwarder,
        registry: Optional[PeripheralRegistry] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._transport = transport
        self._decoder = decoder
        self._forwarder = forwarder
        self.registry = registry if registry is not None else PeripheralRegistry()
        self.scan_stream = ScanStream(transport)
        self._on_change = on_change

        self._state = ConnectionState.IDLE
        self._target: Optional[PeripheralHandle] = None
        self._reading: Optional[Reading] = None
        self._channel: Optional[NotificationChannel] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._scan_feed: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self.last_outcomes: Optional[Tuple[ForwardOutcome, ForwardOutcome]] = None

    # -- observable state ---------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected_device(self) -> Optional[PeripheralHandle]:
        if self._state is ConnectionState.CONNECTED:
            return self._target
        return None

    @property
    def last_reading(self) -> Optional[Reading]:
        return self._reading

    @property
    def devices(self) -> List[PeripheralHandle]:
        return self.registry.devices

    # -- scanning -----------------------------------------------------------

    async def start_scan(self) -> None:
        """Start (or restart) discovery with an empty registry."""
        if self._state not in (ConnectionState.IDLE, ConnectionState.SCANNING):
            raise InvalidState(f"Cannot scan while {self._state.value}")

        await _cancel(self._scan_feed)
        self._scan_feed = None
        self.registry.clear()
        try:
            await self.scan_stream.start()
        except Exception:
            self._set_state(ConnectionState.IDLE)
            raise
        self._scan_feed = asyncio.create_task(
            self.registry.consume(self.scan_stream.events())
        )
        self._set_state(ConnectionState.SCANNING)

    async def stop_scan(self) -> None:
        await self.scan_stream.stop()
        if self._state is ConnectionState.SCANNING:
            self._set_state(ConnectionState.IDLE)

    # -- connect ------------------------------------------------------------

    async def connect(self, handle: PeripheralHandle) -> None:
        """Connect to *handle* and start streaming telemetry.

        Raises ``InvalidState`` if a connection is active or pending, and
        ``ConnectFailed`` if the attempt fails or is cancelled by
        ``disconnect()``.  No automatic retry.
        """
        if self._state not in (ConnectionState.IDLE, ConnectionState.SCANNING):
            raise InvalidState(
                f"Cannot connect to {handle.identity} while {self._state.value}"
                + (f" to {self._target.identity}" if self._target else "")
            )

        self._target = handle
        self._set_state(ConnectionState.CONNECTING)
        task = asyncio.ensure_future(self._establish(handle))
        self._connect_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.wait({task})
            await self._reset_after_failure(handle)
            raise
        finally:
            if self._connect_task is task:
                self._connect_task = None

        exc = None if task.cancelled() else task.exception()
        if exc is not None:
            reason = str(exc) or type(exc).__name__
            logger.warning("connect_failed", identity=handle.identity, error=reason)
            await self._reset_after_failure(handle)
            raise ConnectFailed(handle.identity, reason) from exc

        if self._state is not ConnectionState.CONNECTED or self._target is not handle:
            logger.info("connect_cancelled", identity=handle.identity)
            raise ConnectFailed(handle.identity, "cancelled by disconnect")

        logger.info("peripheral_connected", identity=handle.identity, name=handle.name)

    async def _establish(self, handle: PeripheralHandle) -> None:
        await self.scan_stream.stop()
        await self._transport.connect(handle.identity, on_link_lost=self._link_lost)

        services = await self._transport.discover_services(handle.identity)
        characteristics = services.get(TELEMETRY_SERVICE_UUID, [])
        if TELEMETRY_CHARACTERISTIC_UUID not in characteristics:
            raise LookupError(
                f"{handle.identity} has no telemetry characteristic "
                f"{TELEMETRY_CHARACTERISTIC_UUID}"
            )

        channel = NotificationChannel()
        self._channel = channel
        self._set_state(ConnectionState.CONNECTED)
        self._spawn(self._consume(channel))
        await self._transport.subscribe(
            handle.identity,
            TELEMETRY_SERVICE_UUID,
            TELEMETRY_CHARACTERISTIC_UUID,
            channel.push,
        )

    async def _reset_after_failure(self, handle: PeripheralHandle) -> None:
        if self._target is not handle:
            # Already torn down by disconnect().
            return
        self._close_channel()
        try:
            await self._transport.cancel_connection(handle.identity)
        except Exception as exc:
            logger.warning(
                "cancel_connection_failed", identity=handle.identity, error=str(exc)
            )
        self._target = None
        self._reading = None
        self._set_state(ConnectionState.IDLE)

    # -- disconnect ---------------------------------------------------------

    async def disconnect(self) -> None:
        """Drop the connection and clear the last reading.

        The radio cancel is best-effort; local state is always reset.
        """
        previous, target = self._state, self._target
        if previous not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._clear_reading()
            return

        self._set_state(ConnectionState.DISCONNECTING)
        self._close_channel()
        self._clear_reading()
        try:
            pending = self._connect_task
            if pending is not None and not pending.done():
                pending.cancel()
                await asyncio.wait({pending})
            if target is not None:
                try:
                    await self._transport.cancel_connection(target.identity)
                except Exception as exc:
                    logger.warning(
                        "cancel_connection_failed",
                        identity=target.identity,
                        error=str(exc),
                    )
        finally:
            self._target = None
            self._set_state(ConnectionState.IDLE)
            logger.info(
                "peripheral_disconnected",
                identity=target.identity if target else None,
            )

    def _link_lost(self, identity: str) -> None:
        if self._target is None or self._target.identity != identity:
            return
        if self._state is not ConnectionState.CONNECTED:
            return
        logger.warning("link_lost", identity=identity)
        self._spawn(self.disconnect())

    # -- telemetry pipeline -------------------------------------------------

    async def _consume(self, channel: NotificationChannel) -> None:
        async for error, value in channel:
            try:
                reading = self._decoder.decode(value, error)
                if reading is None:
                    continue
                self._reading = reading
                self._changed()
            except Exception:
                logger.exception("telemetry_cycle_failed")
                continue
            # Sends run detached so a stalled sink never holds up the next event.
            self._spawn(self._forward(reading))

    async def _forward(self, reading: Reading) -> None:
        try:
            self.last_outcomes = await self._forwarder.forward(reading)
        except Exception:
            logger.exception("telemetry_forward_failed")

    # -- lifecycle ----------------------------------------------------------

    async def aclose(self) -> None:
        """Disconnect, stop scanning and wait for in-flight cycles."""
        await self.disconnect()
        await self.stop_scan()
        await _cancel(self._scan_feed)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # -- internal -----------------------------------------------------------

    def _close_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()

    def _clear_reading(self) -> None:
        if self._reading is not None:
            self._reading = None
            self._changed()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("connection_state", old=self._state.value, new=state.value)
        self._state = state
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


async def _cancel(task: Optional[asyncio.Task]) -> None:
    """Cancel *task* and wait for it to finish."""
    if task is None or task.done():
        return
    task.cancel()
    await asyncio.wait({task})
