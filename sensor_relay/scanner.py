"""Peripheral discovery: a restartable scan stream and the registry it feeds."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Dict, List, NamedTuple, Optional

import structlog

from sensor_relay.schemas import PeripheralHandle
from sensor_relay.transport.base import RadioTransport

logger = structlog.get_logger(__name__)

DEFAULT_NAME_FILTER = "ESP32_BLE_Server"


class ScanEvent(NamedTuple):
    """One discovery event; exactly one field is set."""

    error: Optional[Exception] = None
    handle: Optional[PeripheralHandle] = None


_END = object()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class PeripheralRegistry:
    """Insertion-ordered set of matching peripherals, unique by identity."""

    def __init__(self, name_filter: str = DEFAULT_NAME_FILTER) -> None:
        self._name_filter = name_filter
        self._entries: Dict[str, PeripheralHandle] = {}

    def matches(self, handle: PeripheralHandle) -> bool:
        return handle.name is not None and self._name_filter in handle.name

    def admit(self, handle: PeripheralHandle) -> bool:
        """Add *handle* if it matches and is new.  Returns ``True`` if added."""
        if not self.matches(handle) or handle.identity in self._entries:
            return False
        self._entries[handle.identity] = handle
        logger.info(
            "peripheral_discovered",
            identity=handle.identity,
            name=handle.name,
            rssi=handle.rssi,
        )
        return True

    def clear(self) -> None:
        self._entries.clear()

    def get(self, identity: str) -> Optional[PeripheralHandle]:
        return self._entries.get(identity)

    @property
    def devices(self) -> List[PeripheralHandle]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    async def consume(self, events: AsyncIterator[ScanEvent]) -> None:
        """Admit handles from *events* until the stream ends.

        Scan errors are logged and skipped.
        """
        async for event in events:
            if event.error is not None:
                logger.warning("scan_error", error=str(event.error))
                continue
            if event.handle is not None:
                self.admit(event.handle)


# ---------------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------------

class ScanStream:
    """Lazy, unbounded stream of ``ScanEvent`` from a transport scan.

    Each ``start()`` opens a new session; iterators of the previous
    session end when it is stopped or restarted.
    """

    def __init__(self, transport: RadioTransport) -> None:
        self._transport = transport
        self._queue: Optional[asyncio.Queue] = None

    @property
    def active(self) -> bool:
        return self._queue is not None

    async def start(self) -> None:
        """Begin a scan session, restarting any active one.

        Raises ``ScanError`` if the transport cannot scan.
        """
        if self.active:
            await self.stop()

        queue: asyncio.Queue = asyncio.Queue()

        def _on_event(
            error: Optional[Exception], handle: Optional[PeripheralHandle]
        ) -> None:
            queue.put_nowait(ScanEvent(error=error, handle=handle))

        self._queue = queue
        try:
            await self._transport.start_scan(_on_event)
        except BaseException:
            self._queue = None
            queue.put_nowait(_END)
            raise
        logger.info("scan_started")

    async def stop(self) -> None:
        """Halt the scan.  No-op if no session is active."""
        queue, self._queue = self._queue, None
        if queue is None:
            return
        queue.put_nowait(_END)
        await self._transport.stop_scan()
        logger.info("scan_stopped")

    def __aiter__(self) -> AsyncIterator[ScanEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[ScanEvent]:
        """Yield events of the current session until it ends."""
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            if event is _END:
                return
            yield event
