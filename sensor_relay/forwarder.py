"""Dual-sink forwarding of readings: MQTT broker and HTTP collector.

Each reading gets exactly one attempt per sink.  The two attempts run
concurrently and a failure in one never affects the other:

* no queue, no retry -- a reading that fails both sinks is lost;
* the broker connection is persistent and reopened on the next reading
  after a failure.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import AsyncExitStack
from typing import Any, Callable, Optional, Tuple

import aiomqtt
import httpx
import structlog

from sensor_relay.errors import SinkFailure
from sensor_relay.schemas import (
    BrokerEnvelope,
    CollectorPayload,
    ForwardOutcome,
    Reading,
)

logger = structlog.get_logger(__name__)

# Fixed endpoints.
BROKER_HOST = "mosquitto"
BROKER_PORT = 1883
BROKER_TOPIC = "/tmp/hum"
COLLECTOR_URL = "http://127.0.0.1:8000/api/sendData"

BROKER_SENT_NOTICE = "The MQTT is sending the data"
BROKER_FAILED_NOTICE = "Error with MQTT"

NoticeCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Broker sink
# ---------------------------------------------------------------------------

class BrokerSink:
    """Publishes ``BrokerEnvelope`` JSON over a persistent MQTT connection.

    *client_factory* returns an unopened async-context-manager client with
    an ``aiomqtt.Client``-compatible ``publish``; tests pass a fake.
    """

    name = "broker"

    def __init__(
        self,
        host: str = BROKER_HOST,
        port: int = BROKER_PORT,
        topic: str = BROKER_TOPIC,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._host = host
        self._port = port
        self._topic = topic
        self._client_factory = client_factory or self._default_client
        self._client: Any = None
        self._stack: Optional[AsyncExitStack] = None
        self._open_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def send(self, reading: Reading) -> None:
        payload = BrokerEnvelope.from_reading(reading).model_dump_json()
        try:
            client = await self._ensure_client()
            await client.publish(self._topic, payload=payload)
        except (aiomqtt.MqttError, OSError) as exc:
            await self.close()
            raise SinkFailure(self.name, str(exc) or type(exc).__name__) from exc
        logger.info(
            "broker_published",
            topic=self._topic,
            payload_bytes=len(payload),
        )

    async def close(self) -> None:
        stack, self._stack, self._client = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except (aiomqtt.MqttError, OSError) as exc:
            logger.warning("broker_close_failed", error=str(exc))

    # -- internal -----------------------------------------------------------

    async def _ensure_client(self) -> Any:
        async with self._open_lock:
            if self._client is None:
                stack = AsyncExitStack()
                client = await stack.enter_async_context(self._client_factory())
                self._stack, self._client = stack, client
                logger.info("broker_connected", host=self._host, port=self._port)
            return self._client

    def _default_client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            self._host,
            port=self._port,
            identifier=f"sensor-relay-{uuid.uuid4().hex[:8]}",
        )


# ---------------------------------------------------------------------------
# Collector sink
# ---------------------------------------------------------------------------

class CollectorSink:
    """POSTs ``CollectorPayload`` JSON to the HTTP collector."""

    name = "collector"

    def __init__(
        self,
        url: str = COLLECTOR_URL,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- public API ---------------------------------------------------------

    async def send(self, reading: Reading) -> Optional[str]:
        """POST *reading*.  Returns the response ``message`` field, if any."""
        if self._client is None:
            raise RuntimeError("CollectorSink.start() must be called before sending")

        body = CollectorPayload.from_reading(reading).model_dump()
        try:
            response = await self._client.post(self._url, json=body)
        except httpx.RequestError as exc:
            raise SinkFailure(
                self.name, f"{type(exc).__name__}: {exc}"
            ) from exc

        if not response.is_success:
            raise SinkFailure(
                self.name, f"{response.status_code} - {response.text[:500]}"
            )

        logger.info("collector_posted", status=response.status_code)
        try:
            result = response.json()
        except ValueError:
            logger.warning("collector_response_not_json", body=response.text[:200])
            return None
        if isinstance(result, dict) and result.get("message") is not None:
            return str(result["message"])
        return None


# ---------------------------------------------------------------------------
# Forwarder
# ---------------------------------------------------------------------------

class TelemetryForwarder:
    """Fans a reading out to both sinks with isolated failure handling."""

    def __init__(
        self,
        broker: BrokerSink,
        collector: CollectorSink,
        on_notice: Optional[NoticeCallback] = None,
    ) -> None:
        self._broker = broker
        self._collector = collector
        self._on_notice = on_notice

    async def start(self) -> None:
        await self._collector.start()

    async def close(self) -> None:
        await self._broker.close()
        await self._collector.close()

    async def forward(self, reading: Reading) -> Tuple[ForwardOutcome, ForwardOutcome]:
        """Send *reading* to both sinks.

        Returns ``(broker_outcome, collector_outcome)``.
        """
        broker_outcome, collector_outcome = await asyncio.gather(
            self._to_broker(reading),
            self._to_collector(reading),
        )
        return broker_outcome, collector_outcome

    # -- internal -----------------------------------------------------------

    async def _to_broker(self, reading: Reading) -> ForwardOutcome:
        try:
            await self._broker.send(reading)
        except SinkFailure as exc:
            logger.error("broker_publish_failed", reason=exc.reason)
            self._notice(BROKER_FAILED_NOTICE)
            return ForwardOutcome.failed("broker", exc.reason)
        except Exception as exc:
            logger.exception("broker_publish_crashed")
            self._notice(BROKER_FAILED_NOTICE)
            return ForwardOutcome.failed("broker", f"{type(exc).__name__}: {exc}")
        self._notice(BROKER_SENT_NOTICE)
        return ForwardOutcome.ok("broker")

    async def _to_collector(self, reading: Reading) -> ForwardOutcome:
        try:
            message = await self._collector.send(reading)
        except SinkFailure as exc:
            logger.error("collector_post_failed", reason=exc.reason)
            return ForwardOutcome.failed("collector", exc.reason)
        except Exception as exc:
            logger.exception("collector_post_crashed")
            return ForwardOutcome.failed("collector", f"{type(exc).__name__}: {exc}")
        if message:
            self._notice(message)
        return ForwardOutcome.ok("collector")

    def _notice(self, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(message)
