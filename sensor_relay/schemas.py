"""Pydantic v2 models shared by the relay core and its sinks."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


# ---------------------------------------------------------------------------
# Radio-side models
# ---------------------------------------------------------------------------

class PeripheralHandle(BaseModel):
    """A peripheral as observed in an advertisement.

    ``identity`` is the platform-assigned address (MAC on Linux/Windows,
    UUID on macOS) and is the deduplication key.
    """

    model_config = {"frozen": True}

    identity: str = Field(..., min_length=1, description="Platform address/id")
    name: Optional[str] = Field(default=None, description="Advertised name")
    rssi: Optional[int] = Field(default=None, description="Signal strength (dBm)")


class Reading(BaseModel):
    """One decoded temperature/humidity sample.

    Values are carried as the numeric text the sensor sent; ``timestamp``
    is captured locally at decode time.
    """

    model_config = {"frozen": True}

    temperature: str = Field(..., description="Temperature in degC")
    humidity: str = Field(..., description="Relative humidity in %RH")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Capture time in UTC",
    )

    @field_validator("temperature", "humidity")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reading fields must be non-empty")
        return v


# ---------------------------------------------------------------------------
# Sink wire models
# ---------------------------------------------------------------------------

def _iso_utc(ts: datetime) -> str:
    """Render *ts* like JavaScript's ``toISOString`` (ms precision, ``Z``)."""
    return (
        ts.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class BrokerEnvelope(BaseModel):
    """JSON envelope published to the MQTT broker."""

    temperature: str
    humidity: str
    timestamp: str

    @classmethod
    def from_reading(cls, reading: Reading) -> "BrokerEnvelope":
        return cls(
            temperature=reading.temperature,
            humidity=reading.humidity,
            timestamp=_iso_utc(reading.timestamp),
        )


class CollectorPayload(BaseModel):
    """JSON body POSTed to the HTTP collector."""

    temperature: str
    humidity: str

    @classmethod
    def from_reading(cls, reading: Reading) -> "CollectorPayload":
        return cls(temperature=reading.temperature, humidity=reading.humidity)


SinkName = Literal["broker", "collector"]


class ForwardOutcome(BaseModel):
    """Result of one sink attempt for one reading."""

    sink: SinkName
    sent: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls, sink: SinkName) -> "ForwardOutcome":
        return cls(sink=sink, sent=True)

    @classmethod
    def failed(cls, sink: SinkName, reason: str) -> "ForwardOutcome":
        return cls(sink=sink, sent=False, reason=reason)


# ---------------------------------------------------------------------------
# Observable state
# ---------------------------------------------------------------------------

class RelayState(BaseModel):
    """Read-only view rendered by the presentation layer."""

    model_config = {"frozen": True}

    state: ConnectionState = ConnectionState.IDLE
    devices: List[PeripheralHandle] = Field(default_factory=list)
    connected_device: Optional[PeripheralHandle] = None
    temperature: Optional[str] = None
    humidity: Optional[str] = None
    notices: List[str] = Field(default_factory=list)
