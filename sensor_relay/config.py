"""Relay configuration via environment variables.

Uses pydantic-settings so every field can be overridden with an env var
(``RADIO``, ``LOG_LEVEL``, ...).  Simulation is the zero-hardware default.

Broker and collector endpoints are intentionally not settings; they are
fixed in ``sensor_relay.forwarder``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class RelaySettings(BaseSettings):
    """Sensor relay runtime settings."""

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    # -- radio --------------------------------------------------------------
    radio: str = Field(
        default="sim",
        description="'ble' for the host Bluetooth adapter, or 'sim' for simulation",
    )
    device_name_filter: str = Field(
        default="ESP32_BLE_Server",
        description="Substring an advertised name must contain to be listed",
    )
    scan_timeout_seconds: float = Field(
        default=15.0,
        description="How long the headless driver waits for a peripheral",
    )
    reading_timeout_seconds: float = Field(
        default=30.0,
        description="With --once, how long to wait for the first reading",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        description="Pause before rescanning after a failed or lost link",
    )
    android_api_level: Optional[int] = Field(
        default=None,
        description="Platform API level when running on Android",
    )

    # -- simulation ---------------------------------------------------------
    sim_scenario: str = Field(
        default="steady",
        description="Simulation scenario name (from simulation_scenarios.json)",
    )

    # -- decoding -----------------------------------------------------------
    strict_numeric: bool = Field(
        default=False,
        description="Reject readings whose fields are not parseable numbers",
    )

    # -- behaviour ----------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: 'console' or 'json'",
    )

    # -- derived ------------------------------------------------------------
    @property
    def is_simulation(self) -> bool:
        """Return ``True`` when the relay is running against the simulator."""
        return self.radio.strip().lower() == "sim"
