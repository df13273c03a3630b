"""Characteristic value -> ``Reading``.

The sensor firmware notifies ``"<temperature>,<humidity>"`` as ASCII.
Mobile BLE stacks hand that value over base64-encoded; bleak hands over
the raw bytes.  Both are accepted.
"""

from __future__ import annotations

import base64
import binascii
import math
from typing import Optional, Tuple, Union

import structlog

from sensor_relay.errors import MalformedPayload
from sensor_relay.schemas import Reading

logger = structlog.get_logger(__name__)

_SEPARATOR = ","


class TelemetryDecoder:
    """Validated-or-rejected parsing of telemetry notifications.

    With ``strict_numeric`` enabled, fields must also parse as finite
    floats; otherwise they are passed through as the sensor sent them.
    """

    def __init__(self, strict_numeric: bool = False) -> None:
        self._strict_numeric = strict_numeric

    def decode(
        self,
        value: Optional[Union[bytes, str]],
        error: Optional[Exception] = None,
    ) -> Optional[Reading]:
        """Return a ``Reading``, or ``None`` if the event is discarded.

        Never raises: transport errors and malformed payloads are logged.
        """
        if error is not None:
            logger.warning("notification_error", error=str(error))
            return None
        if not value:
            logger.warning("notification_empty")
            return None

        try:
            temperature, humidity = self.parse(value)
        except MalformedPayload as exc:
            logger.warning("payload_malformed", reason=str(exc))
            return None

        reading = Reading(temperature=temperature, humidity=humidity)
        logger.debug(
            "reading_decoded",
            temperature=reading.temperature,
            humidity=reading.humidity,
        )
        return reading

    def parse(self, value: Union[bytes, str]) -> Tuple[str, str]:
        """Split *value* into ``(temperature, humidity)`` text.

        Raises ``MalformedPayload`` on anything but two non-empty fields.
        """
        text = _to_text(value)
        fields = text.split(_SEPARATOR)
        if len(fields) != 2:
            raise MalformedPayload(
                f"expected 2 comma-separated fields, got {len(fields)}: {text!r}"
            )
        temperature, humidity = (f.strip() for f in fields)
        if not temperature or not humidity:
            raise MalformedPayload(f"empty field in {text!r}")
        if self._strict_numeric:
            _require_number("temperature", temperature)
            _require_number("humidity", humidity)
        return temperature, humidity


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _to_text(value: Union[bytes, str]) -> str:
    if isinstance(value, str):
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedPayload(f"value is not valid base64: {value!r}") from exc
    else:
        raw = value
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedPayload(f"value is not UTF-8 text: {raw.hex()}") from exc
    # Arduino sketches often notify a C string including its terminator.
    return text.strip().strip("\x00")


def _require_number(field: str, text: str) -> None:
    try:
        number = float(text)
    except ValueError:
        raise MalformedPayload(f"{field} is not numeric: {text!r}") from None
    if not math.isfinite(number):
        raise MalformedPayload(f"{field} is not finite: {text!r}")
