"""Tests for sensor_relay.decoder -- TelemetryDecoder."""

from __future__ import annotations

import base64
from datetime import datetime, timezone

import pytest

from sensor_relay.decoder import TelemetryDecoder
from sensor_relay.errors import MalformedPayload


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


# ---------------------------------------------------------------------------
# Well-formed payloads
# ---------------------------------------------------------------------------

class TestWellFormed:
    def test_base64_text(self) -> None:
        reading = TelemetryDecoder().decode(_b64("23.5,48.2"))
        assert reading is not None
        assert reading.temperature == "23.5"
        assert reading.humidity == "48.2"

    def test_raw_bytes(self) -> None:
        reading = TelemetryDecoder().decode(b"23.5,48.2")
        assert reading is not None
        assert (reading.temperature, reading.humidity) == ("23.5", "48.2")

    def test_timestamp_is_local_utc(self) -> None:
        before = datetime.now(timezone.utc)
        reading = TelemetryDecoder().decode(b"21.0,40.0")
        after = datetime.now(timezone.utc)
        assert reading is not None
        assert reading.timestamp.tzinfo is not None
        assert before <= reading.timestamp <= after

    def test_trailing_nul_and_newline_stripped(self) -> None:
        reading = TelemetryDecoder().decode(b"23.5,48.2\r\n\x00")
        assert reading is not None
        assert reading.humidity == "48.2"

    def test_fields_are_passed_through_as_text(self) -> None:
        """Lax policy: non-numeric text is carried as given."""
        reading = TelemetryDecoder().decode(_b64("abc,def"))
        assert reading is not None
        assert (reading.temperature, reading.humidity) == ("abc", "def")

    @pytest.mark.parametrize("text", ["0,0", "-4.5,99.9", "23,48", " 23.5 , 48.2 "])
    def test_two_non_empty_fields_always_decode(self, text: str) -> None:
        assert TelemetryDecoder().decode(text.encode()) is not None


# ---------------------------------------------------------------------------
# Discarded events
# ---------------------------------------------------------------------------

class TestDiscarded:
    def test_no_comma(self) -> None:
        assert TelemetryDecoder().decode(_b64("23.5")) is None

    def test_too_many_fields(self) -> None:
        assert TelemetryDecoder().decode(_b64("1,2,3")) is None

    def test_empty_field(self) -> None:
        assert TelemetryDecoder().decode(_b64("23.5,")) is None

    def test_empty_value(self) -> None:
        decoder = TelemetryDecoder()
        assert decoder.decode("") is None
        assert decoder.decode(b"") is None
        assert decoder.decode(None) is None

    def test_transport_error(self) -> None:
        reading = TelemetryDecoder().decode(b"23.5,48.2", RuntimeError("GATT error"))
        assert reading is None

    def test_invalid_base64(self) -> None:
        assert TelemetryDecoder().decode("not base64!!") is None

    def test_non_utf8_bytes(self) -> None:
        assert TelemetryDecoder().decode(b"\xff\xfe,\x80") is None


# ---------------------------------------------------------------------------
# Strict numeric policy
# ---------------------------------------------------------------------------

class TestStrictNumeric:
    def test_accepts_numbers(self) -> None:
        reading = TelemetryDecoder(strict_numeric=True).decode(b"23.5,48.2")
        assert reading is not None

    def test_rejects_text(self) -> None:
        assert TelemetryDecoder(strict_numeric=True).decode(b"abc,def") is None

    def test_rejects_non_finite(self) -> None:
        assert TelemetryDecoder(strict_numeric=True).decode(b"nan,48.2") is None

    def test_parse_raises_malformed(self) -> None:
        with pytest.raises(MalformedPayload, match="temperature is not numeric"):
            TelemetryDecoder(strict_numeric=True).parse(b"warm,48.2")


def test_parse_reports_field_count() -> None:
    with pytest.raises(MalformedPayload, match="got 1"):
        TelemetryDecoder().parse(b"23.5")
