"""Exception taxonomy for the relay core."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error raised by ``sensor_relay``."""


class PermissionDenied(RelayError):
    """A required radio capability was not granted."""


class ScanError(RelayError):
    """The radio could not start (or keep) a discovery session."""


class ConnectFailed(RelayError):
    """A connection attempt did not reach the connected state."""

    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"Failed to connect to {identity}: {reason}")
        self.identity = identity
        self.reason = reason


class InvalidState(RelayError):
    """An operation was requested in a state that does not allow it."""


class MalformedPayload(RelayError):
    """A characteristic value did not decode to a temperature/humidity pair."""


class SinkFailure(RelayError):
    """A single downstream sink rejected or could not receive a reading."""

    def __init__(self, sink: str, reason: str) -> None:
        super().__init__(f"{sink} sink failed: {reason}")
        self.sink = sink
        self.reason = reason
