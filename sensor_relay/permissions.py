"""Runtime radio authorization.

Android gates BLE behind runtime permissions; the set to request depends
on the platform API level.  Every other platform the relay runs on
(Linux/BlueZ, macOS, Windows) authorizes at the OS level, so the gate is
a no-op there.
"""

from __future__ import annotations

import sys
from typing import Optional, Protocol, Sequence

import structlog

from sensor_relay.errors import PermissionDenied

logger = structlog.get_logger(__name__)

ACCESS_FINE_LOCATION = "android.permission.ACCESS_FINE_LOCATION"
BLUETOOTH_SCAN = "android.permission.BLUETOOTH_SCAN"
BLUETOOTH_CONNECT = "android.permission.BLUETOOTH_CONNECT"

# API 31 (Android 12) split scan/connect out of the location permission.
MODERN_API_LEVEL = 31


class PermissionRequester(Protocol):
    """Platform hook that prompts for a single permission."""

    async def request(self, permission: str) -> bool:
        """Return ``True`` if *permission* is granted."""
        ...


def required_permissions(api_level: Optional[int]) -> Sequence[str]:
    """Permissions needed for scanning and connecting at *api_level*.

    An unknown level is treated as legacy.
    """
    if api_level is not None and api_level >= MODERN_API_LEVEL:
        return (BLUETOOTH_SCAN, BLUETOOTH_CONNECT, ACCESS_FINE_LOCATION)
    return (ACCESS_FINE_LOCATION,)


class PermissionGate:
    """Checks radio authorization before any scan or connect."""

    def __init__(
        self,
        platform: Optional[str] = None,
        api_level: Optional[int] = None,
        requester: Optional[PermissionRequester] = None,
    ) -> None:
        self._platform = (platform or sys.platform).lower()
        self._api_level = api_level
        self._requester = requester

    @property
    def requires_runtime_permissions(self) -> bool:
        return self._platform == "android"

    async def ensure_authorized(self) -> bool:
        """Request every required permission in turn.

        Returns ``False`` on the first denial.  Safe to call before every
        scan.
        """
        if not self.requires_runtime_permissions:
            return True

        if self._requester is None:
            logger.error("permission_requester_missing", platform=self._platform)
            return False

        for permission in required_permissions(self._api_level):
            granted = await self._requester.request(permission)
            if not granted:
                logger.warning(
                    "permission_denied",
                    permission=permission,
                    api_level=self._api_level,
                )
                return False

        logger.debug("permissions_granted", api_level=self._api_level)
        return True

    async def require_authorized(self) -> None:
        """Like ``ensure_authorized`` but raise ``PermissionDenied``."""
        if not await self.ensure_authorized():
            raise PermissionDenied("Bluetooth permissions were not granted")
