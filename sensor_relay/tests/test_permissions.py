"""Tests for sensor_relay.permissions -- PermissionGate."""

from __future__ import annotations

from typing import Iterable, List

import pytest

from sensor_relay.errors import PermissionDenied
from sensor_relay.permissions import (
    ACCESS_FINE_LOCATION,
    BLUETOOTH_CONNECT,
    BLUETOOTH_SCAN,
    PermissionGate,
    required_permissions,
)


class _Requester:
    """Grants everything except *denied*; records the request order."""

    def __init__(self, denied: Iterable[str] = ()) -> None:
        self.denied = set(denied)
        self.requested: List[str] = []

    async def request(self, permission: str) -> bool:
        self.requested.append(permission)
        return permission not in self.denied


def test_required_permissions_by_api_level() -> None:
    assert required_permissions(30) == (ACCESS_FINE_LOCATION,)
    assert required_permissions(None) == (ACCESS_FINE_LOCATION,)
    assert required_permissions(31) == (
        BLUETOOTH_SCAN,
        BLUETOOTH_CONNECT,
        ACCESS_FINE_LOCATION,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("platform", ["linux", "darwin", "win32", "ios"])
async def test_non_android_always_authorized(platform: str) -> None:
    gate = PermissionGate(platform=platform)
    assert await gate.ensure_authorized() is True


@pytest.mark.asyncio
async def test_legacy_android_requests_location_only() -> None:
    requester = _Requester()
    gate = PermissionGate(platform="android", api_level=29, requester=requester)
    assert await gate.ensure_authorized() is True
    assert requester.requested == [ACCESS_FINE_LOCATION]


@pytest.mark.asyncio
async def test_modern_android_requests_all_in_order() -> None:
    requester = _Requester()
    gate = PermissionGate(platform="android", api_level=33, requester=requester)
    assert await gate.ensure_authorized() is True
    assert requester.requested == [BLUETOOTH_SCAN, BLUETOOTH_CONNECT, ACCESS_FINE_LOCATION]


@pytest.mark.asyncio
async def test_single_denial_fails() -> None:
    requester = _Requester(denied={BLUETOOTH_CONNECT})
    gate = PermissionGate(platform="android", api_level=31, requester=requester)
    assert await gate.ensure_authorized() is False
    # Stops at the first denial.
    assert requester.requested == [BLUETOOTH_SCAN, BLUETOOTH_CONNECT]


@pytest.mark.asyncio
async def test_idempotent() -> None:
    requester = _Requester()
    gate = PermissionGate(platform="android", api_level=31, requester=requester)
    assert await gate.ensure_authorized() is True
    assert await gate.ensure_authorized() is True


@pytest.mark.asyncio
async def test_android_without_requester_denies() -> None:
    gate = PermissionGate(platform="android", api_level=33)
    assert await gate.ensure_authorized() is False


@pytest.mark.asyncio
async def test_require_authorized_raises() -> None:
    gate = PermissionGate(
        platform="android", api_level=28, requester=_Requester(denied={ACCESS_FINE_LOCATION})
    )
    with pytest.raises(PermissionDenied):
        await gate.require_authorized()
