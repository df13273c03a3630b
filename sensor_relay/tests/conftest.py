"""Shared pytest fixtures for sensor relay tests."""

from __future__ import annotations

import pytest

from sensor_relay.tests.fakes import FakeBroker, FakeTransport
from sensor_relay.transport import simulation


@pytest.fixture(autouse=True)
def _fresh_scenarios(monkeypatch: pytest.MonkeyPatch) -> None:
    """Each test loads the bundled scenarios from disk."""
    monkeypatch.setattr(simulation, "_scenarios_cache", None)


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def broker() -> FakeBroker:
    return FakeBroker()
