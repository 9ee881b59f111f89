"""Tests for the Tuya LAN data coordinator.

These tests verify that the
:class:`~custom_components.tuyalan.coordinator.TuyaDataUpdateCoordinator`
queries the device session for its data points and reports protocol
failures as :class:`UpdateFailed`.  A dummy session is used so the tests
run without network access.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from homeassistant.helpers.update_coordinator import UpdateFailed

from custom_components.tuyalan.api.errors import NetworkError
from custom_components.tuyalan.coordinator import TuyaDataUpdateCoordinator


class DummySession:
    """Stub of TuyaDeviceSession returning predetermined data points."""

    def __init__(self, dps: dict | None = None, error: Exception | None = None) -> None:
        self.host = "192.168.1.50"
        self.device_id = "bf0123456789abcdef"
        self.dps = dps or {}
        self.error = error
        self.calls = 0

    async def async_get_dps(self) -> dict:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.dps


@pytest.mark.asyncio
async def test_coordinator_returns_data_points() -> None:
    """The coordinator returns the values reported by the session."""
    session = DummySession({1: True, 2: 25})
    # A bare SimpleNamespace suffices for hass since _async_update_data
    # does not reference it.
    coordinator = TuyaDataUpdateCoordinator(SimpleNamespace(), session, scan_interval=10)
    assert await coordinator._async_update_data() == {1: True, 2: 25}
    assert session.calls == 1
    assert coordinator.update_interval.total_seconds() == 10


@pytest.mark.asyncio
async def test_coordinator_wraps_protocol_errors() -> None:
    session = DummySession(error=NetworkError("unreachable"))
    coordinator = TuyaDataUpdateCoordinator(SimpleNamespace(), session, scan_interval=10)
    with pytest.raises(UpdateFailed):
        await coordinator._async_update_data()
