"""Tests for the Tuya LAN switch entities.

The entities are built on a stub coordinator holding the data points of
the first refresh; turning a switch on or off must write the data point
through the session and request a refresh.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List

import pytest

from custom_components.tuyalan.const import DOMAIN
from custom_components.tuyalan.switch import TuyaDpSwitch, async_setup_entry


class DummySession:
    def __init__(self) -> None:
        self.device_id = "bf0123456789abcdef"
        self.writes: List[tuple] = []

    async def async_set_dp(self, dp: int, value: Any, *, allow_empty: bool = False) -> None:
        self.writes.append((dp, value, allow_empty))


class DummyCoordinator:
    def __init__(self, data: dict) -> None:
        self.data = data
        self.session = DummySession()
        self.refreshes = 0

    async def async_request_refresh(self) -> None:
        self.refreshes += 1


@pytest.mark.asyncio
async def test_one_switch_per_boolean_data_point() -> None:
    coordinator = DummyCoordinator({1: True, 2: 25, 3: False, 4: "white"})
    hass = SimpleNamespace(data={DOMAIN: {"entry": {"coordinator": coordinator}}})
    added: List[TuyaDpSwitch] = []
    await async_setup_entry(hass, SimpleNamespace(entry_id="entry"), added.extend)
    assert [switch.unique_id for switch in added] == [
        "bf0123456789abcdef_1",
        "bf0123456789abcdef_3",
    ]
    assert added[0].is_on is True
    assert added[1].is_on is False


@pytest.mark.asyncio
async def test_turning_switch_writes_data_point() -> None:
    coordinator = DummyCoordinator({1: False})
    switch = TuyaDpSwitch(coordinator, 1)
    await switch.async_turn_on()
    await switch.async_turn_off()
    assert coordinator.session.writes == [(1, True, True), (1, False, True)]
    assert coordinator.refreshes == 2
