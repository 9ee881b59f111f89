"""Switch platform for the Tuya LAN integration.

One switch is created for every data point whose value was a boolean in
the first refresh of the coordinator, which covers the relays of plugs,
power strips and wall switches.  The state is read from the coordinator
and changes are written with
:meth:`~custom_components.tuyalan.api.client.TuyaDeviceSession.async_set_dp`.
"""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.components.switch import SwitchEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN
from .coordinator import TuyaDataUpdateCoordinator

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities,
) -> None:
    """Set up one switch per boolean data point of the device."""
    coordinator: TuyaDataUpdateCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    switches = [
        TuyaDpSwitch(coordinator, dp)
        for dp, value in sorted((coordinator.data or {}).items())
        if isinstance(value, bool)
    ]
    if not switches:
        _LOGGER.warning("Device %s has no boolean data points", coordinator.session.device_id)
        return
    async_add_entities(switches)


class TuyaDpSwitch(CoordinatorEntity, SwitchEntity):
    """A boolean data point exposed as a switch."""

    def __init__(self, coordinator: TuyaDataUpdateCoordinator, dp: int) -> None:
        super().__init__(coordinator)
        self._dp = dp
        device_id = coordinator.session.device_id
        self._attr_name = f"Tuya {device_id} {dp}"
        self._attr_unique_id = f"{device_id}_{dp}"

    @property
    def is_on(self) -> bool | None:
        value = (self.coordinator.data or {}).get(self._dp)
        return value if isinstance(value, bool) else None

    async def async_turn_on(self, **kwargs: Any) -> None:
        await self._async_set(True)

    async def async_turn_off(self, **kwargs: Any) -> None:
        await self._async_set(False)

    async def _async_set(self, value: bool) -> None:
        await self.coordinator.session.async_set_dp(self._dp, value, allow_empty=True)
        await self.coordinator.async_request_refresh()
