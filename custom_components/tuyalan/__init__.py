"""Home Assistant integration for Tuya devices controlled over the LAN.

This module contains the entry points required by Home Assistant to set
up and tear down the integration.  Each config entry describes one
device; its :class:`~custom_components.tuyalan.api.client.TuyaDeviceSession`
keeps a persistent connection to the device and a
:class:`~custom_components.tuyalan.coordinator.TuyaDataUpdateCoordinator`
polls its data points at regular intervals.
"""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady

from .api.client import TuyaDeviceSession
from .const import (
    CONF_DEVICE_ID,
    CONF_HOST,
    CONF_LOCAL_KEY,
    CONF_PORT,
    CONF_PROTOCOL_VERSION,
    CONF_SCAN_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_PROTOCOL_VERSION,
    DEFAULT_SCAN_INTERVAL,
    DOMAIN,
    PLATFORMS,
)
from .coordinator import TuyaDataUpdateCoordinator

_LOGGER = logging.getLogger(__name__)


async def async_setup(hass: HomeAssistant, config: dict[str, Any]) -> bool:
    """Set up the component; devices are only configured through the UI."""
    return True


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up a Tuya device from a config entry.

    Creates the device session and the data coordinator, performs the
    first refresh and forwards the entry to the switch platform.
    """
    hass.data.setdefault(DOMAIN, {})

    host: str = entry.data[CONF_HOST]
    port: int = int(entry.data.get(CONF_PORT, DEFAULT_PORT))
    scan_interval: int = entry.options.get(CONF_SCAN_INTERVAL, DEFAULT_SCAN_INTERVAL)

    _LOGGER.debug("Setting up Tuya LAN entry %s for %s:%s", entry.entry_id, host, port)

    session = TuyaDeviceSession(
        host,
        entry.data[CONF_DEVICE_ID],
        entry.data[CONF_LOCAL_KEY],
        entry.data.get(CONF_PROTOCOL_VERSION, DEFAULT_PROTOCOL_VERSION),
        port,
        persistent=True,
    )
    coordinator = TuyaDataUpdateCoordinator(hass, session, scan_interval, config_entry=entry)

    try:
        await coordinator.async_config_entry_first_refresh()
    except ConfigEntryNotReady:
        await session.async_disconnect()
        raise

    hass.data[DOMAIN][entry.entry_id] = {
        "session": session,
        "coordinator": coordinator,
    }

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    # Reload the entry when the options (polling interval) change.
    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    return True


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload the entry after the user changed its options."""
    await hass.config_entries.async_reload(entry.entry_id)


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry and close the connection to the device."""
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        data = hass.data[DOMAIN].pop(entry.entry_id, {})
        session: TuyaDeviceSession | None = data.get("session")
        if session is not None:
            await session.async_disconnect()
    return unload_ok
