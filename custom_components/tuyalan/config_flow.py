"""Configuration flow for the Tuya LAN integration.

The flow asks for the connection details of a device (host, device id,
local key, protocol version and port) and validates them by querying
the device's data points.  An options flow lets the user change the
polling interval afterwards.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.data_entry_flow import FlowResult

from .api.client import TuyaDeviceSession
from .api.errors import HandshakeError, IntegrityError, TuyaLanError
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
    PROTOCOL_VERSIONS,
)

_LOGGER = logging.getLogger(__name__)


async def _async_validate_input(hass: HomeAssistant, data: Dict[str, Any]) -> None:
    """Check that the device answers a status query with these settings.

    Raises ``ValueError`` for a malformed local key and the protocol
    errors of :mod:`.api.errors` when the device cannot be queried.
    """
    session = TuyaDeviceSession(
        data[CONF_HOST],
        data[CONF_DEVICE_ID],
        data[CONF_LOCAL_KEY],
        data[CONF_PROTOCOL_VERSION],
        int(data[CONF_PORT]),
    )
    try:
        await session.async_get_dps()
    finally:
        await session.async_disconnect()


def _user_schema(defaults: Dict[str, Any]) -> vol.Schema:
    return vol.Schema(
        {
            vol.Required(CONF_HOST, default=defaults.get(CONF_HOST, "")): str,
            vol.Required(CONF_DEVICE_ID, default=defaults.get(CONF_DEVICE_ID, "")): str,
            vol.Required(CONF_LOCAL_KEY, default=defaults.get(CONF_LOCAL_KEY, "")): str,
            vol.Required(
                CONF_PROTOCOL_VERSION,
                default=defaults.get(CONF_PROTOCOL_VERSION, DEFAULT_PROTOCOL_VERSION),
            ): vol.In(PROTOCOL_VERSIONS),
            vol.Required(CONF_PORT, default=defaults.get(CONF_PORT, DEFAULT_PORT)): int,
        }
    )


class TuyaLanConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle a config flow for a Tuya device."""

    VERSION = 1

    def __init__(self) -> None:
        self._errors: Dict[str, str] = {}

    async def async_step_user(self, user_input: Dict[str, Any] | None = None) -> FlowResult:
        """Handle the initial step of the config flow."""
        self._errors.clear()
        if user_input is not None:
            for entry in self._async_current_entries():
                if entry.data.get(CONF_DEVICE_ID) == user_input[CONF_DEVICE_ID]:
                    return self.async_abort(reason="already_configured")
            try:
                await _async_validate_input(self.hass, user_input)
            except (HandshakeError, IntegrityError, ValueError) as err:
                _LOGGER.error("Device %s rejected the local key: %s", user_input[CONF_HOST], err)
                self._errors["base"] = "invalid_auth"
            except (TuyaLanError, OSError) as err:
                _LOGGER.error("Error connecting to %s: %s", user_input[CONF_HOST], err)
                self._errors["base"] = "cannot_connect"
            if not self._errors:
                return self.async_create_entry(
                    title=f"Tuya {user_input[CONF_DEVICE_ID]}", data=user_input
                )

        return self.async_show_form(
            step_id="user",
            data_schema=_user_schema(user_input or {}),
            errors=self._errors,
        )

    @staticmethod
    def async_get_options_flow(config_entry: ConfigEntry) -> "TuyaLanOptionsFlow":
        return TuyaLanOptionsFlow()


class TuyaLanOptionsFlow(config_entries.OptionsFlow):
    """Handle the options of a Tuya device entry."""

    async def async_step_init(self, user_input: Dict[str, Any] | None = None) -> FlowResult:
        """Let the user change the polling interval."""
        if user_input is not None:
            return self.async_create_entry(title="", data=user_input)

        current = self.config_entry.options.get(CONF_SCAN_INTERVAL, DEFAULT_SCAN_INTERVAL)
        return self.async_show_form(
            step_id="init",
            data_schema=vol.Schema(
                {
                    vol.Optional(CONF_SCAN_INTERVAL, default=current): vol.All(
                        int, vol.Range(min=1)
                    ),
                }
            ),
        )
