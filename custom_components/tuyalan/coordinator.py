"""Data update coordinator for the Tuya LAN integration.

The coordinator periodically asks the device for the value of all its
data points through
:class:`~custom_components.tuyalan.api.client.TuyaDeviceSession` and
exposes them via the :attr:`data` attribute, keyed by data point id.
Entities read their state from ``self.coordinator.data``.

The update interval can be configured by the user via the options flow
or falls back to :data:`~custom_components.tuyalan.const.DEFAULT_SCAN_INTERVAL`.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Optional

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import (
    DataUpdateCoordinator,
    UpdateFailed,
)

from .api.client import TuyaDeviceSession
from .api.errors import TuyaLanError
from .api.models import DpValue

_LOGGER = logging.getLogger(__name__)


class TuyaDataUpdateCoordinator(DataUpdateCoordinator[Dict[int, DpValue]]):
    """Class to manage fetching the data points of a single device."""

    def __init__(
        self,
        hass: HomeAssistant,
        session: TuyaDeviceSession,
        scan_interval: int,
        config_entry: Optional[ConfigEntry] = None,
    ) -> None:
        self.session: TuyaDeviceSession = session
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=f"Tuya LAN {session.device_id}",
            update_interval=timedelta(seconds=scan_interval),
        )

    async def _async_update_data(self) -> Dict[int, DpValue]:
        """Fetch the current data point values from the device.

        Protocol and network errors are converted into
        :class:`UpdateFailed` so that Home Assistant marks the entities as
        unavailable until the next successful poll.
        """
        try:
            return await self.session.async_get_dps()
        except (TuyaLanError, OSError) as err:
            raise UpdateFailed(f"Error fetching data from {self.session.host}: {err}") from err
