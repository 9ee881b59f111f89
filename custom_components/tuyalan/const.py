"""Constants used by the Tuya LAN integration.

This module gathers the configuration keys and default values used by
the protocol client, the discovery listener and the Home Assistant
entry points, so they can be tuned in one place.
"""

from __future__ import annotations

from homeassistant.const import Platform

# The domain string must match the name of the directory in
# ``custom_components``.
DOMAIN: str = "tuyalan"

# Configuration keys exposed to the user via the config flow.
CONF_HOST: str = "host"
CONF_PORT: str = "port"
CONF_DEVICE_ID: str = "device_id"
CONF_LOCAL_KEY: str = "local_key"
CONF_PROTOCOL_VERSION: str = "protocol_version"
CONF_SCAN_INTERVAL: str = "scan_interval"

PROTOCOL_VERSIONS: list[str] = ["3.1", "3.3", "3.4"]
DEFAULT_PROTOCOL_VERSION: str = "3.3"

# TCP port the devices listen on.
DEFAULT_PORT: int = 6668

# Timeouts are expressed in seconds.
DEFAULT_CONNECT_TIMEOUT: float = 5.0
DEFAULT_RECEIVE_TIMEOUT: float = 1.5

# Total number of attempts when the network, framing or integrity fails.
DEFAULT_NETWORK_RETRIES: int = 2
# Extra reads performed when the device answers with an empty frame.
DEFAULT_EMPTY_RETRIES: int = 1
DEFAULT_NETWORK_RETRY_INTERVAL: float = 0.1
DEFAULT_EMPTY_RETRY_INTERVAL: float = 0.0

# UDP ports of the broadcast announcements.
DISCOVERY_PORT_V31: int = 6666
DISCOVERY_PORT_ENCRYPTED: int = 6667

# Default polling interval (in seconds) for the DataUpdateCoordinator.
DEFAULT_SCAN_INTERVAL: int = 30

PLATFORMS: list[Platform] = [Platform.SWITCH]
