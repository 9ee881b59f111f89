"""Passive discovery of Tuya devices on the local network.

Tuya devices announce themselves every few seconds with a UDP broadcast.
Protocol 3.1 devices send cleartext frames to port 6666 while 3.3 and 3.4
devices encrypt theirs and send them to port 6667.  All announcements are
encrypted with the same well known key, see
:data:`~custom_components.tuyalan.frame.DISCOVERY_KEY`.

:class:`TuyaDiscoveryListener` decodes these announcements and notifies
registered callbacks::

    listener = TuyaDiscoveryListener()
    unsubscribe = listener.async_add_listener(print, new_only=True)
    await listener.async_start()
    ...
    await listener.async_stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..const import DISCOVERY_PORT_ENCRYPTED, DISCOVERY_PORT_V31
from ..frame import DISCOVERY_KEY, FrameCodec
from .commands import ProtocolVersion
from .errors import TuyaLanError
from .models import DeviceScanInfo

_LOGGER = logging.getLogger(__name__)

DiscoveryCallback = Callable[[DeviceScanInfo], None]


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Datagram handler for one discovery port."""

    def __init__(self, listener: "TuyaDiscoveryListener", version: ProtocolVersion) -> None:
        self._listener = listener
        self._version = version

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self._listener.handle_datagram(data, addr, self._version)

    def error_received(self, exc: Exception) -> None:
        _LOGGER.warning("Discovery socket error: %s", exc)


class TuyaDiscoveryListener:
    """Listen for the broadcast announcements of Tuya devices.

    Every decoded announcement is passed to the callbacks registered with
    ``new_only=False``.  The callbacks registered with ``new_only=True``
    are called once per distinct (IP, gateway id) pair, after the first
    group.  The set of known devices is cleared when the listener starts.

    Parameters
    ----------
    ports: dict, optional
        Maps each protocol generation to the UDP port it broadcasts on.
    bind_address: str, optional
        Local address to bind the sockets to.
    """

    def __init__(
        self,
        ports: Optional[Dict[ProtocolVersion, int]] = None,
        bind_address: str = "0.0.0.0",
    ) -> None:
        self.ports: Dict[ProtocolVersion, int] = ports or {
            ProtocolVersion.V3_1: DISCOVERY_PORT_V31,
            ProtocolVersion.V3_3: DISCOVERY_PORT_ENCRYPTED,
        }
        self.bind_address = bind_address
        self._codecs: Dict[ProtocolVersion, FrameCodec] = {
            version: FrameCodec(DISCOVERY_KEY, version) for version in self.ports
        }
        self._transports: List[asyncio.BaseTransport] = []
        self._received_callbacks: List[DiscoveryCallback] = []
        self._new_callbacks: List[DiscoveryCallback] = []
        self.devices: Set[DeviceScanInfo] = set()

    @property
    def running(self) -> bool:
        return bool(self._transports)

    def async_add_listener(self, callback: DiscoveryCallback, *, new_only: bool = False) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        callbacks = self._new_callbacks if new_only else self._received_callbacks
        callbacks.append(callback)

        def _remove() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return _remove

    async def async_start(self) -> None:
        """Bind one UDP endpoint per protocol generation."""
        if self._transports:
            return
        self.devices.clear()
        loop = asyncio.get_running_loop()
        try:
            for version, port in self.ports.items():
                transport, _ = await loop.create_datagram_endpoint(
                    lambda version=version: _DiscoveryProtocol(self, version),
                    local_addr=(self.bind_address, port),
                    reuse_port=True,
                    allow_broadcast=True,
                )
                self._transports.append(transport)
        except BaseException:
            await self.async_stop()
            raise
        _LOGGER.info("Listening to Tuya broadcasts on UDP ports %s", sorted(self.ports.values()))

    async def async_stop(self) -> None:
        """Close the sockets.  Safe to call when not running."""
        transports, self._transports = self._transports, []
        for transport in transports:
            transport.close()

    def handle_datagram(
        self,
        data: bytes,
        addr: Tuple[str, int],
        version: ProtocolVersion = ProtocolVersion.V3_3,
    ) -> Optional[DeviceScanInfo]:
        """Decode one datagram and notify the callbacks.

        Malformed datagrams are logged and dropped.

        Returns
        -------
        DeviceScanInfo or None
            The decoded announcement, or ``None`` if it was dropped.
        """
        codec = self._codecs.get(version) or FrameCodec(DISCOVERY_KEY, version)
        try:
            document = codec.decode(data).data
            if not isinstance(document, dict):
                raise ValueError("no announcement in payload")
            info = DeviceScanInfo.from_dict(document, source_ip=addr[0])
        except (TuyaLanError, ValueError, TypeError) as err:
            _LOGGER.warning("Ignoring malformed broadcast from %s: %s", addr[0], err)
            return None

        _LOGGER.debug("Broadcast from %s: %s", addr[0], info)
        self._notify(self._received_callbacks, info)
        if info not in self.devices:
            self.devices.add(info)
            _LOGGER.debug("New device discovered: %s", info)
            self._notify(self._new_callbacks, info)
        return info

    @staticmethod
    def _notify(callbacks: List[DiscoveryCallback], info: DeviceScanInfo) -> None:
        for callback in list(callbacks):
            try:
                callback(info)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Error in discovery callback %s", callback)
