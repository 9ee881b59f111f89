"""Protocol package for the Tuya LAN integration.

This package contains everything needed to talk to Tuya devices without
going through Home Assistant: the device session
(:class:`TuyaDeviceSession`), the broadcast listener
(:class:`TuyaDiscoveryListener`), the IR remote control session
(:class:`TuyaIRControl`), the cloud client used to fetch local keys
(:class:`TuyaCloudClient`), the command codes and the error types.
The Home Assistant modules only depend on the names re-exported here and
in :mod:`.client`.
"""

from .client import TuyaDeviceSession  # noqa: F401
from .cloud import Region, TuyaCloudClient  # noqa: F401
from .commands import Command, ProtocolVersion  # noqa: F401
from .discovery import TuyaDiscoveryListener  # noqa: F401
from .errors import (  # noqa: F401
    CloudError,
    ContentError,
    EmptyResponseError,
    FramingError,
    HandshakeError,
    IntegrityError,
    NetworkError,
    ReceiveTimeoutError,
    TuyaLanError,
)
from .ir import TuyaIRControl  # noqa: F401
from .models import DeviceApiInfo, DeviceScanInfo, LocalResponse  # noqa: F401

__all__ = [
    "TuyaDeviceSession",
    "TuyaDiscoveryListener",
    "TuyaIRControl",
    "TuyaCloudClient",
    "Region",
    "Command",
    "ProtocolVersion",
    "LocalResponse",
    "DeviceScanInfo",
    "DeviceApiInfo",
    "TuyaLanError",
    "FramingError",
    "IntegrityError",
    "HandshakeError",
    "NetworkError",
    "ReceiveTimeoutError",
    "EmptyResponseError",
    "ContentError",
    "CloudError",
]
