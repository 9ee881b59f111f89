"""Exceptions raised by the Tuya LAN protocol client.

Every error kind is its own type so that callers can layer their own
retry policy on top of :class:`~custom_components.tuyalan.api.client.TuyaDeviceSession`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import LocalResponse


class TuyaLanError(Exception):
    """Base class for all errors raised by this package."""


class FramingError(TuyaLanError):
    """Prefix, suffix or declared length of a frame is invalid."""


class IntegrityError(TuyaLanError):
    """CRC-32, HMAC-SHA-256 or MD5 check failed; the payload is untrusted."""


class HandshakeError(TuyaLanError):
    """The v3.4 session key negotiation was rejected."""


class NetworkError(TuyaLanError):
    """Connection failure, I/O error or reset after all retries."""


class ReceiveTimeoutError(NetworkError, TimeoutError):
    """No data arrived from the device before the receive timeout."""


class EmptyResponseError(TuyaLanError):
    """The device answered with a frame that carries no payload."""


class ContentError(TuyaLanError):
    """The payload is not the JSON document the caller expected.

    The decoded response is still available through :attr:`response` so
    that callers handling commands which legitimately return binary data
    can use the raw bytes.
    """

    def __init__(self, message: str, response: Optional["LocalResponse"] = None) -> None:
        super().__init__(message)
        self.response = response


class CloudError(TuyaLanError):
    """The cloud API rejected a request or answered with garbage."""
