"""Asynchronous client for Tuya devices on the local network.

This module defines :class:`TuyaDeviceSession`, which owns the TCP
connection to a single Tuya device.  The session serialises
request/response exchanges (the protocol is strictly half-duplex),
reassembles frames from partial reads, negotiates the session key of
protocol 3.4 devices and applies the retry policy for network failures
and empty answers.  Framing, encryption and integrity checks are
delegated to :class:`~custom_components.tuyalan.frame.FrameCodec`.

Every instance is constructed with the host, device id and local key of
the device it talks to; nothing is shared between sessions.

Usage example::

    session = TuyaDeviceSession("192.168.1.50", "bf0123456789abcdef", "0123456789abcdef")
    dps = await session.async_get_dps()
    await session.async_set_dp(1, not dps[1])
    await session.async_disconnect()

"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import socket
import time
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Union

from ..const import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_EMPTY_RETRIES,
    DEFAULT_EMPTY_RETRY_INTERVAL,
    DEFAULT_NETWORK_RETRIES,
    DEFAULT_NETWORK_RETRY_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_RECEIVE_TIMEOUT,
)
from ..frame import (
    EMPTY_RESPONSE_SIZE,
    HEADER_SIZE,
    NONCE_SIZE,
    PREFIX,
    FrameCodec,
    Payload,
    derive_session_key,
    parse_negotiation_response,
)
from ..utils import bytes_to_uint32, format_dps, hmac_sha256, parse_dps
from .commands import SESSION_KEY_COMMANDS, Command, ProtocolVersion
from .errors import (
    ContentError,
    EmptyResponseError,
    FramingError,
    HandshakeError,
    IntegrityError,
    NetworkError,
    ReceiveTimeoutError,
)
from .models import DpValue, LocalResponse

if TYPE_CHECKING:
    from .cloud import TuyaCloudClient

_LOGGER = logging.getLogger(__name__)

RECV_SIZE = 1024

# Failures after which the connection is dropped and the request resent.
RETRYABLE_ERRORS = (OSError, NetworkError, FramingError, IntegrityError)


class TuyaDeviceSession:
    """Asynchronous TCP session with one Tuya device.

    The connection is opened lazily by the first request, or explicitly
    with :meth:`async_connect`.  Unless ``persistent`` is set the socket
    is closed again after every exchange, which is what most devices
    expect since they accept a single client at a time.

    Parameters
    ----------
    host: str
        IP address or hostname of the device.
    device_id: str
        Device id (``gwId``/``devId``) used in the JSON envelopes.
    local_key: str or bytes
        The 16-byte local key of the device.
    version: ProtocolVersion or str, optional
        Protocol version spoken by the device.  Defaults to 3.3.
    port: int, optional
        TCP port of the device, ``6668`` on all known devices.
    connect_timeout, receive_timeout: float, optional
        Timeouts in seconds for opening the connection and for each read.
    network_retries: int, optional
        Number of attempts when the network fails or a corrupted frame is
        received.
    empty_retries: int, optional
        Number of extra reads when the device answers with an empty frame.
    network_retry_interval, empty_retry_interval: float, optional
        Delays in seconds between network attempts and between empty
        response reads.
    persistent: bool, optional
        Keep the connection open between requests.
    """

    def __init__(
        self,
        host: str,
        device_id: str,
        local_key: Union[str, bytes],
        version: Union[ProtocolVersion, str] = ProtocolVersion.V3_3,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT,
        network_retries: int = DEFAULT_NETWORK_RETRIES,
        empty_retries: int = DEFAULT_EMPTY_RETRIES,
        network_retry_interval: float = DEFAULT_NETWORK_RETRY_INTERVAL,
        empty_retry_interval: float = DEFAULT_EMPTY_RETRY_INTERVAL,
        persistent: bool = False,
    ) -> None:
        if not device_id:
            raise ValueError("A device id is required")
        self.host: str = host
        self.port: int = port
        self.device_id: str = device_id
        self.connect_timeout = connect_timeout
        self.receive_timeout = receive_timeout
        self.network_retries = network_retries
        self.empty_retries = empty_retries
        self.network_retry_interval = network_retry_interval
        self.empty_retry_interval = empty_retry_interval
        self.persistent = persistent
        self._codec = FrameCodec(local_key, version)
        self._socket: Optional[socket.socket] = None
        self._buffer = bytearray()
        self._lock = asyncio.Lock()

    @property
    def version(self) -> ProtocolVersion:
        return self._codec.version

    @property
    def local_key(self) -> bytes:
        return self._codec.local_key

    @property
    def connected(self) -> bool:
        return self._socket is not None

    def __repr__(self) -> str:
        return f"<TuyaDeviceSession {self.device_id} at {self.host}:{self.port} v{self.version.value}>"

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------
    async def async_connect(self, timeout: Optional[float] = None) -> None:
        """Open the TCP connection and negotiate the session key.

        This method can safely be called multiple times; the connection
        is only opened if it is not already established.  On protocol 3.4
        the key exchange is performed before returning.

        Parameters
        ----------
        timeout: float, optional
            Read timeout for the key exchange.  Defaults to
            :attr:`receive_timeout`.

        Raises
        ------
        NetworkError
            If the connection cannot be established in time.
        HandshakeError
            If the device answers the key exchange incorrectly.
        """
        if self._socket is not None:
            return
        _LOGGER.debug("Connecting to %s:%s", self.host, self.port)
        loop = asyncio.get_running_loop()
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        try:
            await asyncio.wait_for(loop.sock_connect(sock, (self.host, self.port)), self.connect_timeout)
        except asyncio.TimeoutError as err:
            sock.close()
            raise NetworkError(f"Timed out connecting to {self.host}:{self.port}") from err
        except BaseException:
            sock.close()
            raise
        self._socket = sock
        self._buffer.clear()
        self._codec.reset_session()

        if self.version is ProtocolVersion.V3_4:
            try:
                await self._async_negotiate_session_key(self.receive_timeout if timeout is None else timeout)
            except BaseException:
                self._close_socket()
                raise

    async def async_disconnect(self) -> None:
        """Close the underlying socket.

        This method is idempotent; closing an already closed session has
        no effect.
        """
        self._close_socket()

    def _close_socket(self) -> None:
        if self._socket is not None:
            _LOGGER.debug("Closing connection to %s:%s", self.host, self.port)
            try:
                self._socket.close()
            finally:
                self._socket = None
                self._buffer.clear()
                self._codec.reset_session()

    async def _async_negotiate_session_key(self, timeout: float) -> None:
        """Run the three-message key exchange of protocol 3.4."""
        codec = self._codec
        local_nonce = os.urandom(NONCE_SIZE)
        await self._async_write(codec.encode_negotiation_start(local_nonce))

        raw = await self._async_read_frame(timeout)
        response = codec.decode(raw, codec.local_key, expect_json=False)
        if response.command != Command.SESS_KEY_NEG_RES:
            raise HandshakeError(
                f"Expected {Command.SESS_KEY_NEG_RES.name} from {self.host}, got {response.command}"
            )
        remote_nonce = parse_negotiation_response(response.payload, local_nonce, codec.local_key)

        proof = hmac_sha256(codec.local_key, remote_nonce)
        await self._async_write(codec.encode_negotiation_finish(proof))
        codec.set_session_key(derive_session_key(local_nonce, remote_nonce, codec.local_key))
        _LOGGER.info("Session key negotiated with %s", self.host)

    # ------------------------------------------------------------------
    # Low level I/O
    # ------------------------------------------------------------------
    async def _async_write(self, frame: bytes) -> None:
        if self._socket is None:
            raise NetworkError(f"Not connected to {self.host}:{self.port}")
        _LOGGER.debug("Sending to %s: %s", self.host, frame.hex())
        await asyncio.get_running_loop().sock_sendall(self._socket, frame)

    async def _async_recv(self, timeout: float) -> bytes:
        """Read whatever the device sent, waiting at most ``timeout`` seconds.

        When the deadline expires one more non-blocking read drains data
        that arrived in the meantime before the timeout is reported.
        """
        sock = self._socket
        if sock is None:
            raise NetworkError(f"Not connected to {self.host}:{self.port}")
        loop = asyncio.get_running_loop()
        try:
            data = await asyncio.wait_for(loop.sock_recv(sock, RECV_SIZE), timeout)
        except asyncio.TimeoutError:
            try:
                data = sock.recv(RECV_SIZE)
            except (BlockingIOError, InterruptedError):
                raise ReceiveTimeoutError(
                    f"No response from {self.host}:{self.port} within {timeout} s"
                ) from None
        if not data:
            raise NetworkError(f"Connection closed by {self.host}:{self.port}")
        return data

    def _pop_frame(self) -> Optional[bytes]:
        """Remove and return one complete frame from the receive buffer."""
        buffer = self._buffer
        if len(buffer) >= len(PREFIX) and buffer[: len(PREFIX)] != PREFIX:
            raise FramingError(f"Unexpected data from {self.host}: {bytes(buffer[:16]).hex()}")
        if len(buffer) < HEADER_SIZE:
            return None
        total = HEADER_SIZE + bytes_to_uint32(buffer, 12)
        if len(buffer) < total:
            return None
        frame = bytes(buffer[:total])
        del buffer[:total]
        return frame

    async def _async_read_frame(self, timeout: float) -> bytes:
        """Read until a whole frame is buffered and return it.

        Bytes received past the end of the frame stay buffered for the
        next read on this connection.
        """
        while True:
            frame = self._pop_frame()
            if frame is not None:
                _LOGGER.debug("Received from %s: %s", self.host, frame.hex())
                return frame
            self._buffer.extend(await self._async_recv(timeout))

    # ------------------------------------------------------------------
    # Request/response
    # ------------------------------------------------------------------
    async def async_send(
        self,
        command: int,
        payload: Optional[Payload] = None,
        *,
        network_retries: Optional[int] = None,
        empty_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        allow_empty: bool = False,
    ) -> Optional[LocalResponse]:
        """Send a command and return the decoded answer of the device.

        Parameters
        ----------
        command: int
            The command code, usually a :class:`Command`.
        payload: str, mapping or bytes, optional
            JSON document to send.  Defaults to ``{}``.
        network_retries: int, optional
            Overrides :attr:`network_retries` for this call.
        empty_retries: int, optional
            Overrides :attr:`empty_retries` for this call.
        timeout: float, optional
            Overrides :attr:`receive_timeout` for this call.
        allow_empty: bool, optional
            Return ``None`` instead of raising when the device keeps
            answering with empty frames.

        Returns
        -------
        LocalResponse or None
            The decoded answer, or ``None`` for a tolerated empty answer.

        Raises
        ------
        NetworkError
            The device could not be reached after all attempts.
        EmptyResponseError
            The device only returned empty frames and ``allow_empty`` is
            false.
        ContentError
            The answer to the request is not a JSON document.
        """
        attempts = max(1, self.network_retries if network_retries is None else network_retries)
        empty_budget = self.empty_retries if empty_retries is None else empty_retries
        timeout = self.receive_timeout if timeout is None else timeout
        if payload is None:
            payload = {}

        async with self._lock:
            attempt = 1
            while True:
                try:
                    response = await self._async_exchange(command, payload, empty_budget, timeout)
                    break
                except RETRYABLE_ERRORS as err:
                    self._close_socket()
                    if attempt >= attempts:
                        if isinstance(err, (NetworkError, FramingError, IntegrityError)):
                            raise
                        raise NetworkError(
                            f"Failed to communicate with {self.host}:{self.port}: {err}"
                        ) from err
                    _LOGGER.warning(
                        "Error communicating with %s (%s), retrying (%d/%d)",
                        self.host,
                        err,
                        attempt,
                        attempts,
                    )
                    attempt += 1
                    await asyncio.sleep(self.network_retry_interval)
                except BaseException:
                    # Handshake failures and cancellation are not retried; the
                    # connection state is unknown afterwards.
                    self._close_socket()
                    raise
                finally:
                    if not self.persistent:
                        self._close_socket()

        if response.is_empty:
            if allow_empty:
                return None
            raise EmptyResponseError(f"Empty response from {self.host} to {response.command}")
        return response

    async def _async_exchange(
        self, command: int, payload: Payload, empty_retries: int, timeout: float
    ) -> LocalResponse:
        """Perform one attempt: write the request and read its answer."""
        await self.async_connect(timeout)
        codec = self._codec
        await self._async_write(codec.encode(command, payload))

        while True:
            raw = await self._async_read_frame(timeout)
            response = codec.decode(raw, expect_json=False)
            # Protocol 3.4 devices push frames of their own between requests.
            if self.version is not ProtocolVersion.V3_4 or response.command == command:
                break
            _LOGGER.debug(
                "Ignoring %s frame from %s while waiting for %s", response.command, self.host, command
            )

        remaining = empty_retries
        while _is_empty(raw, response) and remaining > 0:
            remaining -= 1
            _LOGGER.debug("Empty response from %s, reading again", self.host)
            await asyncio.sleep(self.empty_retry_interval)
            raw = await self._async_read_frame(timeout)
            response = codec.decode(raw, expect_json=False)

        if response.payload and response.json is None and response.command not in SESSION_KEY_COMMANDS:
            raise ContentError(f"Response is not JSON: {response.payload!r}", response)
        return response

    # ------------------------------------------------------------------
    # Data point operations
    # ------------------------------------------------------------------
    def fill_json(
        self,
        body: Optional[Union[str, Mapping[str, Any]]] = None,
        *,
        gw_id: bool = True,
        dev_id: bool = True,
        uid: bool = True,
        t: bool = True,
    ) -> Dict[str, Any]:
        """Wrap ``body`` into the envelope every request carries.

        The envelope fields (``gwId``, ``devId``, ``uid`` and the Unix time
        ``t``) come first.  Fields already present in ``body`` are kept as
        supplied.
        """
        if body is None:
            body = {}
        elif isinstance(body, str):
            body = json.loads(body) if body.strip() else {}
        envelope: Dict[str, Any] = {}
        if gw_id:
            envelope["gwId"] = self.device_id
        if dev_id:
            envelope["devId"] = self.device_id
        if uid:
            envelope["uid"] = self.device_id
        if t:
            envelope["t"] = str(int(time.time()))
        envelope.update(body)
        return envelope

    async def async_get_dps(self, **kwargs: Any) -> Dict[int, DpValue]:
        """Return the current value of every data point of the device.

        Raises
        ------
        EmptyResponseError
            If the device did not report anything.
        """
        response = await self.async_send(Command.DP_QUERY, self.fill_json(), **kwargs)
        return _dps_from(response)

    async def async_set_dp(
        self, dp: int, value: DpValue, *, allow_empty: bool = False, **kwargs: Any
    ) -> Optional[Dict[int, DpValue]]:
        """Set a single data point; see :meth:`async_set_dps`."""
        return await self.async_set_dps({dp: value}, allow_empty=allow_empty, **kwargs)

    async def async_set_dps(
        self,
        dps: Mapping[int, DpValue],
        *,
        allow_empty: bool = False,
        **kwargs: Any,
    ) -> Optional[Dict[int, DpValue]]:
        """Set data points and return the values reported back.

        Returns
        -------
        dict or None
            The new data point values, or ``None`` if the device answered
            with an empty frame and ``allow_empty`` is set.
        """
        if self.version is ProtocolVersion.V3_4:
            command = Command.CONTROL_NEW
            request: Dict[str, Any] = {
                "data": {
                    "ctype": 0,
                    "devId": self.device_id,
                    "gwId": self.device_id,
                    "uid": "",
                    "dps": format_dps(dps),
                },
                "protocol": 5,
                "t": int(time.time()),
            }
        else:
            command = Command.CONTROL
            request = self.fill_json({"dps": format_dps(dps)})
        response = await self.async_send(command, request, allow_empty=allow_empty, **kwargs)
        if response is None:
            return None
        return _dps_from(response)

    async def async_update_dps(self, dp_ids: Iterable[int] = (), **kwargs: Any) -> Dict[int, DpValue]:
        """Ask the device to refresh data points (some devices accept no ids)."""
        request = self.fill_json({"dpId": [int(dp) for dp in dp_ids]})
        response = await self.async_send(Command.UPDATE_DPS, request, allow_empty=True, **kwargs)
        if response is None or response.json is None:
            return {}
        return _dps_from(response)

    async def async_refresh_local_key(self, cloud: "TuyaCloudClient") -> None:
        """Fetch the current local key from the cloud and start using it.

        Any open connection is closed since it was secured with the old key.
        """
        info = await cloud.async_get_device_info(self.device_id)
        if not info.local_key:
            raise ValueError(f"The cloud returned no local key for {self.device_id}")
        async with self._lock:
            self._close_socket()
            self._codec = FrameCodec(info.local_key, self.version)
        _LOGGER.info("Local key of %s refreshed from the cloud", self.device_id)


def _is_empty(raw: bytes, response: LocalResponse) -> bool:
    return len(raw) <= EMPTY_RESPONSE_SIZE or response.is_empty


def _dps_from(response: Optional[LocalResponse]) -> Dict[int, DpValue]:
    data = response.data if response is not None else None
    if data is None:
        raise EmptyResponseError("Response is empty")
    dps = data.get("dps")
    if dps is None and isinstance(data.get("data"), dict):
        # Protocol 3.4 nests the values of pushed status frames.
        dps = data["data"].get("dps")
    return parse_dps(dps or {})
