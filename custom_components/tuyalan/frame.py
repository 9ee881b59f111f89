"""Encoding and decoding of Tuya LAN protocol frames.

This module defines :class:`FrameCodec`, which turns a command and its
payload into the exact bytes a Tuya device expects and validates,
decrypts and decodes the bytes it answers with.  Every frame has the
same outer layout, all integers big-endian::

    00 00 55 AA | sequence | command | length | payload | tag | 00 00 AA 55

``length`` counts every byte after the length field (return code,
payload, integrity tag and suffix).  The integrity tag is a CRC-32 on
protocol 3.1 and 3.3 and an HMAC-SHA-256 on 3.4.  What goes into the
payload differs per protocol version:

* **3.1** - plaintext JSON, except for ``CONTROL`` whose JSON is
  encrypted, base64 encoded and prefixed with ``"3.1"`` and part of an
  MD5 signature.
* **3.3** - AES-ECB encrypted JSON, prefixed with a 15-byte ``"3.3"``
  header for all but the status query commands.
* **3.4** - the 15-byte ``"3.4"`` header (when required) and the JSON are
  padded and encrypted together with the session key negotiated when the
  connection was opened.

The codec does not touch the network; use
:class:`~custom_components.tuyalan.api.client.TuyaDeviceSession` to talk
to a device.

Example
-------

::

    from custom_components.tuyalan.frame import FrameCodec
    from custom_components.tuyalan.api.commands import Command, ProtocolVersion

    codec = FrameCodec("0123456789abcdef", ProtocolVersion.V3_3)
    frame_bytes = codec.encode(Command.DP_QUERY, {"gwId": "abc", "devId": "abc"})
    response = codec.decode(received_bytes)
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import struct
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .api.commands import (
    DISCOVERY_COMMANDS,
    NO_HEADER_COMMANDS_V33,
    NO_HEADER_COMMANDS_V34,
    SESSION_KEY_COMMANDS,
    WRAPPED_COMMANDS_V31,
    Command,
    ProtocolVersion,
    to_command,
)
from .api.errors import ContentError, FramingError, HandshakeError, IntegrityError
from .api.models import LocalResponse
from .utils import (
    aes_ecb_decrypt,
    aes_ecb_encrypt,
    bytes_to_uint32,
    crc32,
    digest_equals,
    hmac_sha256,
    md5_hex,
    normalize_json,
    uint32_to_bytes,
    xor_bytes,
)

_LOGGER = logging.getLogger(__name__)

PREFIX = b"\x00\x00\x55\xaa"
SUFFIX = b"\x00\x00\xaa\x55"

HEADER_SIZE = 16
RETURN_CODE_SIZE = 4
CRC_SIZE = 4
HMAC_SIZE = 32
SUFFIX_SIZE = 4
VERSION_HEADER_SIZE = 15
KEY_SIZE = 16
NONCE_SIZE = 16

# Header, return code, CRC and suffix: a frame this short carries no data.
EMPTY_RESPONSE_SIZE = HEADER_SIZE + RETURN_CODE_SIZE + CRC_SIZE + SUFFIX_SIZE

# Broadcast announcements are encrypted with a key shared by all devices.
DISCOVERY_KEY = hashlib.md5(b"yGAdlopoPVldABfn").digest()

Payload = Union[str, bytes, Mapping[str, Any]]


def version_header(version: ProtocolVersion) -> bytes:
    """Return the 15-byte payload header for ``version``."""
    return version.header + bytes(VERSION_HEADER_SIZE - len(version.header))


def as_key(key: Union[str, bytes]) -> bytes:
    """Convert a local key to bytes and check it is a 16-byte AES key."""
    if isinstance(key, str):
        key = key.encode("utf-8")
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes long, got {len(key)}")
    return bytes(key)


def _md5_signature(data64: bytes, key: bytes) -> bytes:
    """Part of the MD5 digest that signs a wrapped 3.1 payload."""
    return md5_hex(b"data=" + data64 + b"||lpv=3.1||" + key)[8:24].encode("ascii")


# ----------------------------------------------------------------------
# Per-version payload rules
# ----------------------------------------------------------------------
def _encode_payload_v31(command: int, body: bytes, key: bytes) -> bytes:
    if command not in WRAPPED_COMMANDS_V31:
        return body
    data64 = base64.b64encode(aes_ecb_encrypt(body, key))
    return ProtocolVersion.V3_1.header + _md5_signature(data64, key) + data64


def _encode_payload_v33(command: int, body: bytes, key: bytes) -> bytes:
    body = aes_ecb_encrypt(body, key)
    if command not in NO_HEADER_COMMANDS_V33:
        body = version_header(ProtocolVersion.V3_3) + body
    return body


def _encode_payload_v34(command: int, body: bytes, key: bytes) -> bytes:
    if command not in NO_HEADER_COMMANDS_V34:
        body = version_header(ProtocolVersion.V3_4) + body
    return aes_ecb_encrypt(body, key)


def _decode_payload_v31(command: int, body: bytes, key: bytes) -> bytes:
    tag = ProtocolVersion.V3_1.header
    if not body.startswith(tag):
        return body
    signature = body[len(tag) : len(tag) + 16]
    data64 = body[len(tag) + 16 :]
    if not digest_equals(_md5_signature(data64, key), signature):
        raise IntegrityError("MD5 mismatch in 3.1 payload")
    return aes_ecb_decrypt(base64.b64decode(data64, validate=True), key)


def _decode_payload_v33(command: int, body: bytes, key: bytes) -> bytes:
    if body.startswith(ProtocolVersion.V3_3.header):
        body = body[VERSION_HEADER_SIZE:]
    return aes_ecb_decrypt(body, key)


def _decode_payload_v34(command: int, body: bytes, key: bytes) -> bytes:
    plain = aes_ecb_decrypt(body, key)
    if plain.startswith(ProtocolVersion.V3_4.header):
        plain = plain[VERSION_HEADER_SIZE:]
    return plain


_PayloadRule = Callable[[int, bytes, bytes], bytes]

_PAYLOAD_ENCODERS: Dict[ProtocolVersion, _PayloadRule] = {
    ProtocolVersion.V3_1: _encode_payload_v31,
    ProtocolVersion.V3_3: _encode_payload_v33,
    ProtocolVersion.V3_4: _encode_payload_v34,
}

_PAYLOAD_DECODERS: Dict[ProtocolVersion, _PayloadRule] = {
    ProtocolVersion.V3_1: _decode_payload_v31,
    # Discovery broadcasts of 3.4 devices use the 3.3 payload layout.
    ProtocolVersion.V3_3: _decode_payload_v33,
    ProtocolVersion.V3_4: _decode_payload_v34,
}


def _uses_hmac(version: ProtocolVersion, command: int) -> bool:
    return version is ProtocolVersion.V3_4 and command not in DISCOVERY_COMMANDS


# ----------------------------------------------------------------------
# v3.4 session key negotiation
# ----------------------------------------------------------------------
def derive_session_key(local_nonce: bytes, remote_nonce: bytes, local_key: bytes) -> bytes:
    """Derive the v3.4 session key from both handshake nonces.

    The key is the XOR of the two 16-byte nonces, encrypted as a single
    AES-ECB block (no padding) with the device's local key.
    """
    if len(local_nonce) != NONCE_SIZE or len(remote_nonce) != NONCE_SIZE:
        raise ValueError(f"Nonces must be {NONCE_SIZE} bytes long")
    return aes_ecb_encrypt(xor_bytes(local_nonce, remote_nonce), local_key, pad=False)


def parse_negotiation_response(payload: bytes, local_nonce: bytes, local_key: bytes) -> bytes:
    """Check a ``SESS_KEY_NEG_RES`` payload and return the remote nonce.

    The payload holds the device's 16-byte nonce followed by the
    HMAC-SHA-256 of our nonce keyed with the local key.

    Raises
    ------
    HandshakeError
        If the payload is too short or the HMAC does not match.
    """
    if len(payload) < NONCE_SIZE + HMAC_SIZE:
        raise HandshakeError(f"Negotiation response too short ({len(payload)} bytes)")
    remote_nonce = payload[:NONCE_SIZE]
    received = payload[NONCE_SIZE : NONCE_SIZE + HMAC_SIZE]
    if not digest_equals(hmac_sha256(local_key, local_nonce), received):
        raise HandshakeError("HMAC mismatch in negotiation response")
    return remote_nonce


class FrameCodec:
    """Encoder/decoder for the frames of a single device connection.

    A codec instance owns the state that is scoped to one session: the
    sequence counter and, on protocol 3.4, the negotiated session key.
    Create one codec per :class:`TuyaDeviceSession` so that sessions do
    not interfere with each other.

    Parameters
    ----------
    local_key: str or bytes
        The device's 16-byte local key.
    version: ProtocolVersion or str, optional
        Protocol version spoken by the device.  Defaults to 3.3.
    """

    def __init__(
        self,
        local_key: Union[str, bytes],
        version: Union[ProtocolVersion, str] = ProtocolVersion.V3_3,
    ) -> None:
        self.local_key: bytes = as_key(local_key)
        self.version: ProtocolVersion = ProtocolVersion.from_string(version)
        self.session_key: Optional[bytes] = None
        self.sequence: int = 0

    @property
    def active_key(self) -> bytes:
        """Key used for encryption and HMAC: the session key once negotiated."""
        return self.session_key or self.local_key

    def set_session_key(self, session_key: bytes) -> None:
        self.session_key = as_key(session_key)

    def reset_session(self) -> None:
        """Forget the session key; required after the connection is closed."""
        self.session_key = None

    def next_sequence(self) -> int:
        """Advance and return the 32-bit sequence counter (starts at 1)."""
        self.sequence = (self.sequence + 1) & 0xFFFFFFFF
        return self.sequence

    def encode(
        self,
        command: int,
        payload: Payload,
        key: Optional[bytes] = None,
        *,
        return_code: Optional[int] = None,
    ) -> bytes:
        """Build a complete frame for ``command``.

        Parameters
        ----------
        command: int
            The command code (usually a :class:`Command`).
        payload: str, mapping or bytes
            A JSON text or mapping, which is normalised before it is
            encrypted, or raw bytes for protocol messages that do not
            carry JSON (the handshake).
        key: bytes, optional
            Key to encrypt and sign with.  Defaults to :attr:`active_key`.
        return_code: int, optional
            Emit a return code in front of the payload, as devices do in
            their replies.

        Returns
        -------
        bytes
            The frame ready to be written to the socket.
        """
        key = key or self.active_key
        if isinstance(payload, (bytes, bytearray)):
            body = bytes(payload)
        else:
            body = normalize_json(payload)
        body = _PAYLOAD_ENCODERS[self.version](command, body, key)

        sequence = self.next_sequence()
        use_hmac = _uses_hmac(self.version, command)
        retcode = uint32_to_bytes(return_code) if return_code is not None else b""
        length = len(retcode) + len(body) + (HMAC_SIZE if use_hmac else CRC_SIZE) + SUFFIX_SIZE
        frame = PREFIX + struct.pack(">III", sequence, int(command), length) + retcode + body
        tag = hmac_sha256(key, frame) if use_hmac else uint32_to_bytes(crc32(frame))
        _LOGGER.debug(
            "Encoded %s frame: command=%s sequence=%d length=%d",
            self.version.value,
            command,
            sequence,
            length,
        )
        return frame + tag + SUFFIX

    def decode(
        self,
        data: bytes,
        key: Optional[bytes] = None,
        *,
        expect_json: bool = True,
    ) -> LocalResponse:
        """Validate, decrypt and decode one received frame.

        The frame is checked in order: prefix, declared length, suffix and
        integrity tag.  The payload is only decrypted once the tag has
        been verified.

        Parameters
        ----------
        data: bytes
            Exactly one frame.
        key: bytes, optional
            Key to verify and decrypt with.  Defaults to :attr:`active_key`.
        expect_json: bool, optional
            Raise :class:`ContentError` when a non-empty payload is not a
            JSON document.  Protocol messages pass ``False``.

        Raises
        ------
        FramingError
            Bad prefix, suffix or length.
        IntegrityError
            CRC, HMAC or MD5 mismatch.
        ContentError
            The payload cannot be decrypted or (with ``expect_json``) is
            not JSON; ``err.response`` holds what could be decoded.
        """
        key = key or self.active_key
        if data[: len(PREFIX)] != PREFIX:
            raise FramingError("Invalid header/prefix")
        if len(data) < HEADER_SIZE:
            raise FramingError(f"Frame too short ({len(data)} bytes)")
        sequence, command_code, length = struct.unpack_from(">III", data, len(PREFIX))
        if len(data) != HEADER_SIZE + length:
            raise FramingError(
                f"Invalid length: header declares {length} bytes, received {len(data) - HEADER_SIZE}"
            )
        if data[-SUFFIX_SIZE:] != SUFFIX:
            raise FramingError("Invalid suffix")

        command = to_command(command_code)
        use_hmac = _uses_hmac(self.version, command_code)
        tag_size = HMAC_SIZE if use_hmac else CRC_SIZE
        if length < tag_size + SUFFIX_SIZE:
            raise FramingError(f"Declared length {length} cannot hold the integrity tag")
        tag_start = len(data) - SUFFIX_SIZE - tag_size
        signed = data[:tag_start]
        received_tag = data[tag_start:-SUFFIX_SIZE]
        if use_hmac:
            if not digest_equals(hmac_sha256(key, signed), received_tag):
                raise IntegrityError("HMAC mismatch")
        elif not digest_equals(uint32_to_bytes(crc32(signed)), received_tag):
            raise IntegrityError("CRC mismatch")

        body = data[HEADER_SIZE:tag_start]
        return_code: Optional[int] = None
        if len(body) >= RETURN_CODE_SIZE:
            candidate = bytes_to_uint32(body)
            # Anything with the upper bits set is payload, not a return code.
            if not candidate & 0xFFFFFF00:
                return_code = candidate
                body = body[RETURN_CODE_SIZE:]

        try:
            payload = _PAYLOAD_DECODERS[self.version](command_code, body, key)
        except (ValueError, binascii.Error) as err:
            raise ContentError(
                f"Unable to decrypt payload: {err}",
                LocalResponse(command, sequence, return_code, body),
            ) from err

        text = _json_text(payload)
        response = LocalResponse(command, sequence, return_code, payload, text)
        _LOGGER.debug(
            "Decoded %s frame: command=%s sequence=%d return_code=%s payload=%d bytes",
            self.version.value,
            command,
            sequence,
            return_code,
            len(payload),
        )
        if payload and text is None and expect_json and command_code not in SESSION_KEY_COMMANDS:
            raise ContentError(f"Response is not JSON: {payload!r}", response)
        return response

    # ------------------------------------------------------------------
    # v3.4 handshake frames
    # ------------------------------------------------------------------
    def encode_negotiation_start(self, local_nonce: bytes, key: Optional[bytes] = None) -> bytes:
        """Frame opening the v3.4 key exchange with our 16-byte nonce."""
        self._require_v34()
        return self.encode(Command.SESS_KEY_NEG_START, local_nonce, key or self.local_key)

    def encode_negotiation_finish(self, remote_nonce_hmac: bytes, key: Optional[bytes] = None) -> bytes:
        """Frame closing the key exchange.

        ``remote_nonce_hmac`` is the HMAC-SHA-256 of the device nonce keyed
        with the local key; the frame itself is signed with ``key``.
        """
        self._require_v34()
        return self.encode(Command.SESS_KEY_NEG_FINISH, remote_nonce_hmac, key or self.local_key)

    def _require_v34(self) -> None:
        if self.version is not ProtocolVersion.V3_4:
            raise ValueError(f"Session keys are not used by protocol {self.version.value}")


def _json_text(payload: bytes) -> Optional[str]:
    """Return ``payload`` as text if it is a ``{...}`` JSON document."""
    if not payload:
        return None
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if not (text.startswith("{") and text.endswith("}")):
        return None
    try:
        json.loads(text)
    except ValueError:
        return None
    return text
