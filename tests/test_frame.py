"""Tests for the frame codec.

These tests check the encoded frames against captures produced by an
independent AES/CRC/HMAC implementation, and verify that decoding
rejects truncated or tampered frames before trusting their payload.
No device or network access is required.
"""

from __future__ import annotations

import json

import pytest

from custom_components.tuyalan.api.commands import Command, ProtocolVersion
from custom_components.tuyalan.api.errors import (
    ContentError,
    FramingError,
    HandshakeError,
    IntegrityError,
)
from custom_components.tuyalan.frame import (
    DISCOVERY_KEY,
    EMPTY_RESPONSE_SIZE,
    SUFFIX,
    FrameCodec,
    derive_session_key,
    parse_negotiation_response,
)
from custom_components.tuyalan.utils import crc32, hmac_sha256, uint32_to_bytes

LOCAL_KEY = b"0123456789abcdef"

GOLDEN_V33_DP_QUERY = bytes.fromhex(
    "000055aa000000010000000a00000018"
    "cb70ddc25a2a2045b4c13084418a9abb"
    "33aec34a0000aa55"
)

GOLDEN_V34_HEART_BEAT = bytes.fromhex(
    "000055aa000000010000000900000034"
    "cb70ddc25a2a2045b4c13084418a9abb"
    "a26b418976444b87917478601208244a70868b20c23cb6075dc16f4320e2e3d0"
    "0000aa55"
)

GOLDEN_V31_CONTROL = bytes.fromhex(
    "000055aa000000010000000700000047"
    "332e3139623362656539343436303436353339"
    "776e37675034766b6765597a494e3539787574436c6d5168587a5a62446131724b736a3673567364514c303d"
    "aff4f06b0000aa55"
)


def _resign_crc(frame: bytes) -> bytes:
    """Recompute the CRC of a modified v3.1/v3.3 frame."""
    body = frame[:-8]
    return body + uint32_to_bytes(crc32(body)) + SUFFIX


def test_v33_dp_query_matches_golden_frame() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_3)
    assert codec.encode(Command.DP_QUERY, "{}") == GOLDEN_V33_DP_QUERY


def test_v34_heart_beat_matches_golden_frame() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_4)
    assert codec.encode(Command.HEART_BEAT, {}) == GOLDEN_V34_HEART_BEAT


def test_v31_control_matches_golden_frame() -> None:
    codec = FrameCodec(LOCAL_KEY.decode(), "3.1")
    assert codec.encode(Command.CONTROL, '{"dps": {"1": true}}') == GOLDEN_V31_CONTROL


def test_json_is_normalised_before_encryption() -> None:
    spaced = FrameCodec(LOCAL_KEY).encode(Command.CONTROL, '{ "dps" : { "1" : true } }')
    compact = FrameCodec(LOCAL_KEY).encode(Command.CONTROL, {"dps": {"1": True}})
    assert spaced == compact


@pytest.mark.parametrize(
    "version, command",
    [
        (ProtocolVersion.V3_1, Command.DP_QUERY),
        (ProtocolVersion.V3_1, Command.CONTROL),
        (ProtocolVersion.V3_3, Command.DP_QUERY),
        (ProtocolVersion.V3_3, Command.CONTROL),
        (ProtocolVersion.V3_4, Command.HEART_BEAT),
        (ProtocolVersion.V3_4, Command.CONTROL_NEW),
    ],
)
def test_decode_reverses_encode(version: ProtocolVersion, command: Command) -> None:
    document = {"devId": "bf0123", "dps": {"1": True, "2": 17, "3": "white"}}
    codec = FrameCodec(LOCAL_KEY, version)
    response = codec.decode(codec.encode(command, document))
    assert response.command is command
    assert response.sequence == 1
    assert response.return_code is None
    assert json.loads(response.json) == document


def test_return_code_is_detected() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_3)
    response = codec.decode(codec.encode(Command.STATUS, {"dps": {"1": False}}, return_code=0))
    assert response.return_code == 0
    assert response.data == {"dps": {"1": False}}


def test_sequence_increases_per_codec() -> None:
    codec = FrameCodec(LOCAL_KEY)
    first = codec.decode(codec.encode(Command.DP_QUERY, {}))
    second = codec.decode(codec.encode(Command.HEART_BEAT, {}))
    assert first.sequence == 1
    assert second.sequence == 2
    # A second codec does not share the counter.
    assert FrameCodec(LOCAL_KEY).decode(FrameCodec(LOCAL_KEY).encode(Command.DP_QUERY, {})).sequence == 1


@pytest.mark.parametrize("version", list(ProtocolVersion))
def test_flipped_byte_raises_integrity_error(version: ProtocolVersion) -> None:
    codec = FrameCodec(LOCAL_KEY, version)
    frame = codec.encode(Command.CONTROL, {"dps": {"1": True}})
    for position in range(16, len(frame) - 4):
        tampered = bytearray(frame)
        tampered[position] ^= 0x01
        with pytest.raises(IntegrityError):
            codec.decode(bytes(tampered))


def test_truncated_frame_raises_framing_error() -> None:
    codec = FrameCodec(LOCAL_KEY)
    with pytest.raises(FramingError):
        codec.decode(GOLDEN_V33_DP_QUERY[:-1])
    with pytest.raises(FramingError):
        codec.decode(GOLDEN_V33_DP_QUERY[:10])


def test_bad_prefix_and_suffix_raise_framing_error() -> None:
    codec = FrameCodec(LOCAL_KEY)
    with pytest.raises(FramingError):
        codec.decode(b"\x00\x00\x66\x99" + GOLDEN_V33_DP_QUERY[4:])
    with pytest.raises(FramingError):
        codec.decode(GOLDEN_V33_DP_QUERY[:-4] + b"\x00\x00\xaa\x56")


def test_v31_md5_mismatch_raises_integrity_error() -> None:
    tampered = bytearray(GOLDEN_V31_CONTROL)
    # First character of the MD5 signature, right after "3.1".
    tampered[19] = ord("0") if tampered[19] != ord("0") else ord("1")
    with pytest.raises(IntegrityError):
        FrameCodec(LOCAL_KEY, ProtocolVersion.V3_1).decode(_resign_crc(bytes(tampered)))


def test_wrong_key_raises_integrity_error_on_v34() -> None:
    frame = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_4).encode(Command.HEART_BEAT, {})
    with pytest.raises(IntegrityError):
        FrameCodec(b"fedcba9876543210", ProtocolVersion.V3_4).decode(frame)


def test_undecryptable_payload_raises_content_error() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_3)
    frame = FrameCodec(b"fedcba9876543210", ProtocolVersion.V3_3).encode(Command.DP_QUERY, {})
    with pytest.raises(ContentError) as excinfo:
        codec.decode(frame)
    assert excinfo.value.response is not None


def test_non_json_payload_keeps_raw_bytes() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_3)
    frame = codec.encode(Command.STATUS, b"not json")
    with pytest.raises(ContentError) as excinfo:
        codec.decode(frame)
    assert excinfo.value.response.payload == b"not json"
    assert codec.decode(frame, expect_json=False).payload == b"not json"


def test_empty_frame_has_no_json_view() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_1)
    frame = codec.encode(Command.CONTROL_NEW, b"", return_code=0)
    assert len(frame) == EMPTY_RESPONSE_SIZE
    response = codec.decode(frame)
    assert response.is_empty
    assert response.json is None
    assert response.return_code == 0


def test_discovery_frames_use_crc_on_v34() -> None:
    codec = FrameCodec(DISCOVERY_KEY, ProtocolVersion.V3_4)
    frame = codec.encode(Command.BOARDCAST_LPV34, {"gwId": "bf0123"})
    assert frame[-8:-4] == uint32_to_bytes(crc32(frame[:-8]))
    assert codec.decode(frame).data == {"gwId": "bf0123"}


def test_unknown_command_decodes_to_int() -> None:
    codec = FrameCodec(LOCAL_KEY)
    response = codec.decode(codec.encode(99, {}))
    assert response.command == 99
    assert not isinstance(response.command, Command)


def test_derive_session_key_vector() -> None:
    local_nonce = bytes(range(16))
    remote_nonce = bytes(range(16, 32))
    session_key = derive_session_key(local_nonce, remote_nonce, LOCAL_KEY)
    assert session_key == bytes.fromhex("377222e061a924c591cd9c27ea163ed4")


def test_negotiation_frames() -> None:
    local_nonce = bytes(range(16))
    remote_nonce = bytes(range(16, 32))
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_4)
    device = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_4)

    start = device.decode(codec.encode_negotiation_start(local_nonce), expect_json=False)
    assert start.command is Command.SESS_KEY_NEG_START
    assert start.payload == local_nonce

    proof = hmac_sha256(LOCAL_KEY, remote_nonce)
    finish = device.decode(codec.encode_negotiation_finish(proof), expect_json=False)
    assert finish.command is Command.SESS_KEY_NEG_FINISH
    assert finish.payload == proof


def test_negotiation_response_is_verified() -> None:
    local_nonce = bytes(range(16))
    remote_nonce = bytes(range(16, 32))
    payload = remote_nonce + hmac_sha256(LOCAL_KEY, local_nonce)
    assert parse_negotiation_response(payload, local_nonce, LOCAL_KEY) == remote_nonce
    with pytest.raises(HandshakeError):
        parse_negotiation_response(payload, bytes(16), LOCAL_KEY)
    with pytest.raises(HandshakeError):
        parse_negotiation_response(remote_nonce, local_nonce, LOCAL_KEY)


def test_session_key_replaces_local_key() -> None:
    codec = FrameCodec(LOCAL_KEY, ProtocolVersion.V3_4)
    session_key = derive_session_key(bytes(range(16)), bytes(range(16, 32)), LOCAL_KEY)
    codec.set_session_key(session_key)
    frame = codec.encode(Command.CONTROL_NEW, {"dps": {"1": True}})
    with pytest.raises(IntegrityError):
        FrameCodec(LOCAL_KEY, ProtocolVersion.V3_4).decode(frame)
    assert codec.decode(frame).data == {"dps": {"1": True}}
    codec.reset_session()
    assert codec.active_key == LOCAL_KEY


def test_negotiation_requires_v34() -> None:
    with pytest.raises(ValueError):
        FrameCodec(LOCAL_KEY, ProtocolVersion.V3_3).encode_negotiation_start(bytes(16))


def test_invalid_key_length() -> None:
    with pytest.raises(ValueError):
        FrameCodec(b"short")
