"""Common helper functions for the Tuya LAN integration.

This module groups the low level primitives the frame codec is built
from: checksums (CRC-32, HMAC-SHA-256, MD5), AES in ECB mode with PKCS#7
padding, big-endian integer packing, JSON normalisation and conversion
of data point maps.  None of the functions perform any I/O, which keeps
them trivially testable.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import struct
import zlib
from typing import TYPE_CHECKING, Any, Dict, Mapping, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

if TYPE_CHECKING:
    from .api.models import DpValue

AES_BLOCK_SIZE = 16


def crc32(data: bytes) -> int:
    """Compute the CRC-32 (IEEE 802.3) checksum used by v3.1 and v3.3 frames.

    Parameters
    ----------
    data: bytes
        The bytes covered by the checksum (prefix through payload).

    Returns
    -------
    int
        The unsigned 32-bit checksum.
    """
    return zlib.crc32(data) & 0xFFFFFFFF


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    """Return the 32-byte HMAC-SHA-256 of ``data`` keyed with ``key``."""
    return hmac.new(key, data, hashlib.sha256).digest()


def digest_equals(expected: bytes, actual: bytes) -> bool:
    """Compare two digests in constant time."""
    return hmac.compare_digest(expected, actual)


def md5_hex(data: bytes) -> str:
    """Return the lowercase hexadecimal MD5 digest of ``data``."""
    return hashlib.md5(data).hexdigest()


def uint32_to_bytes(value: int) -> bytes:
    """Pack ``value`` as a 4-byte big-endian unsigned integer.

    Values outside the 32-bit range wrap, mirroring an overflowing
    fixed-width counter.
    """
    return struct.pack(">I", value & 0xFFFFFFFF)


def bytes_to_uint32(data: bytes, position: int = 0) -> int:
    """Unpack a 4-byte big-endian unsigned integer at ``position``."""
    return struct.unpack_from(">I", data, position)[0]


def pkcs7_pad(data: bytes) -> bytes:
    """Pad ``data`` to a multiple of 16 bytes.

    The pad length is ``16 - len(data) % 16`` (1 to 16) and every pad
    byte equals that length, so a block-aligned input grows by a full
    block.
    """
    padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
    return padder.update(data) + padder.finalize()


def pkcs7_unpad(data: bytes) -> bytes:
    """Strip PKCS#7 padding; raises ``ValueError`` if it is malformed."""
    unpadder = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
    return unpadder.update(data) + unpadder.finalize()


def aes_ecb_encrypt(data: bytes, key: bytes, *, pad: bool = True) -> bytes:
    """Encrypt ``data`` with AES in ECB mode.

    Parameters
    ----------
    data: bytes
        Plaintext.  Must be a multiple of 16 bytes when ``pad`` is false.
    key: bytes
        A 16-byte AES key.
    pad: bool, optional
        Apply PKCS#7 padding before encrypting.  Defaults to ``True``.

    Returns
    -------
    bytes
        The ciphertext.
    """
    if pad:
        data = pkcs7_pad(data)
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def aes_ecb_decrypt(data: bytes, key: bytes, *, unpad: bool = True) -> bytes:
    """Decrypt AES-ECB ``data`` and optionally strip PKCS#7 padding.

    Raises
    ------
    ValueError
        If ``data`` is not block aligned or the padding is invalid.
    """
    if not data:
        return data
    if len(data) % AES_BLOCK_SIZE:
        raise ValueError(f"Ciphertext length {len(data)} is not a multiple of {AES_BLOCK_SIZE}")
    decryptor = Cipher(algorithms.AES(key), modes.ECB()).decryptor()
    plain = decryptor.update(data) + decryptor.finalize()
    return pkcs7_unpad(plain) if unpad else plain


def xor_bytes(left: bytes, right: bytes) -> bytes:
    """Byte-wise XOR of two equally sized byte strings."""
    if len(left) != len(right):
        raise ValueError("Operands must have the same length")
    return bytes(a ^ b for a, b in zip(left, right))


def normalize_json(payload: Union[str, bytes, Mapping[str, Any]]) -> bytes:
    """Serialise a JSON document without any insignificant whitespace.

    Key order and string contents are preserved exactly, because the
    resulting bytes are what gets encrypted and signed.

    Parameters
    ----------
    payload: str, bytes or mapping
        A JSON text or an already parsed document.

    Returns
    -------
    bytes
        The compact UTF-8 encoding of the document.
    """
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def parse_dps(dps: Mapping[str, Any]) -> Dict[int, DpValue]:
    """Convert a ``dps`` object from the device into an int keyed map.

    Devices report data point ids as JSON object keys, i.e. strings.
    Keys that are not integers are skipped.
    """
    values: Dict[int, DpValue] = {}
    for key, value in dps.items():
        try:
            values[int(key)] = value
        except (TypeError, ValueError):
            continue
    return values


def format_dps(dps: Mapping[int, DpValue]) -> Dict[str, DpValue]:
    """Convert an int keyed data point map into the wire representation."""
    return {str(int(key)): value for key, value in dps.items()}
