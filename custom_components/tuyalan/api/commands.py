"""Command opcodes and protocol versions for the Tuya LAN protocol.

Every frame on the wire carries a numeric command code (see
:class:`Command`).  The way a frame is framed, encrypted and
authenticated depends on the :class:`ProtocolVersion` negotiated out of
band, usually reported by the device in its discovery announcement or by
the cloud API.

The sets at the bottom of the module group commands that receive special
treatment by the codec (no version header, CRC integrity on every
version, ...).
"""

from __future__ import annotations

from enum import Enum, IntEnum


class ProtocolVersion(Enum):
    """LAN protocol generation spoken by a device."""

    V3_1 = "3.1"
    V3_3 = "3.3"
    V3_4 = "3.4"

    @classmethod
    def from_string(cls, value: str | float | ProtocolVersion) -> ProtocolVersion:
        """Parse ``"3.3"``, ``3.3``, ``"33"`` or ``"V3_3"`` into a version.

        Raises
        ------
        ValueError
            If ``value`` does not name a supported version.
        """
        if isinstance(value, ProtocolVersion):
            return value
        text = str(value).strip().upper().lstrip("V").replace("_", ".")
        if "." not in text and len(text) == 2:
            text = f"{text[0]}.{text[1]}"
        for version in cls:
            if version.value == text:
                return version
        raise ValueError(f"Unsupported protocol version: {value!r}")

    @property
    def header(self) -> bytes:
        """ASCII version tag used in payload headers (e.g. ``b"3.3"``)."""
        return self.value.encode("ascii")


class Command(IntEnum):
    """Numeric command codes carried in the frame header."""

    UDP = 0
    AP_CONFIG = 1
    ACTIVE = 2
    SESS_KEY_NEG_START = 3
    SESS_KEY_NEG_RES = 4
    SESS_KEY_NEG_FINISH = 5
    UNBIND = 6
    CONTROL = 7
    STATUS = 8
    HEART_BEAT = 9
    DP_QUERY = 10
    QUERY_WIFI = 11
    TOKEN_BIND = 12
    CONTROL_NEW = 13
    ENABLE_WIFI = 14
    DP_QUERY_NEW = 16
    SCENE_EXECUTE = 17
    UPDATE_DPS = 18
    UDP_NEW = 19
    AP_CONFIG_NEW = 20
    GET_LOCAL_TIME_CMD = 28
    WEATHER_OPEN_CMD = 32
    WEATHER_DATA_CMD = 33
    STATE_UPLOAD_SYN_CMD = 34
    BOARDCAST_LPV34 = 35
    HEAT_BEAT_STOP = 37
    STREAM_TRANS_CMD = 38
    GET_WIFI_STATUS_CMD = 43
    WIFI_CONNECT_TEST_CMD = 44
    GET_MAC_CMD = 45
    GET_IR_STATUS_CMD = 46
    IR_TX_RX_TEST_CMD = 47
    LAN_GW_ACTIVE = 240
    LAN_SUB_DEV_REQUEST = 241
    LAN_DELETE_SUB_DEV = 242
    LAN_REPORT_SUB_DEV = 243
    LAN_SCENE = 244
    LAN_PUBLISH_CLOUD_CONFIG = 245
    LAN_PUBLISH_APP_CONFIG = 246
    LAN_EXPORT_APP_CONFIG = 247
    LAN_PUBLISH_SCENE_PANEL = 248
    LAN_REMOVE_GW = 249
    LAN_CHECK_GW_UPDATE = 250
    LAN_GW_UPDATE = 251
    LAN_SET_GW_CHANNEL = 252


def to_command(value: int) -> Command | int:
    """Return the :class:`Command` for ``value``, or ``value`` if unknown."""
    try:
        return Command(value)
    except ValueError:
        return value


# Commands sent without the 15-byte version header on v3.3.
NO_HEADER_COMMANDS_V33 = frozenset({Command.DP_QUERY, Command.UPDATE_DPS})

# Commands sent without the version header on v3.4.
NO_HEADER_COMMANDS_V34 = frozenset(
    {
        Command.DP_QUERY,
        Command.HEART_BEAT,
        Command.DP_QUERY_NEW,
        Command.SESS_KEY_NEG_START,
        Command.SESS_KEY_NEG_FINISH,
        Command.UPDATE_DPS,
    }
)

# v3.1 commands whose payload is encrypted and base64/MD5 wrapped.
WRAPPED_COMMANDS_V31 = frozenset({Command.CONTROL})

# Broadcast announcements; always CRC-32 framed whatever the version.
DISCOVERY_COMMANDS = frozenset(
    {Command.UDP, Command.UDP_NEW, Command.BOARDCAST_LPV34}
)

# Handshake messages; never carry JSON.
SESSION_KEY_COMMANDS = frozenset(
    {
        Command.SESS_KEY_NEG_START,
        Command.SESS_KEY_NEG_RES,
        Command.SESS_KEY_NEG_FINISH,
    }
)
