"""Virtual IR remote controls.

Tuya IR blasters expose a single control data point (201) taking a JSON
command, and report learned button codes on data point 202.  Button
codes are base64 strings of little-endian 16-bit pulse and gap lengths
in microseconds; the helpers at the bottom of this module convert them
to and from pulse lists and hex strings.

Usage example::

    remote = TuyaIRControl("192.168.1.60", "bf0123456789abcdef", "0123456789abcdef")
    code = await remote.async_get_button_code(timeout=10)
    await remote.async_send_button_code(code)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import struct
from typing import Any, Dict, List, Optional, Sequence

from .client import TuyaDeviceSession
from .errors import TuyaLanError

_LOGGER = logging.getLogger(__name__)

IR_CONTROL_DP = 201
IR_CODE_DP = 202


def _control(command: str, **fields: Any) -> str:
    return json.dumps({"control": command, **fields}, separators=(",", ":"))


class TuyaIRControl(TuyaDeviceSession):
    """Session with a Tuya IR blaster.

    Accepts the arguments of :class:`TuyaDeviceSession` plus
    ``study_delay``, the pause in seconds between leaving and entering
    learning mode.
    """

    def __init__(self, *args: Any, study_delay: float = 1.0, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.study_delay = study_delay

    async def _async_control(self, command: str, **kwargs: Any) -> Optional[Dict[int, Any]]:
        return await self.async_set_dps({IR_CONTROL_DP: _control(command)}, **kwargs)

    async def async_get_button_code(self, timeout: float, *, retries: Optional[int] = None) -> str:
        """Learn the code of a remote control button.

        The device is put in learning mode and polled until it reports a
        code; the button has to be pressed within ``timeout`` seconds of
        each poll.  Learning mode is left again whatever the outcome.

        Parameters
        ----------
        timeout: float
            Receive timeout of each poll, in seconds.
        retries: int, optional
            Overrides :attr:`network_retries` for the polls.

        Returns
        -------
        str
            The button code, base64 encoded.
        """
        try:
            await self._async_control("study_exit", empty_retries=0, allow_empty=True)
            await asyncio.sleep(self.study_delay)
            await self._async_control("study")
            while True:
                dps = await self._async_control(
                    "study", network_retries=retries, empty_retries=0, timeout=timeout, allow_empty=True
                )
                if dps and IR_CODE_DP in dps:
                    _LOGGER.debug("Learned button code from %s", self.host)
                    return str(dps[IR_CODE_DP])
        finally:
            try:
                await self._async_control("study_exit", empty_retries=0, allow_empty=True)
            except (TuyaLanError, OSError) as err:
                _LOGGER.warning("Unable to leave learning mode on %s: %s", self.host, err)

    async def async_send_button_code(
        self,
        button_code: str,
        *,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Emit a button code learned with :meth:`async_get_button_code`."""
        # The device expects codes of a whole number of base64 quanta to
        # be prefixed with "1".
        key1 = "1" + button_code if len(button_code) % 4 == 0 else button_code
        request = _control("send_ir", head="", key1=key1, type=0, delay=0)
        await self.async_set_dps(
            {IR_CONTROL_DP: request},
            network_retries=retries,
            empty_retries=0,
            timeout=timeout,
            allow_empty=True,
        )


def base64_to_pulses(code: str) -> List[int]:
    """Decode a base64 button code into pulse and gap lengths (µs).

    A leading ``"1"`` added by the device is ignored.

    Raises
    ------
    ValueError
        If the code is not base64 or holds an odd number of bytes.
    """
    if len(code) % 4 == 1 and code.startswith("1"):
        code = code[1:]
    try:
        data = base64.b64decode(code, validate=True)
    except binascii.Error as err:
        raise ValueError(f"Invalid button code: {err}") from err
    return _unpack_pulses(data)


def pulses_to_base64(pulses: Sequence[int]) -> str:
    """Encode pulse and gap lengths (µs) as a base64 button code."""
    return base64.b64encode(_pack_pulses(pulses)).decode("ascii")


def hex_to_pulses(code: str) -> List[int]:
    """Decode a hex button code (little-endian words) into pulse lengths."""
    return _unpack_pulses(bytes.fromhex(code))


def pulses_to_hex(pulses: Sequence[int]) -> str:
    """Encode pulse lengths as a hex button code."""
    return _pack_pulses(pulses).hex()


def _unpack_pulses(data: bytes) -> List[int]:
    if len(data) % 2:
        raise ValueError(f"Button code has an odd number of bytes ({len(data)})")
    return list(struct.unpack(f"<{len(data) // 2}H", data))


def _pack_pulses(pulses: Sequence[int]) -> bytes:
    return struct.pack(f"<{len(pulses)}H", *pulses)
