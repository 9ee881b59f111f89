"""Tests for the IR remote control session and the button code helpers."""

from __future__ import annotations

import json
from typing import List

import pytest

from custom_components.tuyalan.api.commands import Command, ProtocolVersion
from custom_components.tuyalan.api.errors import ReceiveTimeoutError
from custom_components.tuyalan.api.ir import (
    TuyaIRControl,
    base64_to_pulses,
    hex_to_pulses,
    pulses_to_base64,
    pulses_to_hex,
)
from custom_components.tuyalan.api.models import LocalResponse

from .fake_device import DEVICE_ID, LOCAL_KEY, FakeTuyaDevice, empty_frame

CODE = "KCOUEQ=="


def control_of(request: LocalResponse) -> dict:
    return json.loads(request.data["dps"]["201"])


def remote(device: FakeTuyaDevice, **kwargs) -> TuyaIRControl:
    kwargs.setdefault("receive_timeout", 0.5)
    kwargs.setdefault("network_retry_interval", 0)
    return TuyaIRControl(
        "127.0.0.1", DEVICE_ID, LOCAL_KEY, device.version, device.port, study_delay=0, **kwargs
    )


class LearningDevice:
    """Reply callback of an IR blaster in learning mode."""

    def __init__(self, polls_before_code: int = 1, silent: bool = False) -> None:
        self.polls_before_code = polls_before_code
        self.silent = silent
        self.studies = 0

    def __call__(self, device: FakeTuyaDevice, request: LocalResponse) -> List[bytes]:
        if control_of(request)["control"] == "study_exit":
            return [empty_frame(request.command)]
        self.studies += 1
        if self.studies == 1:
            dps = {"201": request.data["dps"]["201"]}
        elif self.silent:
            return []
        elif self.studies <= self.polls_before_code:
            return [empty_frame(request.command)]
        else:
            dps = {"202": CODE}
        return [device.codec.encode(Command.CONTROL, {"devId": DEVICE_ID, "dps": dps}, return_code=0)]


@pytest.mark.asyncio
async def test_learn_button_code() -> None:
    async with FakeTuyaDevice(ProtocolVersion.V3_3, LearningDevice(polls_before_code=2)) as device:
        assert await remote(device).async_get_button_code(timeout=0.5) == CODE
        controls = [control_of(request)["control"] for request in device.requests]
        assert controls == ["study_exit", "study", "study", "study", "study_exit"]


@pytest.mark.asyncio
async def test_learning_mode_is_left_on_failure() -> None:
    async with FakeTuyaDevice(ProtocolVersion.V3_3, LearningDevice(silent=True)) as device:
        with pytest.raises(ReceiveTimeoutError):
            await remote(device).async_get_button_code(timeout=0.1, retries=1)
        assert control_of(device.requests[-1])["control"] == "study_exit"


@pytest.mark.asyncio
async def test_send_button_code_pads_whole_quanta() -> None:
    async with FakeTuyaDevice(
        ProtocolVersion.V3_3, lambda device, request: [empty_frame(request.command)]
    ) as device:
        session = remote(device)
        await session.async_send_button_code(CODE)
        await session.async_send_button_code("1" + CODE)
        first, second = (control_of(request) for request in device.requests)
        assert first == {"control": "send_ir", "head": "", "key1": "1" + CODE, "type": 0, "delay": 0}
        assert second["key1"] == "1" + CODE
        assert device.requests[0].command is Command.CONTROL


def test_button_code_conversions() -> None:
    assert base64_to_pulses(CODE) == [9000, 4500]
    assert base64_to_pulses("1" + CODE) == [9000, 4500]
    assert pulses_to_base64([9000, 4500]) == CODE
    assert pulses_to_hex([9000, 4500]) == "28239411"
    assert hex_to_pulses("28239411") == [9000, 4500]
    assert base64_to_pulses(pulses_to_base64([560, 1690, 65535])) == [560, 1690, 65535]


@pytest.mark.parametrize(
    "convert, code",
    [
        (base64_to_pulses, "!!!!"),
        (base64_to_pulses, "KCOU"),
        (hex_to_pulses, "282394"),
    ],
)
def test_malformed_button_codes(convert, code) -> None:
    with pytest.raises(ValueError):
        convert(code)
