"""Data structures exchanged with Tuya devices and the Tuya cloud."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .commands import Command

# A single data point value as reported by a device.  JSON keeps its
# dynamic typing here: booleans, numbers, strings or nested structures.
DpValue = Union[bool, int, float, str, Dict[str, Any], List[Any], None]


@dataclass(frozen=True)
class LocalResponse:
    """Decoded reply from a device.

    Attributes
    ----------
    command:
        Command code echoed by the device (an ``int`` when unknown).
    sequence:
        Sequence number carried by the frame.
    return_code:
        Return code (``0`` on success) or ``None`` when the frame did not
        carry one.
    payload:
        Decrypted payload bytes, with version headers removed.
    json:
        The payload as text when it is a ``{...}`` JSON document,
        otherwise ``None``.
    """

    command: Union[Command, int]
    sequence: int
    return_code: Optional[int]
    payload: bytes
    json: Optional[str] = None

    @property
    def data(self) -> Optional[Dict[str, Any]]:
        """The parsed JSON document, or ``None`` when there is none."""
        if self.json is None:
            return None
        return json.loads(self.json)

    @property
    def is_empty(self) -> bool:
        return not self.payload

    def __str__(self) -> str:
        name = self.command.name if isinstance(self.command, Command) else self.command
        return f"{name}: {self.json} (return code = {self.return_code})"


@dataclass(frozen=True)
class DeviceScanInfo:
    """Announcement broadcast by a device on the local network.

    Two announcements are equal when they come from the same IP address
    and gateway id; the other fields are ignored for equality and
    hashing so that a set of these deduplicates devices.
    """

    ip: Optional[str]
    gw_id: Optional[str]
    active: int = field(default=0, compare=False)
    ability: int = field(default=0, compare=False)
    mode: int = field(default=0, compare=False)
    encrypt: bool = field(default=False, compare=False)
    product_key: Optional[str] = field(default=None, compare=False)
    version: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source_ip: Optional[str] = None) -> "DeviceScanInfo":
        return cls(
            ip=data.get("ip") or source_ip,
            gw_id=data.get("gwId"),
            active=int(data.get("active", 0) or 0),
            ability=int(data.get("ability", 0) or 0),
            mode=int(data.get("mode", 0) or 0),
            encrypt=bool(data.get("encrypt", False)),
            product_key=data.get("productKey"),
            version=data.get("version"),
        )

    def __str__(self) -> str:
        return (
            f"IP: {self.ip}, gwId: {self.gw_id}, product key: {self.product_key}, "
            f"encryption: {self.encrypt}, version: {self.version}"
        )


@dataclass
class DeviceStatus:
    """Single status entry reported by the cloud API."""

    code: str
    value: Any


@dataclass
class DeviceApiInfo:
    """Device description returned by the cloud API."""

    id: str
    name: Optional[str] = None
    ip: Optional[str] = None
    local_key: Optional[str] = None
    uid: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    category: Optional[str] = None
    model: Optional[str] = None
    online: bool = False
    sub: bool = False
    time_zone: Optional[str] = None
    active_time: int = 0
    update_time: int = 0
    status: List[DeviceStatus] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceApiInfo":
        return cls(
            id=data["id"],
            name=data.get("name"),
            ip=data.get("ip"),
            local_key=data.get("local_key"),
            uid=data.get("uid"),
            product_id=data.get("product_id"),
            product_name=data.get("product_name"),
            category=data.get("category"),
            model=data.get("model"),
            online=bool(data.get("online", False)),
            sub=bool(data.get("sub", False)),
            time_zone=data.get("time_zone"),
            active_time=int(data.get("active_time", 0) or 0),
            update_time=int(data.get("update_time", 0) or 0),
            status=[
                DeviceStatus(code=item.get("code"), value=item.get("value"))
                for item in data.get("status") or []
            ],
        )

    def __str__(self) -> str:
        return self.name or self.id
