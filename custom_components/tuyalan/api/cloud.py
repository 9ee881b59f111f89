"""Minimal client for the Tuya cloud OpenAPI.

The LAN protocol needs the local key of each device, which is only
available from the Tuya cloud.  :class:`TuyaCloudClient` signs requests
with the project's access id and secret, obtains and refreshes the
access token and exposes the two device lookups used by this
integration.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .errors import CloudError
from .models import DeviceApiInfo

_LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


class Region(Enum):
    """Data centers of the Tuya cloud, valued by their API host."""

    CHINA = "openapi.tuyacn.com"
    WESTERN_AMERICA = "openapi.tuyaus.com"
    EASTERN_AMERICA = "openapi-ueaz.tuyaus.com"
    CENTRAL_EUROPE = "openapi.tuyaeu.com"
    WESTERN_EUROPE = "openapi-weaz.tuyaeu.com"
    INDIA = "openapi.tuyain.com"


def calculate_signature(
    api_secret: str,
    access_id: str,
    timestamp: str,
    method: str,
    path: str,
    body: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    access_token: Optional[str] = None,
) -> str:
    """Compute the ``sign`` header of a cloud request.

    The string to sign is the access id, the access token (omitted when
    requesting a token), the millisecond timestamp, then the method, the
    SHA-256 of the body, the signed headers and the path with its query,
    separated by newlines.

    Returns
    -------
    str
        The uppercase hexadecimal HMAC-SHA-256 of that string.
    """
    content_hash = hashlib.sha256((body or "").encode("utf-8")).hexdigest()
    header_lines = "".join(f"{key}:{value}\n" for key, value in (headers or {}).items())
    string_to_sign = (
        access_id
        + (access_token or "")
        + timestamp
        + f"{method.upper()}\n{content_hash}\n{header_lines}\n{path}"
    )
    return (
        hmac.new(api_secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256)
        .hexdigest()
        .upper()
    )


class TuyaCloudClient:
    """Signed access to the Tuya OpenAPI over an aiohttp session.

    Parameters
    ----------
    session: aiohttp.ClientSession
        The HTTP session to use, typically Home Assistant's shared one.
    region: Region
        Data center the project lives in.
    access_id, api_secret: str
        Credentials of the cloud project.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        region: Region,
        access_id: str,
        api_secret: str,
    ) -> None:
        if not access_id:
            raise ValueError("Access ID is not specified")
        if not api_secret:
            raise ValueError("API secret is not specified")
        self._session = session
        self.region = region
        self.access_id = access_id
        self._api_secret = api_secret
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    async def async_request(
        self,
        method: str,
        path: str,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        no_token: bool = False,
    ) -> Any:
        """Send a signed request and return the ``result`` of the reply.

        Raises
        ------
        CloudError
            If the reply is not JSON or reports ``success: false``.
        """
        path = "/" + path.lstrip("/")
        request_headers: Dict[str, str] = {}
        if headers:
            request_headers.update(headers)
            request_headers["Signature-Headers"] = ":".join(headers)

        access_token = None
        if not no_token:
            await self.async_refresh_token()
            access_token = self._access_token

        timestamp = str(int(time.time() * 1000))
        request_headers.update(
            {
                "client_id": self.access_id,
                "sign": calculate_signature(
                    self._api_secret,
                    self.access_id,
                    timestamp,
                    method,
                    path,
                    body,
                    headers,
                    access_token,
                ),
                "t": timestamp,
                "sign_method": "HMAC-SHA256",
            }
        )
        if access_token:
            request_headers["access_token"] = access_token
        if body is not None:
            request_headers["Content-Type"] = "application/json"

        url = f"https://{self.region.value}{path}"
        _LOGGER.debug("Cloud request %s %s", method, path)
        try:
            async with self._session.request(
                method,
                url,
                headers=request_headers,
                data=body,
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
            ) as response:
                text = await response.text()
        except aiohttp.ClientError as err:
            raise CloudError(f"Error talking to the Tuya cloud: {err}") from err

        try:
            reply = json.loads(text)
        except ValueError as err:
            raise CloudError(f"Invalid reply from the Tuya cloud: {text[:200]}") from err
        if not reply.get("success"):
            raise CloudError(reply.get("msg") or f"Request {method} {path} failed")
        return reply.get("result")

    async def async_refresh_token(self, force: bool = False) -> None:
        """Obtain a new access token if there is none or it has expired."""
        if not force and self._access_token and time.time() < self._token_expires_at:
            return
        result = await self.async_request("GET", "/v1.0/token?grant_type=1", no_token=True)
        try:
            self._access_token = result["access_token"]
            expire_time = int(result.get("expire_time", 0))
        except (KeyError, TypeError, ValueError) as err:
            raise CloudError(f"Malformed token reply: {result!r}") from err
        self._token_expires_at = time.time() + expire_time
        _LOGGER.debug("Cloud access token valid for %d s", expire_time)

    async def async_get_device_info(self, device_id: str) -> DeviceApiInfo:
        """Return the cloud's description of ``device_id``, local key included."""
        result = await self.async_request("GET", f"/v1.0/devices/{device_id}")
        return DeviceApiInfo.from_dict(result)

    async def async_get_all_devices_info(self, any_device_id: str) -> List[DeviceApiInfo]:
        """List every device owned by the user who owns ``any_device_id``."""
        owner = await self.async_get_device_info(any_device_id)
        result = await self.async_request("GET", f"/v1.0/users/{owner.uid}/devices")
        return [DeviceApiInfo.from_dict(item) for item in result or []]
