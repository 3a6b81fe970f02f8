"""HTTP client for Sonoff cloud request/response endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp

from .errors import (
    SonoffConnectionLost,
    SonoffProtocolViolation,
    SonoffResponseError,
    SonoffTimeout,
    SonoffUnauthorized,
)
from .models import Credentials
from .protocol import UNAUTHORIZED_CODES

_LOGGER = logging.getLogger(__name__)


class RequestKind(Enum):
    """Request/response calls understood by the cloud: (method, path)."""

    LOGIN = ("POST", "/api/user/login")
    REFRESH = ("POST", "/api/user/refresh")
    LIST_DEVICES = ("GET", "/api/user/device")
    CONTROL = ("POST", "/api/user/device/status")
    PROBE = ("GET", "/health")

    @property
    def method(self) -> str:
        return self.value[0]

    @property
    def path(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class SonoffResponse:
    """Decoded response of a successful call."""

    status: int
    body: dict[str, Any]

    @property
    def data(self) -> Any:
        return self.body.get("data")


class SonoffHttpClient:
    """HTTP client wrapper for Sonoff cloud endpoints.

    Stateless per call: the access token is passed in by the caller, so
    independent requests may run concurrently on one client.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @staticmethod
    def _auth_headers(token: str | None) -> dict[str, str]:
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def send(
        self,
        kind: RequestKind,
        payload: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> SonoffResponse:
        """Perform one request/response call.

        Raises:
            SonoffUnauthorized: Token rejected; the caller decides whether to
                refresh and resubmit.
            SonoffProtocolViolation: Response body is not a JSON object.
            SonoffResponseError: Cloud returned an application error.
            SonoffTimeout: Request timed out.
            SonoffConnectionLost: Network request failed.
        """
        url = self._url(kind.path)
        headers = self._auth_headers(token)
        kwargs: dict[str, Any] = {
            "headers": headers,
            "timeout": aiohttp.ClientTimeout(total=self._timeout),
        }
        if kind.method == "POST":
            request = self._session.post
            kwargs["json"] = payload or {}
        else:
            request = self._session.get
            if payload:
                kwargs["params"] = payload

        try:
            async with request(url, **kwargs) as resp:
                if resp.status == 401:
                    raise SonoffUnauthorized(f"{kind.name} rejected with HTTP 401")
                if resp.status >= 400:
                    raise SonoffResponseError(
                        resp.status, f"{kind.name} failed with HTTP {resp.status}"
                    )
                try:
                    body = await resp.json(content_type=None)
                except ValueError as err:
                    raise SonoffProtocolViolation(
                        f"{kind.name} response is not valid JSON"
                    ) from err
                status = resp.status
        except TimeoutError as err:
            raise SonoffTimeout(f"{kind.name} request timed out") from err
        except aiohttp.ClientError as err:
            raise SonoffConnectionLost(f"{kind.name} request failed") from err

        if not isinstance(body, dict):
            raise SonoffProtocolViolation(f"{kind.name} response is not an object")

        if "error" in body:
            code = body.get("error")
            if not isinstance(code, int) or isinstance(code, bool):
                raise SonoffProtocolViolation(f"{kind.name} response has bad error code")
            if code in UNAUTHORIZED_CODES:
                raise SonoffUnauthorized(f"{kind.name} rejected ({code})")
            if code != 0:
                raise SonoffResponseError(code, str(body.get("msg") or kind.name))

        _LOGGER.debug("%s %s -> %d", kind.method, kind.path, status)
        return SonoffResponse(status=status, body=body)

    # -------------------------------------------------------------------------
    # Typed calls
    # -------------------------------------------------------------------------

    async def login(self, credentials: Credentials) -> SonoffResponse:
        """Log in with account credentials (no bearer token)."""
        payload: dict[str, Any] = {"password": credentials.secret}
        if credentials.is_phone:
            payload["phoneNumber"] = credentials.identifier
        else:
            payload["email"] = credentials.identifier
        if credentials.country_code:
            payload["countryCode"] = credentials.country_code
        return await self.send(RequestKind.LOGIN, payload)

    async def refresh(self, refresh_token: str, token: str | None = None) -> SonoffResponse:
        """Exchange a refresh token for a new token pair."""
        return await self.send(RequestKind.REFRESH, {"rt": refresh_token}, token)

    async def list_devices(self, token: str) -> list[dict[str, Any]]:
        """Fetch the account device list."""
        response = await self.send(RequestKind.LIST_DEVICES, None, token)
        data = response.data
        if isinstance(data, dict):
            data = data.get("thingList")
        if not isinstance(data, list):
            raise SonoffProtocolViolation("Device list is not an array")
        devices: list[dict[str, Any]] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            # thingList entries wrap the device under itemData
            devices.append(item.get("itemData", item))
        return devices

    async def control(
        self, token: str, device_id: str, params: dict[str, Any]
    ) -> SonoffResponse:
        """Send device parameters over the request channel."""
        return await self.send(
            RequestKind.CONTROL, {"deviceid": device_id, "params": params}, token
        )

    async def probe(self, token: str | None = None) -> bool:
        """Cheap reachability check of the request channel."""
        await self.send(RequestKind.PROBE, None, token)
        return True
