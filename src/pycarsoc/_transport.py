"""Transport capabilities consumed by the providers.

The adapter link (Bluetooth/serial ELM327) is injected by the host
application through :class:`AdapterTransport`; only the HTTP
vehicle-info transport is implemented here.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pycarsoc.exceptions import CarSocTransportError

_logger = logging.getLogger(__name__)

USER_AGENT = "pycarsoc"


class AdapterTransport(Protocol):
    """Request/response link to an ELM327-compatible adapter.

    ``send`` writes one command (``"ATZ"``, ``"221109"``, ...) and
    resolves to the raw text the adapter returned before its ``>``
    prompt.  Link failures raise
    :class:`~pycarsoc.exceptions.CarSocTransportError` subclasses.
    """

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def send(self, command: str) -> str: ...


class VehicleInfoTransport(Protocol):
    """Source of vehicle-info property payloads (one JSON object per call)."""

    async def fetch_vehicle_info(self) -> dict[str, Any]: ...


class HttpVehicleInfoTransport:
    """Fetches vehicle-info JSON from an HTTP endpoint."""

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        base_url: str,
        *,
        endpoint: str = "/vehicle/info",
        token: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._http = http_session
        self._base_url = base_url.rstrip("/")
        self._endpoint = endpoint
        self._headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if token:
            self._headers["authorization"] = f"Bearer {token}"
        if headers:
            self._headers.update(headers)

    async def fetch_vehicle_info(self) -> dict[str, Any]:
        endpoint = self._endpoint
        url = f"{self._base_url}{endpoint}"
        _logger.debug("GET %s", url)

        try:
            async with self._http.get(url, headers=self._headers) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise CarSocTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except CarSocTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise CarSocTransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CarSocTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, dict):
            raise CarSocTransportError(
                f"Expected a JSON object from {endpoint}",
                endpoint=endpoint,
            )
        # Some gateways wrap the payload as {"data": {...}}.
        data = body.get("data")
        return data if isinstance(data, dict) else body
