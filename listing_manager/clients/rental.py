"""Rental API client.

Thin, path-level wrapper over :class:`~listing_manager.clients.http_client
.ApiHttpClient` for the device-rental backend.  Methods return decoded
response bodies as-is; unpacking envelopes (``{"device": {...}}`` and friends)
and deciding what a missing field means is the job of
:mod:`listing_manager.operations`.

Calls that modify state, or read private data, carry the admin bearer token
from the shared :class:`~listing_manager.core.tick_context.Session`.

Endpoints::

    POST   /api/auth                      -> {"token": ...}
    GET    /api/devices/:id               -> {"device": {...}}
    PUT    /api/devices/:id               <- {"device": {...}}
    GET    /api/deviceprivatedata/:id     -> {"devicePrivateData": {...}}
    PUT    /api/deviceprivatedata/:id     <- {"devicePrivateData": {...}}
    GET    /api/renteddevices             -> {"devices": [...]}
    POST   /api/renteddevices             <- {"deviceId": ...}
    DELETE /api/renteddevices/:id
    GET    /api/obcontract/:id            -> {"obContract": {...}}
    DELETE /api/obcontract/:id
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from listing_manager.clients.http_client import ApiHttpClient
from listing_manager.core.exceptions import UnexpectedApiError
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session

__all__ = ["RentalApiClient"]

logger = logging.getLogger(__name__)

SERVICE: str = "rental"


class RentalApiClient:
    """Async client for the device-rental API.

    Args:
        settings: Application settings (base URL, timeout, attempts).
        session: Shared login session supplying the bearer token.
        transport: Optional httpx transport override for tests.
    """

    def __init__(
        self,
        settings: Settings,
        session: Session,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session = session
        self._http = ApiHttpClient(
            service=SERVICE,
            base_url=settings.rental_api_base_url,
            timeout=settings.http_timeout,
            max_attempts=settings.http_max_attempts,
            transport=transport,
        )

    async def __aenter__(self) -> RentalApiClient:
        await self._http.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._http.__aexit__(exc_type, exc_val, exc_tb)

    async def close(self) -> None:
        await self._http.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> str:
        """Exchange admin credentials for a bearer token.

        Raises:
            UnexpectedApiError: If the response carries no token.
            ApiError: Any failure reported by the HTTP layer.
        """
        body = await self._http.post(
            "/api/auth", json={"username": username, "password": password}
        )
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise UnexpectedApiError(SERVICE, "Authentication response carried no token")
        return str(token)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def get_device(self, device_id: str) -> Any:
        return await self._http.get(f"/api/devices/{device_id}")

    async def put_device(self, device_id: str, device: dict[str, Any]) -> Any:
        return await self._http.put(
            f"/api/devices/{device_id}",
            json={"device": device},
            headers=self.session.auth_headers(),
        )

    async def get_device_private(self, private_id: str) -> Any:
        return await self._http.get(
            f"/api/deviceprivatedata/{private_id}",
            headers=self.session.auth_headers(),
        )

    async def put_device_private(self, private_id: str, private_data: dict[str, Any]) -> Any:
        return await self._http.put(
            f"/api/deviceprivatedata/{private_id}",
            json={"devicePrivateData": private_data},
            headers=self.session.auth_headers(),
        )

    # ------------------------------------------------------------------
    # Rented-device list
    # ------------------------------------------------------------------

    async def list_rented_devices(self) -> Any:
        return await self._http.get("/api/renteddevices")

    async def add_rented_device(self, device_id: str) -> Any:
        return await self._http.post("/api/renteddevices", json={"deviceId": device_id})

    async def remove_rented_device(self, device_id: str) -> Any:
        return await self._http.delete(f"/api/renteddevices/{device_id}")

    # ------------------------------------------------------------------
    # Marketplace contract records
    # ------------------------------------------------------------------

    async def get_contract(self, contract_id: str) -> Any:
        return await self._http.get(f"/api/obcontract/{contract_id}")

    async def delete_contract(self, contract_id: str) -> Any:
        return await self._http.delete(
            f"/api/obcontract/{contract_id}",
            headers=self.session.auth_headers(),
        )
