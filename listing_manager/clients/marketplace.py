"""Marketplace (OpenBazaar node) API client.

Every call carries an HTTP Basic ``Authorization`` header derived from the
configured marketplace username and password.  Like
:class:`~listing_manager.clients.rental.RentalApiClient`, methods return
decoded bodies and leave interpretation to :mod:`listing_manager.operations`.

Endpoints::

    GET    /ob/notifications                 -> {"notifications": [...], "unread": n}
    POST   /ob/marknotificationasread/:id
    POST   /ob/orderfulfillment              <- {"orderId": ..., "note": ...}
    GET    /ob/order/:id                     -> order document
    DELETE /ob/listing/:slug
    GET    /ob/listings                      -> [{"slug": ...}, ...]
    POST   /wallet/spend                     <- {"address", "amount", "feeLevel", "memo"}
"""

from __future__ import annotations

import base64
import logging
from types import TracebackType
from typing import Any

import httpx

from listing_manager.clients.http_client import ApiHttpClient
from listing_manager.core.settings import Settings

__all__ = ["MarketplaceClient", "basic_auth_header"]

logger = logging.getLogger(__name__)

SERVICE: str = "marketplace"


def basic_auth_header(username: str, password: str) -> str:
    """Return the ``Basic <base64(user:pass)>`` credential string.

    Example::

        >>> basic_auth_header("yourUsername", "yourPassword")
        'Basic eW91clVzZXJuYW1lOnlvdXJQYXNzd29yZA=='
    """
    raw = f"{username}:{password}".encode()
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


class MarketplaceClient:
    """Async client for the marketplace node API.

    Args:
        settings: Application settings (base URL, credentials, timeout).
        transport: Optional httpx transport override for tests.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = ApiHttpClient(
            service=SERVICE,
            base_url=settings.marketplace_base_url,
            headers={
                "Authorization": basic_auth_header(
                    settings.marketplace_username, settings.marketplace_password
                )
            },
            timeout=settings.http_timeout,
            max_attempts=settings.http_max_attempts,
            transport=transport,
        )

    async def __aenter__(self) -> MarketplaceClient:
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
    # Notifications
    # ------------------------------------------------------------------

    async def get_notifications(self) -> Any:
        return await self._http.get("/ob/notifications")

    async def mark_notification_read(self, notification_id: str) -> Any:
        return await self._http.post(f"/ob/marknotificationasread/{notification_id}")

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def fulfill_order(self, order_id: str, note: str) -> Any:
        return await self._http.post(
            "/ob/orderfulfillment", json={"orderId": order_id, "note": note}
        )

    async def get_order(self, order_id: str) -> Any:
        return await self._http.get(f"/ob/order/{order_id}")

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def get_listings(self) -> Any:
        return await self._http.get("/ob/listings")

    async def remove_listing(self, slug: str) -> Any:
        return await self._http.delete(f"/ob/listing/{slug}")

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def send_money(
        self, address: str, amount: int, *, fee_level: str, memo: str
    ) -> Any:
        return await self._http.post(
            "/wallet/spend",
            json={
                "address": address,
                "amount": amount,
                "feeLevel": fee_level,
                "memo": memo,
            },
        )
