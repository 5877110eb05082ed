"""Marketplace-side helper operations.

Covers the notification queue, order fulfillment and the teardown of a
device's marketplace listing together with its contract record on the rental
API.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from listing_manager.clients.marketplace import SERVICE as MARKET_SERVICE
from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import SERVICE as RENTAL_SERVICE
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core import events
from listing_manager.core.exceptions import (
    ApiError,
    NotFoundError,
    ServerError,
    UnexpectedApiError,
)
from listing_manager.core.models import (
    ContractRecord,
    DevicePrivateRecord,
    DevicePublicRecord,
    MarketplaceListing,
    Notification,
)
from listing_manager.core.tick_context import TickContext
from listing_manager.operations.devices import parse_record

__all__ = [
    "build_fulfillment_note",
    "fulfill_order",
    "get_contract",
    "get_listings",
    "get_new_notifications",
    "mark_notification_read",
    "remove_listing",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def get_new_notifications(market: MarketplaceClient) -> list[Notification]:
    """Return the unread notifications, in server order.

    A zero ``unread`` count short-circuits to an empty list.  Read entries are
    dropped before validation, so their shape never matters.
    """
    body = await market.get_notifications()
    if not isinstance(body, dict):
        raise UnexpectedApiError(MARKET_SERVICE, "Notification response is not an object.")
    if body.get("unread") == 0:
        return []

    notifications: list[Notification] = []
    for entry in body.get("notifications") or []:
        if not isinstance(entry, dict) or entry.get("read"):
            continue
        try:
            notifications.append(Notification.from_envelope(entry))
        except ValidationError as exc:
            raise UnexpectedApiError(MARKET_SERVICE, f"Malformed notification: {exc}") from exc
    return notifications


async def mark_notification_read(market: MarketplaceClient, notification: Notification) -> bool:
    await market.mark_notification_read(notification.id)
    logger.debug("Notification %s marked as read.", notification.id)
    return True


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------


def build_fulfillment_note(private: DevicePrivateRecord, host: str) -> str:
    """Render the login details sent to the buyer.

    Example::

        Host: p2pvps.net
        Port: 6100
        Login: renter
        Password: s3cret
        Dash ID: abc
    """
    return (
        f"Host: {host}\n"
        f"Port: {private.server_ssh_port}\n"
        f"Login: {private.device_user_name}\n"
        f"Password: {private.device_password}\n"
        f"Dash ID: {private.dash_id}\n"
    )


async def fulfill_order(
    market: MarketplaceClient, ctx: TickContext, *, host: str
) -> bool | None:
    """Post the fulfillment note for the order in *ctx*.

    Returns:
        ``True`` once the marketplace accepted the fulfillment, ``None`` when
        the tick has no private record or notification to work from.

    Raises:
        ApiError: The marketplace rejected the fulfillment.
    """
    if ctx.device_private is None or ctx.notification is None:
        logger.warning("No device private record available; order not fulfilled.")
        return None
    order_id = ctx.notification.order_id
    if not order_id:
        raise UnexpectedApiError(MARKET_SERVICE, "Notification carries no order id.")

    note = build_fulfillment_note(ctx.device_private, host)
    await market.fulfill_order(order_id, note)
    logger.info(
        "Order %s fulfilled.", order_id, extra={"event": events.ORDER_FULFILLED}
    )
    return True


# ---------------------------------------------------------------------------
# Listings and contracts
# ---------------------------------------------------------------------------


async def get_listings(market: MarketplaceClient) -> list[MarketplaceListing]:
    """Return the store's current listings."""
    body = await market.get_listings()
    if not isinstance(body, list):
        raise UnexpectedApiError(MARKET_SERVICE, "Listings response is not an array.")
    return [
        parse_record(MarketplaceListing, entry, "marketplace listing")
        for entry in body
    ]


async def get_contract(rental: RentalApiClient, contract_id: str) -> ContractRecord | None:
    """Fetch the contract record *contract_id* from the rental API.

    Returns:
        The record, or ``None`` when the server reports it as not found (a 404,
        a 5xx, or an empty envelope).

    Raises:
        ApiError: Any other failure.
    """
    try:
        body = await rental.get_contract(contract_id)
    except ServerError as exc:
        if exc.error_field == "not found":
            logger.error("Contract %s not found on the rental API.", contract_id)
        else:
            logger.error(
                "Connection to the rental API was refused fetching contract %s. "
                "Will try again.",
                contract_id,
            )
        return None
    except NotFoundError:
        logger.error("Contract %s not found on the rental API.", contract_id)
        return None

    data = body.get("obContract") if isinstance(body, dict) else None
    if data is None:
        logger.error("Contract %s not found on the rental API.", contract_id)
        return None
    return parse_record(ContractRecord, data, f"contract {contract_id}")


async def remove_listing(
    rental: RentalApiClient,
    market: MarketplaceClient,
    device: DevicePublicRecord,
) -> bool:
    """Tear down *device*'s marketplace presence.

    Steps, in order:

    1. look up the contract record referenced by ``device.ob_contract``;
    2. delete the marketplace listing named by its slug;
    3. delete the contract record;
    4. clear ``obContract`` on the device and confirm the server echoed it.

    Never raises for API failures: any error is logged and reported as
    ``False`` so the caller's tick can carry on.
    """
    if not device.has_contract:
        logger.error("Device %s has no contract record associated with it.", device.id)
        return False
    contract_id = device.ob_contract or ""

    try:
        contract = await get_contract(rental, contract_id)
        if contract is None:
            return False

        if contract.listing_slug:
            await market.remove_listing(contract.listing_slug)
        else:
            logger.warning("Contract %s has no listing slug; nothing to delist.", contract_id)

        body = await rental.delete_contract(contract_id)
        if not _succeeded(body):
            raise UnexpectedApiError(
                RENTAL_SERVICE, f"Server did not confirm deletion of contract {contract_id}."
            )

        cleared = device.model_copy(update={"ob_contract": ""})
        echoed = await rental.put_device(device.id, cleared.to_wire())
        record = echoed.get("device") if isinstance(echoed, dict) else None
        if not isinstance(record, dict) or record.get("obContract"):
            raise UnexpectedApiError(
                RENTAL_SERVICE,
                f"Device {device.id} still references a contract after removal.",
            )
    except NotFoundError as exc:
        logger.error("Listing for device %s already gone: %s", device.id, exc)
        return False
    except ApiError as exc:
        logger.error("Could not remove listing for device %s: %s", device.id, exc)
        return False

    logger.info(
        "Listing for device %s removed.", device.id, extra={"event": events.LISTING_REMOVED}
    )
    return True


def _succeeded(body: Any) -> bool:
    return isinstance(body, dict) and bool(body.get("success"))
