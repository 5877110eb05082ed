"""Device health loop bodies.

Two 5-minute loops keep the rental and marketplace views of a device honest:

:func:`check_rented_devices`
    Walks the rented-device list.  A device that has not checked in for
    ``max_checkin_delay`` is force-expired (expiration set to *now*) and taken
    off the rented list.

:func:`check_listed_devices`
    Walks the marketplace listings.  Each listing whose slug carries a valid
    device id is checked against three removal triggers, first match wins:

    1. **stale** -- no check-in for ``max_checkin_delay``: force-expire the
       device, then remove the listing;
    2. **expired** -- past the device expiration plus ``expiration_buffer``:
       remove the listing;
    3. **contract expired** -- the backing contract's own expiration has
       passed: remove the listing.

    A listing whose device record is gone (404) is deleted from the
    marketplace by slug and ends the tick.

Failure policy
--------------
Any :class:`~listing_manager.core.exceptions.ListingManagerError` stops the
tick and is logged by kind.  In the rented loop ``isolate_device_failures``
switches to per-device isolation: a failing device is logged and counted and
the walk moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core import events
from listing_manager.core.exceptions import ErrorKind, ListingManagerError, NotFoundError
from listing_manager.core.ids import device_id_from_slug, validate_device_id
from listing_manager.core.models import DevicePublicRecord, DurationPreset, utc_now
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import TickContext
from listing_manager.operations.devices import (
    get_device_public,
    get_rented_devices,
    remove_rented_device,
    update_expiration,
)
from listing_manager.operations.marketplace import get_contract, get_listings, remove_listing
from listing_manager.orchestrator.pipeline import report_tick_error

__all__ = [
    "ListedCheckStats",
    "RemovalReason",
    "RentedCheckStats",
    "check_listed_devices",
    "check_rented_devices",
]

logger = logging.getLogger(__name__)


class RemovalReason(StrEnum):
    """Why a listing was taken down."""

    DEVICE_MISSING = "device_missing"
    STALE = "stale"
    EXPIRED = "expired"
    CONTRACT_EXPIRED = "contract_expired"


# ---------------------------------------------------------------------------
# Stats data classes
# ---------------------------------------------------------------------------


@dataclass
class RentedCheckStats:
    """Counters for one rented-device tick.

    Attributes:
        listed: Device ids returned by the rented-device list.
        checked: Devices whose public record was inspected.
        expired: Stale devices force-expired and removed from the list.
        errors: Devices whose check raised.
        error_kind: Kind of the error that stopped the tick, if any.
    """

    listed: int = 0
    checked: int = 0
    expired: list[str] = field(default_factory=list)
    errors: int = 0
    error_kind: ErrorKind | None = None

    @property
    def aborted(self) -> bool:
        return self.error_kind is not None


@dataclass
class ListedCheckStats:
    """Counters for one listed-device tick.

    Attributes:
        listings: Listings returned by the marketplace.
        skipped: Listings whose slug carries no valid device id.
        checked: Devices whose removal triggers were evaluated.
        removed: Device id → reason, for every listing taken down.
        error_kind: Kind of the error that stopped the tick, if any.
    """

    listings: int = 0
    skipped: int = 0
    checked: int = 0
    removed: dict[str, RemovalReason] = field(default_factory=dict)
    error_kind: ErrorKind | None = None

    @property
    def aborted(self) -> bool:
        return self.error_kind is not None


# ---------------------------------------------------------------------------
# Rented devices
# ---------------------------------------------------------------------------


async def _check_rented_device(
    rental: RentalApiClient,
    device_id: str,
    max_delay: timedelta,
    now: datetime,
    stats: RentedCheckStats,
) -> None:
    device = await get_device_public(rental, device_id)
    stats.checked += 1
    if not device.is_stale(max_delay, now):
        return

    await update_expiration(rental, device_id, DurationPreset.IMMEDIATE, now=now)
    await remove_rented_device(rental, device_id)
    stats.expired.append(device_id)
    logger.info(
        "Device %s has been removed from the rented devices list due to inactivity "
        "(last check-in %s).",
        device_id,
        device.checkin_timestamp,
        extra={"event": events.DEVICE_STALE},
    )


async def check_rented_devices(
    rental: RentalApiClient,
    settings: Settings,
    *,
    now: datetime | None = None,
) -> RentedCheckStats:
    """Run one tick of the rented-device health loop.

    Never raises :class:`~listing_manager.core.exceptions.ListingManagerError`.
    """
    ctx = TickContext(loop="rented")
    stats = RentedCheckStats()
    now = now or utc_now()
    max_delay = timedelta(seconds=settings.max_checkin_delay)

    with ctx.activate():
        logger.debug("Checking rented devices.", extra={"event": events.TICK_START})
        try:
            device_ids = await get_rented_devices(rental)
        except ListingManagerError as exc:
            stats.error_kind = report_tick_error(ctx.loop, exc)
            return stats
        stats.listed = len(device_ids)

        for device_id in device_ids:
            try:
                await _check_rented_device(rental, device_id, max_delay, now, stats)
            except ListingManagerError as exc:
                stats.errors += 1
                kind = report_tick_error(ctx.loop, exc)
                if not settings.isolate_device_failures:
                    stats.error_kind = kind
                    break
                logger.warning("Device %s check failed; moving to the next device.", device_id)

        logger.info(
            "Rented devices: listed=%d checked=%d expired=%d errors=%d",
            stats.listed,
            stats.checked,
            len(stats.expired),
            stats.errors,
            extra={"event": events.TICK_ABORT if stats.aborted else events.TICK_COMPLETE},
        )
    return stats


# ---------------------------------------------------------------------------
# Listed devices
# ---------------------------------------------------------------------------


async def _apply_removal_triggers(
    rental: RentalApiClient,
    market: MarketplaceClient,
    device: DevicePublicRecord,
    settings: Settings,
    now: datetime,
) -> RemovalReason | None:
    """Evaluate the removal triggers for *device*; act on the first match."""
    if device.is_stale(timedelta(seconds=settings.max_checkin_delay), now):
        # Expiring first makes the device reboot when it next comes online.
        expired = await update_expiration(rental, device.id, DurationPreset.IMMEDIATE, now=now)
        # remove_listing writes the record back whole; keep the new expiration in it.
        device = expired or device
        reason = RemovalReason.STALE
        event = events.DEVICE_STALE
    elif device.is_expired(timedelta(seconds=settings.expiration_buffer), now):
        reason = RemovalReason.EXPIRED
        event = events.DEVICE_EXPIRED
    else:
        if not device.has_contract:
            return None
        contract = await get_contract(rental, device.ob_contract)
        if contract is None or not contract.is_expired(now):
            return None
        reason = RemovalReason.CONTRACT_EXPIRED
        event = events.DEVICE_EXPIRED

    removed = await remove_listing(rental, market, device)
    logger.info(
        "Listing for %s %s (%s).",
        device.id,
        "has been removed" if removed else "could not be removed",
        reason.value,
        extra={"event": event},
    )
    return reason if removed else None


async def check_listed_devices(
    rental: RentalApiClient,
    market: MarketplaceClient,
    settings: Settings,
    *,
    now: datetime | None = None,
) -> ListedCheckStats:
    """Run one tick of the listed-device health loop.

    Never raises :class:`~listing_manager.core.exceptions.ListingManagerError`.
    """
    ctx = TickContext(loop="listed")
    stats = ListedCheckStats()
    now = now or utc_now()

    with ctx.activate():
        logger.debug("Checking listed devices.", extra={"event": events.TICK_START})
        try:
            await _walk_listings(rental, market, settings, now, stats)
        except ListingManagerError as exc:
            stats.error_kind = report_tick_error(ctx.loop, exc)

        logger.info(
            "Listed devices: listings=%d skipped=%d checked=%d removed=%d",
            stats.listings,
            stats.skipped,
            stats.checked,
            len(stats.removed),
            extra={"event": events.TICK_ABORT if stats.aborted else events.TICK_COMPLETE},
        )
    return stats


async def _walk_listings(
    rental: RentalApiClient,
    market: MarketplaceClient,
    settings: Settings,
    now: datetime,
    stats: ListedCheckStats,
) -> None:
    listings = await get_listings(market)
    stats.listings = len(listings)

    for listing in listings:
        device_id = device_id_from_slug(listing.slug)
        if not validate_device_id(device_id):
            stats.skipped += 1
            logger.debug(
                "Listing %s carries no device id; skipped.",
                listing.slug,
                extra={"event": events.LISTING_SKIPPED},
            )
            continue

        try:
            device = await get_device_public(rental, device_id)
        except NotFoundError:
            await market.remove_listing(listing.slug)
            stats.removed[device_id] = RemovalReason.DEVICE_MISSING
            logger.info(
                "Listing for %s has been removed because the device record no longer exists.",
                device_id,
                extra={"event": events.LISTING_REMOVED},
            )
            return

        stats.checked += 1
        reason = await _apply_removal_triggers(rental, market, device, settings, now)
        if reason is not None:
            stats.removed[device_id] = reason
