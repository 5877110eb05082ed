"""Order fulfillment loop body.

One call to :func:`fulfill_new_orders` is one tick of the 2-minute order loop.
A tick handles **at most one** notification, the first unread one, and walks
it through::

    IDLE → NOTIFICATION_FOUND → DEVICE_RESOLVED → FULFILLED
         → LISTING_REMOVED → PAYMENT_RECORDED → (IDLE)

Resolution (steps 1-3) runs inline: no notification, a non-order
notification, or an unresolvable device ends the tick quietly.  The side
effects (steps 4-8) run as a :func:`~listing_manager.orchestrator.pipeline
.run_steps` pipeline that stops at the first failed step.  Completed steps are
not rolled back; each is safe to repeat.

A non-order notification is left unread, so it stays first in the queue and
the loop keeps skipping it on later ticks until it is read elsewhere.

All per-order scratch state lives in a fresh
:class:`~listing_manager.core.tick_context.TickContext`, dropped when the tick
ends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from functools import partial

from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core import events
from listing_manager.core.exceptions import ErrorKind, ListingManagerError
from listing_manager.core.ids import is_renewal_slug, require_device_id
from listing_manager.core.models import DevicePublicRecord
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import TickContext
from listing_manager.operations.devices import (
    add_rented_device,
    get_device_private,
    get_device_public,
    update_expiration,
)
from listing_manager.operations.marketplace import (
    fulfill_order,
    get_new_notifications,
    mark_notification_read,
    remove_listing,
)
from listing_manager.operations.payments import add_payment_object
from listing_manager.orchestrator.pipeline import (
    PipelineOutcome,
    Step,
    report_tick_error,
    run_steps,
)

__all__ = ["FulfillmentOutcome", "FulfillmentState", "fulfill_new_orders"]

logger = logging.getLogger(__name__)

LOOP_NAME: str = "orders"

#: Wording for a 5xx that stops the order loop.
_SERVER_ERROR_MESSAGE = (
    "There was an issue with finding the listing on the marketplace server. Skipping."
)


class FulfillmentState(StrEnum):
    """Furthest point an order reached within one tick."""

    IDLE = "idle"
    NOTIFICATION_FOUND = "notification_found"
    DEVICE_RESOLVED = "device_resolved"
    FULFILLED = "fulfilled"
    LISTING_REMOVED = "listing_removed"
    PAYMENT_RECORDED = "payment_recorded"


#: State reached once the named pipeline step has succeeded.
_STEP_STATES: dict[str, FulfillmentState] = {
    "mark_notification_read": FulfillmentState.FULFILLED,
    "remove_listing": FulfillmentState.LISTING_REMOVED,
    "add_payment_object": FulfillmentState.PAYMENT_RECORDED,
}


@dataclass
class FulfillmentOutcome:
    """What one order-loop tick did.

    Attributes:
        state: Furthest :class:`FulfillmentState` reached.
        order_id: Marketplace order handled, if any.
        device_id: Device the order was for, if resolved from the slug.
        is_renewal: The order extends an existing rental.
        expiration: New expiration written to the device, once extended.
        failed_step: Name of the step that stopped the tick, if any.
        error_kind: Kind of the error that stopped the tick, if any.
    """

    state: FulfillmentState = FulfillmentState.IDLE
    order_id: str | None = None
    device_id: str | None = None
    is_renewal: bool = False
    expiration: datetime | None = None
    failed_step: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def completed(self) -> bool:
        return self.state is FulfillmentState.PAYMENT_RECORDED


def _state_after(pipeline: PipelineOutcome, current: FulfillmentState) -> FulfillmentState:
    state = current
    for result in pipeline.results:
        if result.ok and result.name in _STEP_STATES:
            state = _STEP_STATES[result.name]
    return state


# ---------------------------------------------------------------------------
# Steps needing more than a direct operation call
# ---------------------------------------------------------------------------


async def _extend_expiration(
    rental: RentalApiClient,
    ctx: TickContext,
    settings: Settings,
    now: datetime | None,
) -> DevicePublicRecord | bool:
    assert ctx.device is not None
    record = await update_expiration(
        rental,
        ctx.device.id,
        settings.rental_duration_preset,
        is_renewal=ctx.is_renewal,
        now=now,
    )
    if record is None:
        logger.error("Error updating expiration for device %s.", ctx.device.id)
        return False
    ctx.device = record
    ctx.expiration = record.expiration
    return record


async def _remove_listing(
    rental: RentalApiClient, market: MarketplaceClient, ctx: TickContext
) -> bool:
    assert ctx.device is not None
    if not await remove_listing(rental, market, ctx.device):
        # Already-removed listings report False; the order still completes.
        logger.warning("Listing for device %s was not removed; continuing.", ctx.device.id)
    return True


# ---------------------------------------------------------------------------
# Tick
# ---------------------------------------------------------------------------


async def fulfill_new_orders(
    rental: RentalApiClient,
    market: MarketplaceClient,
    settings: Settings,
    *,
    now: datetime | None = None,
) -> FulfillmentOutcome:
    """Run one tick of the order fulfillment loop.

    Never raises :class:`~listing_manager.core.exceptions.ListingManagerError`:
    failures are logged and reflected in the returned outcome.

    Args:
        rental: Rental API client (authenticated through its session).
        market: Marketplace client.
        settings: Application settings (extension preset, fee, host).
        now: Reference time for the expiration update; defaults to now.
    """
    ctx = TickContext(loop=LOOP_NAME)
    outcome = FulfillmentOutcome()

    with ctx.activate():
        logger.info("Checking for new orders.", extra={"event": events.TICK_START})
        try:
            await _run_tick(rental, market, settings, ctx, outcome, now)
        except ListingManagerError as exc:
            outcome.error_kind = report_tick_error(
                LOOP_NAME, exc, server_error_message=_SERVER_ERROR_MESSAGE
            )
    return outcome


async def _run_tick(
    rental: RentalApiClient,
    market: MarketplaceClient,
    settings: Settings,
    ctx: TickContext,
    outcome: FulfillmentOutcome,
    now: datetime | None,
) -> None:
    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------
    notes = await get_new_notifications(market)
    if not notes:
        logger.debug("No new notifications.")
        return

    note = notes[0]
    if not note.is_order:
        logger.debug("Notification %s is not an order. Exiting.", note.id)
        return

    ctx.notification = note
    ctx.is_renewal = is_renewal_slug(note.slug)
    outcome.order_id = note.order_id
    outcome.is_renewal = ctx.is_renewal
    outcome.device_id = require_device_id(note.slug)
    outcome.state = FulfillmentState.NOTIFICATION_FOUND
    logger.info(
        "Fulfilling %s order %s for %s.",
        "renewal" if ctx.is_renewal else "new",
        note.order_id,
        note.slug,
        extra={"event": events.ORDER_FOUND},
    )

    # ------------------------------------------------------------------
    # Device records
    # ------------------------------------------------------------------
    ctx.device = await get_device_public(rental, outcome.device_id)
    if not ctx.device.private_data:
        logger.error("Device %s has no private record reference.", ctx.device.id)
        return

    ctx.device_private = await get_device_private(rental, ctx.device.private_data)
    if ctx.device_private is None:
        logger.error("Could not find the private record for device %s.", ctx.device.id)
        return
    outcome.state = FulfillmentState.DEVICE_RESOLVED

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------
    steps: list[Step] = [
        ("fulfill_order", partial(fulfill_order, market, ctx, host=settings.fulfillment_host)),
        ("mark_notification_read", partial(mark_notification_read, market, note)),
        ("update_expiration", partial(_extend_expiration, rental, ctx, settings, now)),
        ("add_rented_device", partial(add_rented_device, rental, outcome.device_id)),
        ("remove_listing", partial(_remove_listing, rental, market, ctx)),
        (
            "add_payment_object",
            partial(
                add_payment_object, rental, market, ctx, fee_percentage=settings.fee_percentage
            ),
        ),
    ]
    pipeline = await run_steps(steps)
    outcome.state = _state_after(pipeline, outcome.state)
    extended = pipeline.value_of("update_expiration")
    if isinstance(extended, DevicePublicRecord):
        outcome.expiration = extended.expiration

    failed = pipeline.failed
    if failed is not None:
        outcome.failed_step = failed.name
        outcome.error_kind = failed.kind
        logger.error(
            "Order %s stopped at step %s.",
            note.order_id,
            failed.name,
            extra={"event": events.ORDER_STEP_FAILED},
        )
        if failed.error is not None:
            report_tick_error(
                LOOP_NAME, failed.error, server_error_message=_SERVER_ERROR_MESSAGE
            )
        return

    logger.info(
        "Order %s complete; listing for %s removed, rented until %s.",
        note.order_id,
        outcome.device_id,
        outcome.expiration,
        extra={"event": events.TICK_COMPLETE},
    )
