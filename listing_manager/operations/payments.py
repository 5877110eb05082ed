"""Payment bookkeeping for rentals.

A buyer's payment is held on the device's private record as a
:class:`~listing_manager.core.models.PaymentObject` until the rental it paid
for expires.  The platform fee is withheld up front: the stored ``payQty`` is
the price minus :func:`compute_fee`'s cut.

:func:`prorate` and :func:`refund` settle a rental that ends early.  The
polling loops do not call them yet; they are kept ready for the cancellation
flow.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from listing_manager.clients.marketplace import SERVICE as MARKET_SERVICE
from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core import events
from listing_manager.core.exceptions import UnexpectedApiError
from listing_manager.core.models import (
    DevicePrivateRecord,
    DevicePublicRecord,
    OrderPayment,
    PaymentObject,
    as_utc,
    utc_now,
)
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import TickContext
from listing_manager.operations.devices import get_device_private, parse_record

__all__ = [
    "ProrateResult",
    "add_payment_object",
    "compute_fee",
    "get_order_payment",
    "prorate",
    "refund",
    "save_payments",
]

logger = logging.getLogger(__name__)

#: Period a payment's remaining value is pro-rated over.
PRORATE_BASIS: timedelta = timedelta(days=1)


def compute_fee(price: int, fee_percentage: int = 10) -> tuple[int, int]:
    """Split *price* into ``(fee, net)``.

    The fee is floored to whole units, so the owner never receives less than
    ``price - price * pct / 100``.

    Example::

        >>> compute_fee(1005)
        (100, 905)
    """
    fee = price * fee_percentage // 100
    return fee, price - fee


async def get_order_payment(market: MarketplaceClient, order_id: str) -> OrderPayment:
    """Extract the amount paid and the buyer's refund address from an order.

    Raises:
        UnexpectedApiError: The order document lacks a payment transaction.
        ApiError: The marketplace request failed.
    """
    order = await market.get_order(order_id)
    try:
        price = order["paymentAddressTransactions"][0]["value"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UnexpectedApiError(
            MARKET_SERVICE, f"Order {order_id} carries no payment transaction."
        ) from exc

    buyer_order = (order.get("contract") or {}).get("buyerOrder") or {}
    return parse_record(
        OrderPayment,
        {"price": price, "refund_address": buyer_order.get("refundAddress")},
        f"order {order_id} payment",
    )


async def add_payment_object(
    rental: RentalApiClient,
    market: MarketplaceClient,
    ctx: TickContext,
    *,
    fee_percentage: int = 10,
) -> DevicePrivateRecord:
    """Append a payment for the order in *ctx* to the device's ledger.

    ``payTime`` is the device expiration set earlier in the same tick, so the
    owner is paid once the rental has run its course.

    Raises:
        UnexpectedApiError: *ctx* lacks the notification or private record.
        ApiError: Reading the order or saving the ledger failed.
    """
    if ctx.notification is None or not ctx.notification.order_id:
        raise UnexpectedApiError(MARKET_SERVICE, "No order to record a payment for.")
    private = ctx.device_private
    if private is None:
        raise UnexpectedApiError(MARKET_SERVICE, "No device private record to update.")

    payment = await get_order_payment(market, ctx.notification.order_id)
    fee, net = compute_fee(payment.price, fee_percentage)
    entry = PaymentObject(pay_time=ctx.expiration, pay_qty=net, refund_addr=payment.refund_address)

    updated = private.model_copy(update={"payments": [*private.payments, entry]})
    await save_payments(rental, updated)
    ctx.device_private = updated

    logger.info(
        "Payment of %d recorded for device %s (fee %d).",
        net,
        private.public_data or private.id,
        fee,
        extra={"event": events.PAYMENT_RECORDED},
    )
    return updated


async def save_payments(rental: RentalApiClient, private: DevicePrivateRecord) -> Any:
    """Write the payment ledger and money owed of *private* back to the server."""
    body = {
        "payments": [p.to_wire() for p in private.payments],
        "moneyOwed": private.money_owed,
    }
    return await rental.put_device_private(private.id, body)


# ---------------------------------------------------------------------------
# Early termination
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProrateResult:
    """Outcome of settling a rental's most recent payment early."""

    refunded: int
    paid: int
    refund_address: str | None
    refund_sent: bool


async def prorate(
    rental: RentalApiClient,
    market: MarketplaceClient,
    device: DevicePublicRecord,
    settings: Settings,
    *,
    now: datetime | None = None,
) -> ProrateResult | None:
    """Split the device's latest payment between buyer and owner.

    The unused share, measured against :data:`PRORATE_BASIS` and clamped to
    the payment amount, goes back to the buyer; the rest is added to the
    owner's ``moneyOwed``.  The payment is removed from the ledger.

    Returns:
        ``None`` when the device has no private record or no payments.
    """
    if not device.private_data:
        return None
    private = await get_device_private(rental, device.private_data)
    if private is None or not private.payments:
        return None

    now = as_utc(now or utc_now())
    last = private.payments[-1]
    remaining = as_utc(last.pay_time) - now if last.pay_time else timedelta(0)
    fraction = min(max(remaining / PRORATE_BASIS, 0.0), 1.0)
    refunded = math.floor(last.pay_qty * fraction)
    paid = last.pay_qty - refunded

    settled = private.model_copy(
        update={
            "payments": private.payments[:-1],
            "money_owed": private.money_owed + paid,
        }
    )
    await save_payments(rental, settled)

    sent = await refund(
        market,
        last.refund_addr,
        refunded,
        fee_level=settings.refund_fee_level,
        memo=settings.refund_memo,
    )
    return ProrateResult(
        refunded=refunded, paid=paid, refund_address=last.refund_addr, refund_sent=sent
    )


async def refund(
    market: MarketplaceClient,
    address: str | None,
    amount: int,
    *,
    fee_level: str,
    memo: str,
) -> bool:
    """Send *amount* back to the buyer at *address*.

    Returns ``False`` without contacting the wallet when there is nothing to
    send or nowhere to send it.
    """
    if not address or amount <= 0:
        return False
    await market.send_money(address, amount, fee_level=fee_level, memo=memo)
    logger.info(
        "Refunded %d to %s.", amount, address, extra={"event": events.REFUND_SENT}
    )
    return True
