"""Structured log event names.

Key transitions emit a log record with an ``event`` field, passed as
``extra={"event": events.X}``.  It is printed after the tick id in text mode
and under the ``event`` key in JSON mode.

Usage::

    import logging
    from listing_manager.core import events

    logger = logging.getLogger(__name__)
    logger.info("Order fulfilled", extra={"event": events.ORDER_FULFILLED})
"""

from __future__ import annotations

__all__ = [
    # Session
    "LOGIN_OK",
    "LOGIN_RETRY",
    # Tick lifecycle
    "TICK_START",
    "TICK_COMPLETE",
    "TICK_ABORT",
    # Order fulfillment
    "ORDER_FOUND",
    "ORDER_FULFILLED",
    "ORDER_STEP_FAILED",
    # Health checks
    "DEVICE_STALE",
    "DEVICE_EXPIRED",
    "LISTING_REMOVED",
    "LISTING_SKIPPED",
    # Payments
    "PAYMENT_RECORDED",
    "REFUND_SENT",
]

# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

#: Admin login succeeded and the session token is in place.
LOGIN_OK: str = "LOGIN_OK"

#: An admin login attempt failed; another follows after the grace period.
LOGIN_RETRY: str = "LOGIN_RETRY"

# ---------------------------------------------------------------------------
# Tick lifecycle
# ---------------------------------------------------------------------------

#: A loop tick began.
TICK_START: str = "TICK_START"

#: A loop tick ran to the end.
TICK_COMPLETE: str = "TICK_COMPLETE"

#: A loop tick stopped early because of an error.
TICK_ABORT: str = "TICK_ABORT"

# ---------------------------------------------------------------------------
# Order fulfillment
# ---------------------------------------------------------------------------

#: An unread order notification was picked up.
ORDER_FOUND: str = "ORDER_FOUND"

#: Every fulfillment step completed for an order.
ORDER_FULFILLED: str = "ORDER_FULFILLED"

#: A fulfillment step failed; the remaining steps were skipped.
ORDER_STEP_FAILED: str = "ORDER_STEP_FAILED"

# ---------------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------------

#: A device exceeded the check-in delay and was force-expired.
DEVICE_STALE: str = "DEVICE_STALE"

#: A device passed its expiration plus grace buffer.
DEVICE_EXPIRED: str = "DEVICE_EXPIRED"

#: A marketplace listing (and its contract) was removed.
LISTING_REMOVED: str = "LISTING_REMOVED"

#: A listing was skipped because its slug carries no valid device id.
LISTING_SKIPPED: str = "LISTING_SKIPPED"

# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

#: A payment object was appended to a device's private record.
PAYMENT_RECORDED: str = "PAYMENT_RECORDED"

#: A pro-rated refund was sent to a buyer.
REFUND_SENT: str = "REFUND_SENT"
