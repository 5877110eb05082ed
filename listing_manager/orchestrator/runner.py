"""Single-pass entry-point: log in, run selected loop ticks once, exit.

:func:`run_once` backs the ``--once`` CLI flag.  It is useful for smoke-testing
a deployment, or for driving the loops from an external scheduler (cron, a
Kubernetes ``CronJob``) instead of the built-in timers.

Component wiring
----------------
Each call to :func:`run_once`:

1. Loads :class:`~listing_manager.core.settings.Settings` (or uses the
   supplied instance).
2. Opens the rental and marketplace HTTP clients via
   :class:`contextlib.AsyncExitStack`.
3. Logs in as the admin user with a **single** attempt; a failed login
   propagates to the caller.
4. Runs one tick of each selected loop, in ``orders → rented → listed``
   order.
5. Closes every client on exit, including on exceptions.

Typical usage::

    import asyncio
    from listing_manager.orchestrator.runner import LoopName, run_once

    summary = asyncio.run(run_once(loops=[LoopName.RENTED]))
    print(summary)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from enum import StrEnum

import httpx

from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session
from listing_manager.orchestrator.bootstrap import CredentialLoader, login_admin
from listing_manager.orchestrator.fulfillment import FulfillmentOutcome, fulfill_new_orders
from listing_manager.orchestrator.health import (
    ListedCheckStats,
    RentedCheckStats,
    check_listed_devices,
    check_rented_devices,
)

__all__ = ["LoopName", "RunSummary", "run_once", "run_tick"]

logger = logging.getLogger(__name__)


class LoopName(StrEnum):
    """The three reconciliation loops."""

    ORDERS = "orders"
    RENTED = "rented"
    LISTED = "listed"


@dataclass
class RunSummary:
    """Results of one :func:`run_once` call; ``None`` for loops not run."""

    orders: FulfillmentOutcome | None = None
    rented: RentedCheckStats | None = None
    listed: ListedCheckStats | None = None
    duration_s: float = 0.0


async def run_tick(
    name: LoopName,
    rental: RentalApiClient,
    market: MarketplaceClient,
    settings: Settings,
) -> FulfillmentOutcome | RentedCheckStats | ListedCheckStats:
    """Run one tick of loop *name*."""
    if name is LoopName.ORDERS:
        return await fulfill_new_orders(rental, market, settings)
    if name is LoopName.RENTED:
        return await check_rented_devices(rental, settings)
    return await check_listed_devices(rental, market, settings)


async def run_once(
    settings: Settings | None = None,
    loops: Iterable[LoopName] | None = None,
    *,
    credential_loader: CredentialLoader | None = None,
    rental_transport: httpx.AsyncBaseTransport | None = None,
    market_transport: httpx.AsyncBaseTransport | None = None,
) -> RunSummary:
    """Log in and run one tick of each selected loop.

    Args:
        settings: Application settings.  Loaded from environment if ``None``.
        loops: Loops to run; all three when ``None`` or empty.
        credential_loader: Override for reading the admin credential file.
        rental_transport: httpx transport override for the rental client.
        market_transport: httpx transport override for the marketplace client.

    Returns:
        A :class:`RunSummary` with each selected loop's tick result.

    Raises:
        ListingManagerError: The admin login failed.
    """
    if settings is None:
        settings = Settings()

    requested = {LoopName(name) for name in loops} if loops else set(LoopName)
    selected = [name for name in LoopName if name in requested]
    t0 = time.monotonic()
    logger.info("run_once starting — loops=%s", ",".join(selected))

    summary = RunSummary()
    session = Session()
    async with AsyncExitStack() as stack:
        rental = await stack.enter_async_context(
            RentalApiClient(settings, session, transport=rental_transport)
        )
        market = await stack.enter_async_context(
            MarketplaceClient(settings, transport=market_transport)
        )

        await login_admin(
            rental, session, settings, credential_loader=credential_loader, max_attempts=1
        )

        for name in selected:
            setattr(summary, name.value, await run_tick(name, rental, market, settings))

    summary.duration_s = time.monotonic() - t0
    logger.info("run_once finished in %.1f s.", summary.duration_s)
    return summary
