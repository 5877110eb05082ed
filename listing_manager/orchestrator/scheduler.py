"""Continuous scheduler for the Listing Manager.

Runs four asyncio tasks in one event loop:

* the **bootstrapper** (:func:`~listing_manager.orchestrator.bootstrap
  .login_admin`), which retries until the admin session is established and
  then exits;
* the **order loop**, every ``ORDER_POLL_INTERVAL`` (default 120 s);
* the **rented-device loop**, every ``RENTED_CHECK_INTERVAL`` (default 300 s);
* the **listed-device loop**, every ``LISTED_CHECK_INTERVAL`` (default 300 s).

Timing
~~~~~~
Each loop waits one full period before its first tick, then keeps a fixed
rate by sleeping ``period - elapsed`` after every tick.  A tick that overruns
its period is followed immediately by the next one; ticks of the same loop
never overlap.  Ticks of different loops interleave at ``await`` points.

The loop bodies log and swallow their own API errors.  Anything else that
escapes a tick is logged here, and the loop carries on.

Typical usage::

    import asyncio
    from listing_manager.orchestrator.scheduler import run_continuous

    asyncio.run(run_continuous())
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from functools import partial
from typing import Any, NoReturn

import httpx

from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session
from listing_manager.orchestrator.bootstrap import CredentialLoader, login_admin
from listing_manager.orchestrator.runner import LoopName, run_tick

__all__ = ["loop_periods", "run_continuous", "run_periodic"]

logger = logging.getLogger(__name__)


def loop_periods(settings: Settings) -> dict[LoopName, float]:
    """Return each loop's period in seconds."""
    return {
        LoopName.ORDERS: settings.order_poll_interval,
        LoopName.RENTED: settings.rented_check_interval,
        LoopName.LISTED: settings.listed_check_interval,
    }


async def run_periodic(
    name: str,
    period: float,
    tick: Callable[[], Awaitable[Any]],
) -> NoReturn:
    """Call *tick* every *period* seconds, forever.

    The first call happens one period after start.
    """
    logger.info("%s loop started — period %.0f s.", name, period)
    delay = period

    while True:
        await asyncio.sleep(delay)
        started = time.monotonic()
        try:
            await tick()
        except Exception:
            logger.exception("Unhandled exception in %s loop — will retry next tick.", name)
        elapsed = time.monotonic() - started
        if elapsed > period:
            logger.warning(
                "%s tick took %.1f s, longer than its %.0f s period.", name, elapsed, period
            )
        delay = max(period - elapsed, 0.0)


async def run_continuous(
    settings: Settings | None = None,
    *,
    credential_loader: CredentialLoader | None = None,
    rental_transport: httpx.AsyncBaseTransport | None = None,
    market_transport: httpx.AsyncBaseTransport | None = None,
) -> NoReturn:
    """Run the bootstrapper and the three loops until cancelled.

    A ``SIGTERM`` handler cancels every task; clients are closed by the
    :class:`contextlib.AsyncExitStack` on the way out.  ``SIGINT`` follows
    asyncio's default behaviour.

    Args:
        settings: Application settings.  Loaded from environment if ``None``.
        credential_loader: Override for reading the admin credential file.
        rental_transport: httpx transport override for the rental client.
        market_transport: httpx transport override for the marketplace client.

    Raises:
        asyncio.CancelledError: On shutdown (SIGTERM, Ctrl+C, task cancel).
    """
    if settings is None:
        settings = Settings()

    periods = loop_periods(settings)
    logger.info(
        "Listing Manager entering continuous mode — orders %.0f s | rented %.0f s | listed %.0f s.",
        periods[LoopName.ORDERS],
        periods[LoopName.RENTED],
        periods[LoopName.LISTED],
    )

    session = Session()
    async with AsyncExitStack() as stack:
        rental = await stack.enter_async_context(
            RentalApiClient(settings, session, transport=rental_transport)
        )
        market = await stack.enter_async_context(
            MarketplaceClient(settings, transport=market_transport)
        )

        tasks = [
            asyncio.create_task(
                login_admin(rental, session, settings, credential_loader=credential_loader),
                name="listing-manager-bootstrap",
            )
        ]
        tasks.extend(
            asyncio.create_task(
                run_periodic(name.value, period, partial(run_tick, name, rental, market, settings)),
                name=f"listing-manager-{name.value}-loop",
            )
            for name, period in periods.items()
        )

        # ------------------------------------------------------------------
        # SIGTERM handler
        # ------------------------------------------------------------------
        loop = asyncio.get_running_loop()
        shutdown_signal: list[str] = []

        def _request_shutdown(signame: str) -> None:
            if not shutdown_signal:
                shutdown_signal.append(signame)
                logger.info("Received %s — shutting down; cancelling active tasks.", signame)
            for task in tasks:
                task.cancel()

        loop.add_signal_handler(signal.SIGTERM, lambda: _request_shutdown("SIGTERM"))

        try:
            await asyncio.gather(*tasks)
        except (asyncio.CancelledError, KeyboardInterrupt):
            if shutdown_signal:
                logger.info("Shutdown complete (signal: %s).", shutdown_signal[0])
            else:
                logger.info("Continuous mode cancelled — stopping tasks.")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(signal.SIGTERM)

    raise RuntimeError("run_continuous exited unexpectedly")
