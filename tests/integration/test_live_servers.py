"""Live integration tests — client wiring against running servers.

These tests talk to a **real** rental API and marketplace node and validate
that:

* The request shapes (paths, bearer and basic auth) are still accepted.
* The responses parse into our wire models without uncaught exceptions.

Only read-only calls are made; nothing is fulfilled, delisted or expired.

Default behaviour
-----------------
All tests in this module are marked ``@pytest.mark.integration`` and are
**excluded from the default test run** (``addopts = "-m 'not integration'"``
in ``pyproject.toml``).

Run on demand::

    pytest -m integration tests/integration/test_live_servers.py

Guards
------
* Rental API tests are **skipped** when ``RENTAL_API_URL`` is absent.
* Marketplace tests are **skipped** when ``MARKETPLACE_URL`` is absent.
* The admin login test additionally needs the credential file named by
  ``ADMIN_CREDENTIALS_PATH``.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core.ids import validate_device_id
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session
from listing_manager.operations import get_listings, get_new_notifications, get_rented_devices
from listing_manager.orchestrator.bootstrap import login_admin

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_RENTAL_CONFIGURED: bool = bool(os.environ.get("RENTAL_API_URL"))
_MARKET_CONFIGURED: bool = bool(os.environ.get("MARKETPLACE_URL"))

_skip_if_no_rental = pytest.mark.skipif(
    not _RENTAL_CONFIGURED,
    reason="RENTAL_API_URL is not set — skipping live rental API tests.",
)

_skip_if_no_market = pytest.mark.skipif(
    not _MARKET_CONFIGURED,
    reason="MARKETPLACE_URL is not set — skipping live marketplace tests.",
)


@pytest.fixture()
def live_settings() -> Settings:
    """Settings from the real ``.env`` / environment, with no login delay."""
    return Settings().model_copy(update={"startup_grace_period": 0})


@pytest.mark.integration
class TestRentalApiLive:
    @_skip_if_no_rental
    async def test_rented_device_ids_are_well_formed(self, live_settings: Settings) -> None:
        async with RentalApiClient(live_settings, Session()) as rental:
            device_ids = await get_rented_devices(rental)
        logger.info("Rental API lists %d rented devices.", len(device_ids))
        assert all(validate_device_id(device_id) for device_id in device_ids)

    @_skip_if_no_rental
    async def test_admin_login(self, live_settings: Settings) -> None:
        if not live_settings.admin_credentials_path_resolved.exists():
            pytest.skip("Admin credential file not present.")
        session = Session()
        async with RentalApiClient(live_settings, session) as rental:
            await login_admin(rental, session, live_settings, max_attempts=1)
        assert session.is_authenticated


@pytest.mark.integration
class TestMarketplaceLive:
    @_skip_if_no_market
    async def test_notifications_parse(self, live_settings: Settings) -> None:
        async with MarketplaceClient(live_settings) as market:
            notes = await get_new_notifications(market)
        assert all(not note.read for note in notes)

    @_skip_if_no_market
    async def test_listings_parse(self, live_settings: Settings) -> None:
        async with MarketplaceClient(live_settings) as market:
            listings = await get_listings(market)
        logger.info("Marketplace lists %d listings.", len(listings))
        assert all(listing.slug for listing in listings)
