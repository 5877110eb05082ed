"""Unit tests for the rented- and listed-device health loops."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from listing_manager.clients.marketplace import MarketplaceClient
from listing_manager.clients.rental import RentalApiClient
from listing_manager.core.exceptions import ErrorKind, NotFoundError, ServerError
from listing_manager.core.models import to_js_iso
from listing_manager.core.settings import Settings
from listing_manager.orchestrator.health import (
    RemovalReason,
    check_listed_devices,
    check_rented_devices,
)

NOW = datetime(2018, 8, 12, 22, 30, 9, 138000, tzinfo=UTC)
DEVICE_A = "aaaaaaaaaaaaaaaaaaaaaaaa"
DEVICE_B = "bbbbbbbbbbbbbbbbbbbbbbbb"
DEVICE_C = "cccccccccccccccccccccccc"


def _device(
    device_id: str,
    *,
    checkin_ago: timedelta = timedelta(minutes=1),
    expires_in: timedelta = timedelta(days=1),
    contract: str = "contract-1",
) -> dict[str, Any]:
    return {
        "_id": device_id,
        "checkinTimeStamp": to_js_iso(NOW - checkin_ago),
        "expiration": to_js_iso(NOW + expires_in),
        "privateData": "private-1",
        "obContract": contract,
    }


def _device_store(devices: dict[str, dict[str, Any]]) -> Callable[[str], Any]:
    """``get_device`` side effect serving *devices*; unknown ids answer 404."""

    async def get_device(device_id: str) -> Any:
        if device_id not in devices:
            raise NotFoundError("rental", f"no device {device_id}", status_code=404)
        return {"device": devices[device_id]}

    return get_device


async def _echo(device_id: str, body: dict[str, Any]) -> dict[str, Any]:
    return {"device": body}


@pytest.fixture()
def rental() -> MagicMock:
    mock = MagicMock(spec=RentalApiClient)
    mock.put_device.side_effect = _echo
    mock.remove_rented_device.return_value = {"success": True}
    mock.delete_contract.return_value = {"success": True}
    mock.get_contract.return_value = {
        "obContract": {
            "_id": "contract-1",
            "listingSlug": "listing",
            "experation": to_js_iso(NOW + timedelta(days=1)),
        }
    }
    return mock


@pytest.fixture()
def market() -> MagicMock:
    return MagicMock(spec=MarketplaceClient)


# ---------------------------------------------------------------------------
# Rented devices
# ---------------------------------------------------------------------------


class TestCheckRentedDevices:
    async def test_stale_device_is_force_expired_and_removed(
        self, rental: MagicMock, settings: Settings
    ) -> None:
        rental.list_rented_devices.return_value = {"devices": [DEVICE_A, DEVICE_B]}
        rental.get_device.side_effect = _device_store(
            {
                DEVICE_A: _device(DEVICE_A, checkin_ago=timedelta(minutes=11)),
                DEVICE_B: _device(DEVICE_B),
            }
        )

        stats = await check_rented_devices(rental, settings, now=NOW)

        assert (stats.listed, stats.checked, stats.expired) == (2, 2, [DEVICE_A])
        assert not stats.aborted
        device_id, body = rental.put_device.await_args.args
        assert device_id == DEVICE_A
        assert body["expiration"] == to_js_iso(NOW)
        rental.remove_rented_device.assert_awaited_once_with(DEVICE_A)

    async def test_device_within_delay_is_kept(
        self, rental: MagicMock, settings: Settings
    ) -> None:
        rental.list_rented_devices.return_value = {"devices": [DEVICE_A]}
        rental.get_device.side_effect = _device_store(
            {DEVICE_A: _device(DEVICE_A, checkin_ago=timedelta(minutes=9))}
        )

        stats = await check_rented_devices(rental, settings, now=NOW)

        assert stats.expired == []
        rental.put_device.assert_not_awaited()
        rental.remove_rented_device.assert_not_awaited()

    async def test_first_failure_aborts_tick(
        self, rental: MagicMock, settings: Settings
    ) -> None:
        rental.list_rented_devices.return_value = {"devices": [DEVICE_C, DEVICE_A]}
        rental.get_device.side_effect = _device_store(
            {DEVICE_A: _device(DEVICE_A, checkin_ago=timedelta(hours=1))}
        )

        stats = await check_rented_devices(rental, settings, now=NOW)

        assert stats.aborted
        assert stats.error_kind is ErrorKind.NOT_FOUND
        assert (stats.checked, stats.errors, stats.expired) == (0, 1, [])

    async def test_isolation_keeps_walking(self, rental: MagicMock, settings: Settings) -> None:
        isolated = settings.model_copy(update={"isolate_device_failures": True})
        rental.list_rented_devices.return_value = {"devices": [DEVICE_C, DEVICE_A]}
        rental.get_device.side_effect = _device_store(
            {DEVICE_A: _device(DEVICE_A, checkin_ago=timedelta(hours=1))}
        )

        stats = await check_rented_devices(rental, isolated, now=NOW)

        assert not stats.aborted
        assert (stats.checked, stats.errors, stats.expired) == (1, 1, [DEVICE_A])

    async def test_list_failure_aborts(self, rental: MagicMock, settings: Settings) -> None:
        rental.list_rented_devices.side_effect = ServerError("rental", "down")

        stats = await check_rented_devices(rental, settings, now=NOW)

        assert stats.error_kind is ErrorKind.SERVER_ERROR
        rental.get_device.assert_not_awaited()


# ---------------------------------------------------------------------------
# Listed devices
# ---------------------------------------------------------------------------


class TestCheckListedDevices:
    async def test_invalid_slugs_are_skipped(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [
            {"slug": "handmade-scarf"},
            {"slug": "pi-ABCDEFABCDEFABCDEFABCDEF"},
        ]

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert (stats.listings, stats.skipped, stats.checked) == (2, 2, 0)
        rental.get_device.assert_not_awaited()

    async def test_healthy_listing_is_left_alone(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [{"slug": f"pi-{DEVICE_A}"}]
        rental.get_device.side_effect = _device_store({DEVICE_A: _device(DEVICE_A)})

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.checked == 1
        assert stats.removed == {}
        market.remove_listing.assert_not_awaited()

    async def test_stale_wins_over_expired(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [{"slug": f"pi-{DEVICE_A}"}]
        rental.get_device.side_effect = _device_store(
            {
                DEVICE_A: _device(
                    DEVICE_A, checkin_ago=timedelta(hours=2), expires_in=-timedelta(hours=1)
                )
            }
        )

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.removed == {DEVICE_A: RemovalReason.STALE}
        first_put = rental.put_device.await_args_list[0].args[1]
        assert first_put["expiration"] == to_js_iso(NOW)
        market.remove_listing.assert_awaited_once_with("listing")

    async def test_stale_device_stays_expired_after_removal(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [{"slug": f"pi-{DEVICE_A}"}]
        rental.get_device.side_effect = _device_store(
            {DEVICE_A: _device(DEVICE_A, checkin_ago=timedelta(hours=2))}
        )

        await check_listed_devices(rental, market, settings, now=NOW)

        assert rental.put_device.await_count == 2
        last_put = rental.put_device.await_args_list[-1].args[1]
        assert last_put["obContract"] == ""
        assert last_put["expiration"] == to_js_iso(NOW)

    async def test_expiration_buffer(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [
            {"slug": f"pi-{DEVICE_A}"},
            {"slug": f"pi-{DEVICE_B}"},
        ]
        rental.get_device.side_effect = _device_store(
            {
                DEVICE_A: _device(DEVICE_A, expires_in=-timedelta(minutes=4)),
                DEVICE_B: _device(DEVICE_B, expires_in=-timedelta(minutes=6)),
            }
        )

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.checked == 2
        assert stats.removed == {DEVICE_B: RemovalReason.EXPIRED}

    async def test_contract_expiry(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [{"slug": f"pi-{DEVICE_A}"}]
        rental.get_device.side_effect = _device_store({DEVICE_A: _device(DEVICE_A)})
        rental.get_contract.return_value = {
            "obContract": {
                "_id": "contract-1",
                "listingSlug": "listing",
                "experation": to_js_iso(NOW - timedelta(minutes=1)),
            }
        }

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.removed == {DEVICE_A: RemovalReason.CONTRACT_EXPIRED}

    async def test_unlisted_device_skips_contract_lookup(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [{"slug": f"pi-{DEVICE_A}"}]
        rental.get_device.side_effect = _device_store({DEVICE_A: _device(DEVICE_A, contract="")})

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.removed == {}
        rental.get_contract.assert_not_awaited()

    async def test_missing_device_removes_listing_and_ends_tick(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [
            {"slug": f"pi-{DEVICE_C}"},
            {"slug": f"pi-{DEVICE_A}"},
        ]
        rental.get_device.side_effect = _device_store({DEVICE_A: _device(DEVICE_A)})

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.removed == {DEVICE_C: RemovalReason.DEVICE_MISSING}
        assert stats.checked == 0
        market.remove_listing.assert_awaited_once_with(f"pi-{DEVICE_C}")
        rental.get_device.assert_awaited_once_with(DEVICE_C)

    async def test_failed_removal_is_not_counted(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.return_value = [{"slug": f"pi-{DEVICE_A}"}]
        rental.get_device.side_effect = _device_store(
            {DEVICE_A: _device(DEVICE_A, expires_in=-timedelta(hours=1))}
        )
        rental.delete_contract.return_value = {"success": False}

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.checked == 1
        assert stats.removed == {}
        assert not stats.aborted

    async def test_listing_fetch_failure_aborts(
        self, rental: MagicMock, market: MagicMock, settings: Settings
    ) -> None:
        market.get_listings.side_effect = ServerError("marketplace", "reset")

        stats = await check_listed_devices(rental, market, settings, now=NOW)

        assert stats.error_kind is ErrorKind.SERVER_ERROR
        assert stats.listings == 0
