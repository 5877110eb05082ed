"""Device-side helper operations against the rental API.

Each function is one self-contained request/response unit shared by the
polling loops:

* :func:`get_device_public` / :func:`get_device_private` — fetch records.
* :func:`update_expiration` — read-modify-write of a device's expiration,
  with the date arithmetic isolated in :func:`compute_expiration`.
* :func:`add_rented_device` / :func:`remove_rented_device` /
  :func:`get_rented_devices` — maintain the rented-device list.

Errors surface as :class:`~listing_manager.core.exceptions.ApiError`
subclasses, already classified by the HTTP layer; these functions add context
to the log and re-raise.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Final, TypeVar

from pydantic import BaseModel, ValidationError

from listing_manager.clients.rental import SERVICE, RentalApiClient
from listing_manager.core.exceptions import (
    ApiError,
    DatabaseError,
    NotFoundError,
    ServerError,
    UnexpectedApiError,
)
from listing_manager.core.models import (
    DevicePrivateRecord,
    DevicePublicRecord,
    DurationPreset,
    as_utc,
    utc_now,
)

__all__ = [
    "add_rented_device",
    "compute_expiration",
    "get_device_private",
    "get_device_public",
    "get_rented_devices",
    "parse_record",
    "remove_rented_device",
    "update_expiration",
]

logger = logging.getLogger(__name__)

#: Message the rental API sends with HTTP 422 when a device is already rented.
ALREADY_IN_LIST: Final[str] = "Device already in list"

_M = TypeVar("_M", bound=BaseModel)


def parse_record(model: type[_M], data: Any, what: str) -> _M:
    """Validate *data* as *model*, mapping schema errors to ``UnexpectedApiError``."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise UnexpectedApiError(SERVICE, f"Malformed {what}: {exc}") from exc


def _envelope(body: Any, key: str) -> Any:
    if isinstance(body, dict):
        return body.get(key)
    return None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


async def get_device_public(rental: RentalApiClient, device_id: str) -> DevicePublicRecord:
    """Fetch the public record of *device_id*.

    Raises:
        NotFoundError: The device does not exist (404 or empty envelope).
        DatabaseError: The rental API tagged the failure ``"database error"``.
        ServerError: Any other 5xx or a transport failure.
    """
    try:
        body = await rental.get_device(device_id)
    except DatabaseError:
        logger.error("Database error. Device %s could not be found.", device_id)
        raise
    except ServerError:
        logger.error(
            "Connection to the rental API failed fetching device %s. Will try again.",
            device_id,
        )
        raise

    device = _envelope(body, "device")
    if device is None:
        raise NotFoundError(SERVICE, f"No device public record with id {device_id}")
    return parse_record(DevicePublicRecord, device, f"device record {device_id}")


async def get_device_private(
    rental: RentalApiClient, private_id: str
) -> DevicePrivateRecord | None:
    """Fetch a private record by its own id.

    Returns:
        The record, or ``None`` when the response carries no record.

    Raises:
        ServerError: On **any** request failure; non-5xx failures are
            re-wrapped so callers see a single error kind.
    """
    try:
        body = await rental.get_device_private(private_id)
    except ServerError:
        logger.error("Could not fetch private record %s.", private_id)
        raise
    except ApiError as exc:
        logger.error("Could not fetch private record %s: %s", private_id, exc)
        raise ServerError(
            SERVICE,
            f"Private record {private_id} unavailable: {exc}",
            status_code=exc.status_code,
            body=exc.body,
        ) from exc

    data = _envelope(body, "devicePrivateData")
    if data is None:
        return None
    return parse_record(DevicePrivateRecord, data, f"private record {private_id}")


# ---------------------------------------------------------------------------
# Expiration
# ---------------------------------------------------------------------------


def compute_expiration(
    preset: DurationPreset,
    *,
    is_renewal: bool,
    current: datetime | None,
    now: datetime | None = None,
) -> datetime:
    """Return the new expiration for a device.

    New rentals expire ``now + preset.delta``; renewals extend the existing
    expiration, ``current + preset.delta``.  A renewal of a device with no
    expiration on record starts from *now*.

    Example::

        compute_expiration(DurationPreset.ONE_DAY, is_renewal=False,
                           current=None, now=t0)           # t0 + 1 day
    """
    now = as_utc(now or utc_now())
    if is_renewal and current is not None:
        return as_utc(current) + preset.delta
    return now + preset.delta


async def update_expiration(
    rental: RentalApiClient,
    device_id: str,
    preset: DurationPreset,
    *,
    is_renewal: bool = False,
    now: datetime | None = None,
) -> DevicePublicRecord | None:
    """Set a device's expiration according to *preset*.

    Reads the full device record, replaces ``expiration`` and PUTs the whole
    record back.

    Returns:
        The updated record as echoed by the server, or ``None`` if the echo
        lacks an expiration.

    Raises:
        NotFoundError: The device does not exist.
        ApiError: Any other failure of the GET or PUT.
    """
    body = await rental.get_device(device_id)
    data = _envelope(body, "device")
    if data is None:
        raise NotFoundError(SERVICE, f"No device public record with id {device_id}")
    device = parse_record(DevicePublicRecord, data, f"device record {device_id}")

    expiration = compute_expiration(
        preset, is_renewal=is_renewal, current=device.expiration, now=now
    )
    logger.debug(
        "Device %s expiration %s -> %s (%s, %s).",
        device_id,
        device.expiration,
        expiration,
        preset.name,
        "renewal" if is_renewal else "new rental",
    )

    updated = device.model_copy(update={"expiration": expiration})
    echoed = _envelope(await rental.put_device(device_id, updated.to_wire()), "device")
    if not echoed or not echoed.get("expiration"):
        logger.warning("Server did not confirm the new expiration for device %s.", device_id)
        return None

    result = parse_record(DevicePublicRecord, echoed, f"device record {device_id}")
    logger.info("Expiration for device %s updated to %s.", device_id, result.expiration)
    return result


# ---------------------------------------------------------------------------
# Rented-device list
# ---------------------------------------------------------------------------


async def add_rented_device(rental: RentalApiClient, device_id: str) -> bool:
    """Add *device_id* to the rented-device list.

    Idempotent: the server's HTTP 422 ``"Device already in list"`` answer is
    reported as success.

    Raises:
        UnexpectedApiError: The server did not confirm the addition.
        ApiError: Any other failure.
    """
    try:
        body = await rental.add_rented_device(device_id)
    except UnexpectedApiError as exc:
        if exc.status_code == 422 and ALREADY_IN_LIST in str(exc.body):
            logger.debug("Device %s already in the rented-device list.", device_id)
            return True
        logger.error("Could not add device %s to the rented-device list: %s", device_id, exc)
        raise

    if not _envelope(body, "success"):
        raise UnexpectedApiError(
            SERVICE, f"Could not add device {device_id} to the rented-device list."
        )
    return True


async def remove_rented_device(rental: RentalApiClient, device_id: str) -> bool:
    """Remove *device_id* from the rented-device list.

    Raises:
        UnexpectedApiError: The server did not confirm the removal.
        ApiError: Any other failure.
    """
    try:
        body = await rental.remove_rented_device(device_id)
        if not _envelope(body, "success"):
            raise UnexpectedApiError(
                SERVICE, f"Server did not confirm removal of device {device_id}."
            )
    except ApiError:
        logger.error("Could not remove device %s from the rented-device list.", device_id)
        raise
    return True


async def get_rented_devices(rental: RentalApiClient) -> list[str]:
    """Return the ids stored in the rented-device list.

    Raises:
        UnexpectedApiError: The response has no ``devices`` array.
        ApiError: Any other failure.
    """
    try:
        devices = _envelope(await rental.list_rented_devices(), "devices")
        if not isinstance(devices, list):
            raise UnexpectedApiError(SERVICE, "Response carried no list of rented devices.")
    except ApiError:
        logger.error("Could not retrieve the list of rented devices from the server.")
        raise
    return [str(device_id) for device_id in devices]
