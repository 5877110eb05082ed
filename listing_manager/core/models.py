"""Listing Manager wire models.

Pydantic models for every record the reconciliation loops read from, or write
back to, the two remote services.  Field names follow Python conventions; the
services' camelCase keys are accepted (and re-emitted) through aliases.

Records owned by the rental API are **replaced wholesale** on update
(read-modify-write), so every model keeps unknown fields (``extra="allow"``)
and :meth:`_WireModel.to_wire` round-trips them untouched.

Typical usage::

    from listing_manager.core.models import DevicePublicRecord

    device = DevicePublicRecord.model_validate(payload["device"])
    updated = device.model_copy(update={"expiration": new_expiration})
    body = {"device": updated.to_wire()}
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import IntEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

__all__ = [
    "DurationPreset",
    "DevicePublicRecord",
    "DevicePrivateRecord",
    "PaymentObject",
    "ContractRecord",
    "Notification",
    "MarketplaceListing",
    "OrderPayment",
    "AdminCredentials",
    "as_utc",
    "to_js_iso",
    "utc_now",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


def to_js_iso(value: datetime) -> str:
    """Format *value* the way JavaScript's ``Date.toISOString()`` does.

    Naive datetimes are taken to be UTC.

    Example::

        >>> to_js_iso(datetime(2018, 8, 12, 22, 30, 9, 138000, tzinfo=UTC))
        '2018-08-12T22:30:09.138Z'
    """
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ---------------------------------------------------------------------------
# Duration presets
# ---------------------------------------------------------------------------


class DurationPreset(IntEnum):
    """Named expiration-extension buckets.

    The numeric codes are the selector values the rental tooling has always
    used; :attr:`delta` is the duration each one stands for.
    """

    IMMEDIATE = 0
    TEST = 10
    ONE_HOUR = 20
    ONE_DAY = 30
    ONE_WEEK = 40
    ONE_MONTH = 50

    @property
    def delta(self) -> timedelta:
        """Duration added to the base time for this preset."""
        return _PRESET_DELTAS[self]


_PRESET_DELTAS: dict[DurationPreset, timedelta] = {
    DurationPreset.IMMEDIATE: timedelta(0),
    DurationPreset.TEST: timedelta(minutes=8),
    DurationPreset.ONE_HOUR: timedelta(hours=1),
    DurationPreset.ONE_DAY: timedelta(days=1),
    DurationPreset.ONE_WEEK: timedelta(weeks=1),
    DurationPreset.ONE_MONTH: timedelta(days=30),
}


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    """Common config: accept aliases or field names, keep unknown keys."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        """Serialise to a JSON-ready dict using the service's field names."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Rental API records
# ---------------------------------------------------------------------------


class DevicePublicRecord(_WireModel):
    """Publicly visible record of a rentable device.

    Attributes:
        id: Rental API identifier (24-character hex).
        owner_user: Identifier of the owning user.
        checkin_timestamp: Last time the device checked in with the server.
        expiration: When the current rental (or listing) expires.
        private_data: Identifier of the matching :class:`DevicePrivateRecord`.
        ob_contract: Identifier of the active :class:`ContractRecord`, or
            ``""`` / ``None`` when the device is not listed.
    """

    id: str = Field(..., alias="_id")
    owner_user: str | None = Field(default=None, alias="ownerUser")
    checkin_timestamp: datetime | None = Field(default=None, alias="checkinTimeStamp")
    expiration: datetime | None = None
    private_data: str | None = Field(default=None, alias="privateData")
    ob_contract: str | None = Field(default=None, alias="obContract")

    @field_validator("checkin_timestamp", "expiration", mode="before")
    @classmethod
    def _blank_dates(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_serializer("checkin_timestamp", "expiration", when_used="json-unless-none")
    def _serialise_dates(self, value: datetime) -> str:
        return to_js_iso(value)

    @property
    def has_contract(self) -> bool:
        """``True`` when the device references a marketplace contract."""
        return bool(self.ob_contract)

    def checkin_age(self, now: datetime | None = None) -> timedelta | None:
        """Time elapsed since the last check-in, or ``None`` if never seen."""
        if self.checkin_timestamp is None:
            return None
        return as_utc(now or utc_now()) - as_utc(self.checkin_timestamp)

    def is_stale(self, max_delay: timedelta, now: datetime | None = None) -> bool:
        """``True`` if the device has been silent for longer than *max_delay*.

        A device that never checked in is not considered stale.
        """
        age = self.checkin_age(now)
        return age is not None and age > max_delay

    def is_expired(self, buffer: timedelta, now: datetime | None = None) -> bool:
        """``True`` if *now* is past the expiration plus *buffer*."""
        if self.expiration is None:
            return False
        return as_utc(self.expiration) + buffer < as_utc(now or utc_now())


class PaymentObject(_WireModel):
    """One payment held against a rental until its contract expires.

    Attributes:
        pay_time: Contract expiry; the payment is due to the owner after this.
        pay_qty: Net amount in integer currency units (fee already withheld).
        refund_addr: Buyer address used for refunds.
    """

    pay_time: datetime | None = Field(default=None, alias="payTime")
    pay_qty: int = Field(default=0, alias="payQty")
    refund_addr: str | None = Field(default=None, alias="refundAddr")

    @field_validator("pay_time", mode="before")
    @classmethod
    def _blank_dates(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_serializer("pay_time", when_used="json-unless-none")
    def _serialise_pay_time(self, value: datetime) -> str:
        return to_js_iso(value)


class DevicePrivateRecord(_WireModel):
    """Owner-only record: renter login secrets and the payment ledger."""

    id: str = Field(..., alias="_id")
    owner_user: str | None = Field(default=None, alias="ownerUser")
    public_data: str | None = Field(default=None, alias="publicData")
    device_user_name: str | None = Field(default=None, alias="deviceUserName")
    device_password: str | None = Field(default=None, alias="devicePassword")
    server_ssh_port: str | int | None = Field(default=None, alias="serverSSHPort")
    dash_id: str | None = Field(default=None, alias="dashId")
    payments: list[PaymentObject] = Field(default_factory=list)
    money_owed: int = Field(default=0, alias="moneyOwed")

    @field_validator("payments", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("money_owed", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class ContractRecord(_WireModel):
    """Rental API record linking a device to its marketplace listing.

    The server spells the expiry field ``experation``; both spellings are
    accepted and the server's is written back.
    """

    id: str = Field(..., alias="_id")
    listing_slug: str | None = Field(default=None, alias="listingSlug")
    expiration: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("experation", "expiration"),
        serialization_alias="experation",
    )

    @field_validator("expiration", mode="before")
    @classmethod
    def _blank_dates(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_serializer("expiration", when_used="json-unless-none")
    def _serialise_expiration(self, value: datetime) -> str:
        return to_js_iso(value)

    def is_expired(self, now: datetime | None = None) -> bool:
        """``True`` once the contract's own expiration has passed."""
        if self.expiration is None:
            return False
        return as_utc(now or utc_now()) > as_utc(self.expiration)


# ---------------------------------------------------------------------------
# Marketplace records
# ---------------------------------------------------------------------------


class Notification(_WireModel):
    """A marketplace notification, flattened out of its envelope.

    The marketplace returns ``{"notification": {...}, "read": bool}``; use
    :meth:`from_envelope` to build one from such an entry.
    """

    id: str = Field(default="", validation_alias=AliasChoices("notificationId", "id"))
    type: str = ""
    read: bool = False
    order_id: str | None = Field(default=None, alias="orderId")
    slug: str = ""

    @field_validator("id", "type", "slug", mode="before")
    @classmethod
    def _null_to_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @classmethod
    def from_envelope(cls, entry: dict[str, Any]) -> Notification:
        """Build a :class:`Notification` from one ``notifications[]`` entry."""
        inner = dict(entry.get("notification") or {})
        inner["read"] = bool(entry.get("read", False))
        return cls.model_validate(inner)

    @property
    def is_order(self) -> bool:
        return self.type == "order"


class MarketplaceListing(_WireModel):
    """A store listing; only the slug matters to the reconciliation loops."""

    slug: str


class OrderPayment(BaseModel):
    """Payment facts pulled out of a marketplace order.

    Attributes:
        price: Amount the buyer paid, in integer currency units.
        refund_address: Address refunds for this order go to.
    """

    model_config = ConfigDict(frozen=True)

    price: int = Field(..., ge=0)
    refund_address: str | None = None


class AdminCredentials(BaseModel):
    """Content of the injected admin credential file."""

    model_config = ConfigDict(extra="ignore")

    password: str = Field(..., min_length=1)
