"""Unit tests for ``listing_manager.core``.

Covers:
- :class:`~listing_manager.core.settings.Settings` defaults, env loading and
  validation.
- Wire models: aliases, blank-date coercion, JS-style ISO output, staleness
  and expiry helpers, notification envelopes.
- :mod:`~listing_manager.core.ids` identifier extraction and validation.
- :mod:`~listing_manager.core.exceptions` status classification.
- :class:`~listing_manager.core.tick_context.TickContext` log correlation.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from listing_manager.core.exceptions import (
    ApiError,
    DatabaseError,
    ErrorKind,
    IdentifierValidationError,
    NotFoundError,
    ServerError,
    UnexpectedApiError,
    api_error_for,
    classify_status,
)
from listing_manager.core.ids import (
    device_id_from_slug,
    is_renewal_slug,
    require_device_id,
    validate_device_id,
)
from listing_manager.core.logging_config import (
    _TEXT_LAYOUT,
    HANDLER_NAME,
    TICK_ID_CTX,
    JsonFormatter,
    TickContextFilter,
    configure_logging,
)
from listing_manager.core.models import (
    ContractRecord,
    DevicePrivateRecord,
    DevicePublicRecord,
    DurationPreset,
    Notification,
    PaymentObject,
    as_utc,
    to_js_iso,
)
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session, TickContext

DEVICE_ID = "abcdef0123456789abcdef01"
NOW = datetime(2018, 8, 12, 22, 30, 9, 138000, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults_match_reference_constants(self, clean_env: None) -> None:
        s = Settings()
        assert s.order_poll_interval == 120
        assert s.rented_check_interval == 300
        assert s.listed_check_interval == 300
        assert s.max_checkin_delay == 600
        assert s.expiration_buffer == 300
        assert s.startup_grace_period == 10
        assert s.fee_percentage == 10
        assert s.rental_duration_preset is DurationPreset.ONE_MONTH
        assert s.isolate_device_failures is False
        assert s.http_max_attempts == 1

    def test_base_urls_include_port(self, clean_env: None) -> None:
        s = Settings(rental_api_url="http://rental/", rental_api_port="5000")
        assert s.rental_api_base_url == "http://rental:5000"
        assert s.marketplace_base_url == "http://serverdeployment2_openbazaar_1:4002"

    def test_blank_port_leaves_url_alone(self, clean_env: None) -> None:
        s = Settings(marketplace_url="https://market.example", marketplace_port="")
        assert s.marketplace_base_url == "https://market.example"

    def test_env_vars_override_defaults(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ORDER_POLL_INTERVAL", "5")
        monkeypatch.setenv("ISOLATE_DEVICE_FAILURES", "true")
        monkeypatch.setenv("RENTAL_DURATION_PRESET", "30")
        s = Settings()
        assert s.order_poll_interval == 5
        assert s.isolate_device_failures is True
        assert s.rental_duration_preset is DurationPreset.ONE_DAY

    def test_preset_accepts_name(self, clean_env: None) -> None:
        assert Settings(rental_duration_preset="one_week").rental_duration_preset is (
            DurationPreset.ONE_WEEK
        )

    def test_unknown_preset_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(rental_duration_preset="fortnight")

    def test_invalid_log_level_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    def test_log_format_normalised(self, clean_env: None) -> None:
        assert Settings(log_format="JSON").log_format == "json"

    def test_non_positive_interval_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(order_poll_interval=0)

    def test_slow_health_check_warns(
        self, clean_env: None, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="listing_manager.core.settings"):
            Settings(rented_check_interval=900, max_checkin_delay=600)
        assert "exceeds max_checkin_delay" in caplog.text


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestDurationPreset:
    @pytest.mark.parametrize(
        ("preset", "delta"),
        [
            (DurationPreset.IMMEDIATE, timedelta(0)),
            (DurationPreset.TEST, timedelta(minutes=8)),
            (DurationPreset.ONE_HOUR, timedelta(hours=1)),
            (DurationPreset.ONE_DAY, timedelta(days=1)),
            (DurationPreset.ONE_WEEK, timedelta(days=7)),
            (DurationPreset.ONE_MONTH, timedelta(days=30)),
        ],
    )
    def test_delta(self, preset: DurationPreset, delta: timedelta) -> None:
        assert preset.delta == delta

    def test_codes(self) -> None:
        assert [int(p) for p in DurationPreset] == [0, 10, 20, 30, 40, 50]


class TestTimeHelpers:
    def test_to_js_iso_millisecond_precision(self) -> None:
        assert to_js_iso(NOW) == "2018-08-12T22:30:09.138Z"

    def test_naive_datetime_taken_as_utc(self) -> None:
        assert as_utc(datetime(2020, 1, 1, 12)) == datetime(2020, 1, 1, 12, tzinfo=UTC)


class TestDevicePublicRecord:
    def _payload(self, **overrides: object) -> dict[str, object]:
        payload: dict[str, object] = {
            "_id": DEVICE_ID,
            "ownerUser": "owner-1",
            "checkinTimeStamp": "2018-08-12T22:20:00.000Z",
            "expiration": "2018-09-11T22:30:09.138Z",
            "privateData": "private-1",
            "obContract": "contract-1",
            "deviceName": "pi-3",
        }
        payload.update(overrides)
        return payload

    def test_aliases_parsed(self) -> None:
        device = DevicePublicRecord.model_validate(self._payload())
        assert device.id == DEVICE_ID
        assert device.private_data == "private-1"
        assert device.has_contract

    def test_wire_round_trip_keeps_unknown_fields(self) -> None:
        wire = DevicePublicRecord.model_validate(self._payload()).to_wire()
        assert wire["_id"] == DEVICE_ID
        assert wire["deviceName"] == "pi-3"
        assert wire["expiration"] == "2018-09-11T22:30:09.138Z"
        assert wire["checkinTimeStamp"] == "2018-08-12T22:20:00.000Z"

    def test_blank_dates_become_none(self) -> None:
        device = DevicePublicRecord.model_validate(
            self._payload(checkinTimeStamp="", expiration=" ")
        )
        assert device.checkin_timestamp is None
        assert device.expiration is None

    def test_is_stale_past_threshold(self) -> None:
        device = DevicePublicRecord.model_validate(
            self._payload(checkinTimeStamp=to_js_iso(NOW - timedelta(minutes=11)))
        )
        assert device.is_stale(timedelta(minutes=10), NOW)

    def test_not_stale_within_threshold(self) -> None:
        device = DevicePublicRecord.model_validate(
            self._payload(checkinTimeStamp=to_js_iso(NOW - timedelta(minutes=9)))
        )
        assert not device.is_stale(timedelta(minutes=10), NOW)

    def test_never_checked_in_is_not_stale(self) -> None:
        device = DevicePublicRecord.model_validate(self._payload(checkinTimeStamp=None))
        assert device.checkin_age(NOW) is None
        assert not device.is_stale(timedelta(minutes=10), NOW)

    def test_is_expired_respects_buffer(self) -> None:
        device = DevicePublicRecord.model_validate(
            self._payload(expiration=to_js_iso(NOW - timedelta(minutes=4)))
        )
        assert not device.is_expired(timedelta(minutes=5), NOW)
        assert device.is_expired(timedelta(minutes=3), NOW)

    def test_cleared_contract(self) -> None:
        device = DevicePublicRecord.model_validate(self._payload(obContract=""))
        assert not device.has_contract


class TestPrivateAndContractRecords:
    def test_private_record_nulls_default(self) -> None:
        private = DevicePrivateRecord.model_validate(
            {"_id": "p1", "payments": None, "moneyOwed": None, "serverSSHPort": 6100}
        )
        assert private.payments == []
        assert private.money_owed == 0
        assert private.server_ssh_port == 6100

    def test_payment_object_wire_names(self) -> None:
        payment = PaymentObject(pay_time=NOW, pay_qty=905, refund_addr="addr")
        assert payment.to_wire() == {
            "payTime": "2018-08-12T22:30:09.138Z",
            "payQty": 905,
            "refundAddr": "addr",
        }

    def test_contract_reads_server_spelling(self) -> None:
        contract = ContractRecord.model_validate(
            {"_id": "c1", "listingSlug": "pi-abc", "experation": to_js_iso(NOW)}
        )
        assert contract.expiration == NOW
        assert contract.to_wire()["experation"] == "2018-08-12T22:30:09.138Z"
        assert contract.is_expired(NOW + timedelta(seconds=1))
        assert not contract.is_expired(NOW - timedelta(seconds=1))


class TestNotification:
    def test_from_envelope(self) -> None:
        note = Notification.from_envelope(
            {
                "notification": {
                    "notificationId": "n1",
                    "type": "order",
                    "orderId": "o1",
                    "slug": f"widget-renewal-{DEVICE_ID}",
                },
                "read": False,
            }
        )
        assert note.id == "n1"
        assert note.order_id == "o1"
        assert note.is_order
        assert not note.read

    def test_missing_inner_notification(self) -> None:
        note = Notification.from_envelope({"read": True})
        assert note.read
        assert not note.is_order


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class TestIds:
    def test_renewal_slug_scenario(self) -> None:
        slug = f"widget-renewal-{DEVICE_ID}"
        assert require_device_id(slug) == DEVICE_ID
        assert is_renewal_slug(slug)

    def test_new_rental_slug(self) -> None:
        assert not is_renewal_slug(f"raspberry-pi-3-{DEVICE_ID}")

    @pytest.mark.parametrize(
        "candidate",
        [
            "ABCDEF0123456789ABCDEF01",
            "abcdef0123456789abcdef0",
            "abcdef0123456789abcdef012",
            "ghijkl0123456789abcdef01",
            "",
            None,
            12345,
        ],
    )
    def test_invalid_ids_rejected(self, candidate: object) -> None:
        assert not validate_device_id(candidate)

    def test_slug_without_separator(self) -> None:
        assert device_id_from_slug(DEVICE_ID) == DEVICE_ID

    def test_require_raises_validation_error(self) -> None:
        with pytest.raises(IdentifierValidationError) as info:
            require_device_id("some-listing-nothex")
        assert info.value.identifier == "nothex"
        assert info.value.kind is ErrorKind.VALIDATION_ERROR


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TestErrorClassification:
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (None, ErrorKind.SERVER_ERROR),
            (500, ErrorKind.SERVER_ERROR),
            (503, ErrorKind.SERVER_ERROR),
            (404, ErrorKind.NOT_FOUND),
            (401, ErrorKind.UNEXPECTED),
            (422, ErrorKind.UNEXPECTED),
        ],
    )
    def test_classify_status(self, status: int | None, kind: ErrorKind) -> None:
        assert classify_status(status) is kind

    def test_database_error_tag(self) -> None:
        err = api_error_for("rental", "boom", status_code=500, body="database error")
        assert isinstance(err, DatabaseError)
        assert isinstance(err, ServerError)
        assert err.kind is ErrorKind.SERVER_ERROR

    def test_database_error_tag_in_object(self) -> None:
        err = api_error_for("rental", "boom", status_code=500, body={"error": "database error"})
        assert isinstance(err, DatabaseError)

    def test_not_found_and_unexpected(self) -> None:
        assert isinstance(api_error_for("rental", "x", status_code=404), NotFoundError)
        assert isinstance(api_error_for("rental", "x", status_code=400), UnexpectedApiError)

    def test_error_field_and_message(self) -> None:
        err = ApiError("rental", "failed", status_code=500, body={"error": "not found"})
        assert err.error_field == "not found"
        assert str(err) == "[rental] (HTTP 500) failed"


# ---------------------------------------------------------------------------
# Session / TickContext / logging
# ---------------------------------------------------------------------------


class TestSessionAndTickContext:
    def test_session_repr_hides_token(self) -> None:
        session = Session(token="secret-jwt")
        assert session.is_authenticated
        assert "secret-jwt" not in repr(session)
        assert session.auth_headers() == {"Authorization": "Bearer secret-jwt"}

    def test_fresh_context_per_tick(self) -> None:
        first, second = TickContext(loop="orders"), TickContext(loop="orders")
        assert first.tick_id != second.tick_id
        assert first.notification is None and first.is_renewal is False

    def test_activate_sets_and_resets_tick_id(self) -> None:
        ctx = TickContext(loop="rented", tick_id="1a2b3c4d")
        assert TICK_ID_CTX.get() == "-"
        with ctx.activate():
            assert TICK_ID_CTX.get() == "rented-1a2b3c4d"
        assert TICK_ID_CTX.get() == "-"


class TestLogging:
    def _record(self, **extra: object) -> logging.LogRecord:
        record = logging.LogRecord(
            name="listing_manager.test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Order %s fulfilled",
            args=("o1",),
            exc_info=None,
        )
        record.__dict__.update(extra)
        return record

    def test_filter_injects_tick_id(self) -> None:
        record = self._record()
        with TickContext(loop="listed", tick_id="cafebabe").activate():
            assert TickContextFilter().filter(record)
        assert record.tick_id == "listed-cafebabe"
        assert record.event == "-"

    def test_filter_keeps_given_event(self) -> None:
        record = self._record(event="DEVICE_STALE")
        TickContextFilter().filter(record)
        assert record.event == "DEVICE_STALE"

    def test_text_line_shows_tick_and_event(self) -> None:
        record = self._record(event="ORDER_FOUND")
        with TickContext(loop="orders", tick_id="1a2b3c4d").activate():
            TickContextFilter().filter(record)
        line = logging.Formatter(_TEXT_LAYOUT).format(record)
        assert "orders-1a2b3c4d ORDER_FOUND listing_manager.test: Order o1 fulfilled" in line

    def test_json_layout(self) -> None:
        record = self._record(event="ORDER_FULFILLED", tick_id="orders-1", order_id="o1")
        record.created = datetime(2018, 8, 12, 22, 30, 9, 138000, tzinfo=UTC).timestamp()
        payload = json.loads(JsonFormatter().format(record))
        assert payload == {
            "ts": "2018-08-12T22:30:09.138Z",
            "level": "INFO",
            "logger": "listing_manager.test",
            "tick": "orders-1",
            "event": "ORDER_FULFILLED",
            "msg": "Order o1 fulfilled",
            "order_id": "o1",
        }

    def test_json_carries_traceback(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = self._record()
            record.exc_info = sys.exc_info()
        payload = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in payload["exc"]

    def test_unknown_level_rejected(self) -> None:
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            configure_logging(level="LOUD")

    def test_force_replaces_own_handler_only(self) -> None:
        root = logging.getLogger()
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        try:
            configure_logging(level="INFO", fmt="json", force=True)
            configure_logging(level="INFO", fmt="json", force=True)
            ours = [h for h in root.handlers if h.name == HANDLER_NAME]
            assert len(ours) == 1
            assert isinstance(ours[0].formatter, JsonFormatter)
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)
