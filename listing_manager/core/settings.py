"""Listing Manager settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``RENTAL_API_URL`` →
``rental_api_url``).

Every timing constant the reconciliation loops depend on lives here with the
reference default, so a test deployment can shrink the intervals without
touching code.

Typical usage::

    from listing_manager.core.settings import Settings

    settings = Settings()
    print(settings.rental_api_base_url)    # "http://...:5000"
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from listing_manager.core.models import DurationPreset

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


def _join_base_url(url: str, port: str) -> str:
    """Combine a scheme+host string and an optional port into a base URL."""
    url = url.rstrip("/")
    if not port:
        return url
    return f"{url}:{port}"


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Rental API
    # ------------------------------------------------------------------
    rental_api_url: str = Field(
        default="http://serverdeployment2_p2pvps-server_1",
        description="Scheme and host of the device-rental API.",
    )
    rental_api_port: str = Field(
        default="5000",
        description="Port of the device-rental API (blank = scheme default).",
    )
    admin_username: str = Field(
        default="system",
        description="Admin account used to obtain the session token.",
    )
    admin_credentials_path: str = Field(
        default="/home/p2pvps/auth/system-user-dev.json",
        description="JSON file holding {\"password\": ...} for the admin account.",
    )

    # ------------------------------------------------------------------
    # Marketplace API
    # ------------------------------------------------------------------
    marketplace_url: str = Field(
        default="http://serverdeployment2_openbazaar_1",
        description="Scheme and host of the marketplace node.",
    )
    marketplace_port: str = Field(
        default="4002",
        description="Port of the marketplace node API.",
    )
    marketplace_username: str = Field(
        default="yourUsername",
        description="Marketplace API username (basic auth).",
    )
    marketplace_password: str = Field(
        default="yourPassword",
        description="Marketplace API password (basic auth).",
    )

    # ------------------------------------------------------------------
    # Order fulfillment
    # ------------------------------------------------------------------
    fulfillment_host: str = Field(
        default="p2pvps.net",
        description="Host name given to buyers in the fulfillment note.",
    )
    rental_duration_preset: DurationPreset = Field(
        default=DurationPreset.ONE_MONTH,
        description="Preset used to extend a device's expiration on each order.",
    )
    fee_percentage: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Platform fee withheld from each payment, in percent.",
    )
    refund_fee_level: str = Field(
        default="ECONOMIC",
        description="Wallet fee level used when sending refunds.",
    )
    refund_memo: str = Field(
        default="P2P VPS Rental Refund",
        description="Memo attached to refund transactions.",
    )

    # ------------------------------------------------------------------
    # Polling intervals and thresholds (seconds)
    # ------------------------------------------------------------------
    order_poll_interval: float = Field(
        default=120.0,
        gt=0,
        description="Seconds between order-fulfillment ticks.",
    )
    rented_check_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between rented-device health ticks.",
    )
    listed_check_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between listed-device health ticks.",
    )
    max_checkin_delay: float = Field(
        default=600.0,
        gt=0,
        description="A device silent for longer than this is considered stale.",
    )
    expiration_buffer: float = Field(
        default=300.0,
        ge=0,
        description="Grace period after expiration before a listing is removed.",
    )
    startup_grace_period: float = Field(
        default=10.0,
        ge=0,
        description="Wait before (and between) admin login attempts.",
    )
    isolate_device_failures: bool = Field(
        default=False,
        description=(
            "Keep checking the remaining rented devices when one device's "
            "check fails, instead of aborting the tick."
        ),
    )

    # ------------------------------------------------------------------
    # HTTP transport
    # ------------------------------------------------------------------
    http_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Per-request timeout in seconds (httpx default).",
    )
    http_max_attempts: int = Field(
        default=1,
        ge=1,
        description="Attempts per request on transport errors (1 = no retry).",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("rental_duration_preset", mode="before")
    @classmethod
    def _parse_preset(cls, v: object) -> object:
        """Accept a preset name (``"one_month"``) as well as its numeric code."""
        if isinstance(v, str):
            if v.strip().isdigit():
                return int(v.strip())
            try:
                return DurationPreset[v.strip().upper()]
            except KeyError:
                allowed = ", ".join(p.name.lower() for p in DurationPreset)
                raise ValueError(
                    f"rental_duration_preset must be one of {allowed}, got {v!r}"
                ) from None
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    @model_validator(mode="after")
    def _validate_thresholds(self) -> Settings:
        """Warn when a health check runs less often than devices go stale."""
        if self.rented_check_interval > self.max_checkin_delay:
            logger.warning(
                "rented_check_interval (%.0f s) exceeds max_checkin_delay (%.0f s); "
                "stale rentals may linger for a full interval.",
                self.rented_check_interval,
                self.max_checkin_delay,
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def rental_api_base_url(self) -> str:
        """Rental API base URL including the port."""
        return _join_base_url(self.rental_api_url, self.rental_api_port)

    @property
    def marketplace_base_url(self) -> str:
        """Marketplace API base URL including the port."""
        return _join_base_url(self.marketplace_url, self.marketplace_port)

    @property
    def admin_credentials_path_resolved(self) -> Path:
        """Return the admin credential file as a resolved :class:`~pathlib.Path`."""
        return Path(self.admin_credentials_path).expanduser().resolve()
