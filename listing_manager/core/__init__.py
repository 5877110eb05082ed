"""Core models, settings, logging configuration, and shared utilities."""

from listing_manager.core.exceptions import (
    ApiError,
    ConfigError,
    CredentialError,
    DatabaseError,
    ErrorKind,
    IdentifierValidationError,
    ListingManagerError,
    NotFoundError,
    ServerError,
    UnexpectedApiError,
)
from listing_manager.core.logging_config import JsonFormatter, configure_logging
from listing_manager.core.models import (
    AdminCredentials,
    ContractRecord,
    DevicePrivateRecord,
    DevicePublicRecord,
    DurationPreset,
    MarketplaceListing,
    Notification,
    OrderPayment,
    PaymentObject,
)
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session, TickContext

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Wire models
    "AdminCredentials",
    "ContractRecord",
    "DevicePrivateRecord",
    "DevicePublicRecord",
    "DurationPreset",
    "MarketplaceListing",
    "Notification",
    "OrderPayment",
    "PaymentObject",
    # Settings and state
    "Settings",
    "Session",
    "TickContext",
    # Exceptions
    "ErrorKind",
    "ListingManagerError",
    "ConfigError",
    "CredentialError",
    "IdentifierValidationError",
    "ApiError",
    "NotFoundError",
    "ServerError",
    "DatabaseError",
    "UnexpectedApiError",
]
