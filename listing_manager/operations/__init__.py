"""Request/response helpers shared by the reconciliation loops."""

from listing_manager.operations.devices import (
    add_rented_device,
    compute_expiration,
    get_device_private,
    get_device_public,
    get_rented_devices,
    remove_rented_device,
    update_expiration,
)
from listing_manager.operations.marketplace import (
    build_fulfillment_note,
    fulfill_order,
    get_contract,
    get_listings,
    get_new_notifications,
    mark_notification_read,
    remove_listing,
)
from listing_manager.operations.payments import (
    ProrateResult,
    add_payment_object,
    compute_fee,
    prorate,
    refund,
    save_payments,
)

__all__ = [
    # Devices
    "add_rented_device",
    "compute_expiration",
    "get_device_private",
    "get_device_public",
    "get_rented_devices",
    "remove_rented_device",
    "update_expiration",
    # Marketplace
    "build_fulfillment_note",
    "fulfill_order",
    "get_contract",
    "get_listings",
    "get_new_notifications",
    "mark_notification_read",
    "remove_listing",
    # Payments
    "ProrateResult",
    "add_payment_object",
    "compute_fee",
    "prorate",
    "refund",
    "save_payments",
]
