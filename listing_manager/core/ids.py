"""Device identifier rules shared by every loop.

Marketplace listings encode the device they sell in their slug: the device id
is always the **last** ``-``-delimited token, e.g.::

    widget-renewal-abcdef0123456789abcdef01
                   └──────── device id ───────┘

A device id is valid only if it matches the identifier format the rental API
issues: 24 lowercase hexadecimal characters.  Renewal listings carry the
substring ``renewal`` somewhere in their slug.

Typical usage::

    from listing_manager.core.ids import device_id_from_slug, validate_device_id

    device_id = device_id_from_slug(listing.slug)
    if not validate_device_id(device_id):
        continue
"""

from __future__ import annotations

import re
from typing import Final

from listing_manager.core.exceptions import IdentifierValidationError

__all__ = [
    "SLUG_SEPARATOR",
    "device_id_from_slug",
    "is_renewal_slug",
    "require_device_id",
    "validate_device_id",
]

#: Separator between slug tokens.
SLUG_SEPARATOR: Final[str] = "-"

#: Marker substring identifying renewal listings.
RENEWAL_MARKER: Final[str] = "renewal"

_DEVICE_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[a-f0-9]{24}$")


def validate_device_id(candidate: object) -> bool:
    """Return ``True`` iff *candidate* is a 24-character lowercase-hex string.

    Example::

        assert validate_device_id("abcdef0123456789abcdef01")
        assert not validate_device_id("ABCDEF0123456789ABCDEF01")
        assert not validate_device_id(None)
    """
    if not isinstance(candidate, str):
        return False
    return _DEVICE_ID_RE.fullmatch(candidate) is not None


def device_id_from_slug(slug: str) -> str:
    """Return the trailing ``-``-delimited token of *slug* (no validation)."""
    return slug.rsplit(SLUG_SEPARATOR, 1)[-1]


def require_device_id(slug: str) -> str:
    """Extract the device id from *slug* and validate it.

    Raises:
        IdentifierValidationError: If the trailing token is not a valid id.
    """
    device_id = device_id_from_slug(slug)
    if not validate_device_id(device_id):
        raise IdentifierValidationError(device_id)
    return device_id


def is_renewal_slug(slug: str) -> bool:
    """``True`` if *slug* belongs to a renewal listing."""
    return RENEWAL_MARKER in slug
