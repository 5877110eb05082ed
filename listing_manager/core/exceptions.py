"""Listing Manager exception taxonomy.

Every custom exception inherits from :class:`ListingManagerError`.  Errors
coming back from either remote API are classified **once**, at the HTTP
boundary (:mod:`listing_manager.clients.http_client`), into a closed
:class:`ErrorKind` enumeration so loop bodies never have to inspect raw status
codes:

    Layer hierarchy
    ---------------
    ListingManagerError
    ├── ConfigError
    ├── CredentialError
    ├── IdentifierValidationError       ErrorKind.VALIDATION_ERROR
    └── ApiError                        (kind, status_code, body, service)
        ├── NotFoundError               ErrorKind.NOT_FOUND
        ├── ServerError                 ErrorKind.SERVER_ERROR
        │   └── DatabaseError           5xx with body "database error"
        └── UnexpectedApiError          ErrorKind.UNEXPECTED

Usage:

    from listing_manager.core.exceptions import NotFoundError

    try:
        device = await get_device_public(rental, device_id)
    except NotFoundError:
        ...
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

__all__ = [
    "ErrorKind",
    "ListingManagerError",
    "ConfigError",
    "CredentialError",
    "ApiError",
    "NotFoundError",
    "ServerError",
    "DatabaseError",
    "IdentifierValidationError",
    "UnexpectedApiError",
    "classify_status",
    "api_error_for",
]

logger = logging.getLogger(__name__)

#: Body text the rental API returns with a 5xx when a lookup hits a bad id.
DATABASE_ERROR_BODY: str = "database error"


class ErrorKind(StrEnum):
    """Closed set of failure categories understood by the polling loops."""

    NOT_FOUND = "not_found"
    """Resource absent (HTTP 404 or a missing envelope field)."""

    SERVER_ERROR = "server_error"
    """HTTP 5xx or a transport failure; retried on the next timer tick."""

    VALIDATION_ERROR = "validation_error"
    """Malformed identifier; skipped, never escalated."""

    UNEXPECTED = "unexpected"
    """Anything else; logged with full context and the tick aborted."""


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class ListingManagerError(Exception):
    """Root exception for all Listing Manager errors."""


class ConfigError(ListingManagerError):
    """Raised when the application configuration is invalid or incomplete."""


class CredentialError(ListingManagerError):
    """Raised when the admin credential file cannot be read or parsed."""


class IdentifierValidationError(ListingManagerError):
    """A device identifier failed the 24-character lowercase-hex check.

    Args:
        identifier: The rejected token.
    """

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"Invalid device identifier: {identifier!r}")


# ---------------------------------------------------------------------------
# Remote API errors
# ---------------------------------------------------------------------------


class ApiError(ListingManagerError):
    """Base class for failures reported by (or while reaching) a remote API.

    Args:
        service: Short name of the remote service (``"rental"`` or
            ``"marketplace"``).
        message: Human-readable error description.
        status_code: HTTP status code, or ``None`` for transport failures and
            malformed responses.
        body: Decoded JSON body (or raw text) of the error response, if any.
    """

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(
        self,
        service: str,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        self.service = service
        self.status_code = status_code
        self.body = body
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"[{service}]{detail} {message}")

    @property
    def error_field(self) -> Any:
        """Return ``body["error"]`` when the body is a JSON object, else the body."""
        if isinstance(self.body, dict):
            return self.body.get("error")
        return self.body


class NotFoundError(ApiError):
    """The requested resource does not exist."""

    kind = ErrorKind.NOT_FOUND


class ServerError(ApiError):
    """The remote server failed (5xx) or could not be reached at all."""

    kind = ErrorKind.SERVER_ERROR


class DatabaseError(ServerError):
    """A 5xx carrying the rental API's ``"database error"`` tag.

    The rental API answers a lookup for a syntactically odd id with this
    instead of a 404.
    """


class UnexpectedApiError(ApiError):
    """Any other non-success response, or a response missing expected fields."""

    kind = ErrorKind.UNEXPECTED


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_status(status_code: int | None) -> ErrorKind:
    """Map an HTTP status code to an :class:`ErrorKind`.

    ``None`` (no response at all) counts as a server-side failure.
    """
    if status_code is None or status_code >= 500:
        return ErrorKind.SERVER_ERROR
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.UNEXPECTED


def api_error_for(
    service: str,
    message: str,
    *,
    status_code: int | None = None,
    body: Any = None,
) -> ApiError:
    """Build the concrete :class:`ApiError` subclass for a failed call."""
    kind = classify_status(status_code)
    if kind is ErrorKind.SERVER_ERROR:
        error_text = body.get("error") if isinstance(body, dict) else body
        if error_text == DATABASE_ERROR_BODY:
            return DatabaseError(service, message, status_code=status_code, body=body)
        return ServerError(service, message, status_code=status_code, body=body)
    if kind is ErrorKind.NOT_FOUND:
        return NotFoundError(service, message, status_code=status_code, body=body)
    return UnexpectedApiError(service, message, status_code=status_code, body=body)
