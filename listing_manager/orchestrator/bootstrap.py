"""Admin session bootstrapper.

At process start the rental API may still be coming up.  :func:`login_admin`
waits a grace period, reads the admin password from the injected credential
file, exchanges it for a bearer token and stores the token on the shared
:class:`~listing_manager.core.tick_context.Session`.

Any failure (unreachable server, rejected credentials, unreadable file) is
logged and retried after the same grace period.  In continuous mode the
retries are unbounded and the coroutine never raises; the ``--once`` runner
passes ``max_attempts`` to bound them.

Typical usage::

    session = Session()
    async with RentalApiClient(settings, session) as rental:
        await login_admin(rental, session, settings)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from listing_manager.clients.rental import RentalApiClient
from listing_manager.core import events
from listing_manager.core.exceptions import CredentialError, ListingManagerError
from listing_manager.core.models import AdminCredentials
from listing_manager.core.settings import Settings
from listing_manager.core.tick_context import Session

__all__ = ["CredentialLoader", "load_admin_credentials", "login_admin"]

logger = logging.getLogger(__name__)

#: Callable returning the admin credentials; injected for tests.
CredentialLoader = Callable[[], AdminCredentials]


def load_admin_credentials(path: Path) -> AdminCredentials:
    """Read and validate the admin credential file at *path*.

    Raises:
        CredentialError: The file is missing, unreadable, not JSON, or lacks a
            non-empty ``password``.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CredentialError(f"Cannot read admin credential file {path}: {exc}") from exc

    try:
        return AdminCredentials.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        raise CredentialError(f"Invalid admin credential file {path}: {exc}") from exc


async def login_admin(
    rental: RentalApiClient,
    session: Session,
    settings: Settings,
    *,
    credential_loader: CredentialLoader | None = None,
    max_attempts: int | None = None,
) -> Session:
    """Log in as the admin user and store the token on *session*.

    Each attempt first sleeps ``startup_grace_period``; a failed attempt is
    followed by another sleep of the same length before the next one.

    Args:
        rental: Rental API client.
        session: Shared session receiving the token.
        settings: Application settings (username, credential path, grace).
        credential_loader: Override for reading the credential file.
        max_attempts: Give up after this many attempts; ``None`` retries
            forever.

    Raises:
        ListingManagerError: Only when ``max_attempts`` is set and exhausted.
    """
    grace = settings.startup_grace_period
    if credential_loader is None:
        path = settings.admin_credentials_path_resolved
        credential_loader = lambda: load_admin_credentials(path)  # noqa: E731

    def _before_sleep(rs: RetryCallState) -> None:
        exc = rs.outcome.exception() if rs.outcome else None
        logger.error(
            "Admin login attempt %d failed: %s. Retrying in %.0f s.",
            rs.attempt_number,
            exc,
            grace,
            extra={"event": events.LOGIN_RETRY},
        )

    async for attempt in AsyncRetrying(
        wait=wait_fixed(grace),
        stop=stop_never if max_attempts is None else stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(ListingManagerError),
        reraise=True,
        before_sleep=_before_sleep,
    ):
        with attempt:
            await asyncio.sleep(grace)
            credentials = credential_loader()
            session.token = await rental.login(settings.admin_username, credentials.password)

    logger.info(
        "Logged in to the rental API as %s.",
        settings.admin_username,
        extra={"event": events.LOGIN_OK},
    )
    return session
