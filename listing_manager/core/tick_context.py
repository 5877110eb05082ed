"""Per-tick context and the shared login session.

Two pieces of state flow through the loops:

:class:`Session`
    The admin bearer token for the rental API.  Created once at startup,
    written by the bootstrapper, read by every authenticated call.  It is the
    **only** state shared between loops.

:class:`TickContext`
    Scratch state for one loop tick: which notification is being handled,
    whether it is a renewal, and the device records resolved along the way.
    A fresh instance is built at the start of every tick and passed to every
    helper that needs it, so one loop's half-finished tick can never leak into
    another loop (or into its own next tick).

Typical usage::

    ctx = TickContext(loop="orders")
    with ctx.activate():                 # tags log lines with "orders-1a2b3c4d"
        ctx.notification = notes[0]
        ...
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from listing_manager.core.logging_config import TICK_ID_CTX
from listing_manager.core.models import (
    DevicePrivateRecord,
    DevicePublicRecord,
    Notification,
)

__all__ = ["Session", "TickContext"]


@dataclass
class Session:
    """Rental API login session.

    Attributes:
        token: Bearer token returned by ``POST /api/auth``; empty until the
            bootstrapper succeeds.
    """

    token: str = ""

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def auth_headers(self) -> dict[str, str]:
        """Authorization header for authenticated rental API calls."""
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        return f"Session(authenticated={self.is_authenticated})"


@dataclass
class TickContext:
    """Mutable scratch record for a single loop tick.

    Attributes:
        loop: Short loop name (``"orders"``, ``"rented"``, ``"listed"``).
        tick_id: Random 8-char hex id used to correlate log lines.
        is_renewal: The order being handled extends an existing rental.
        notification: Notification picked up by this tick, if any.
        device: Public record of the device being handled.
        device_private: Private record of the device being handled.
        expiration: Device expiration after this tick extended it.
    """

    loop: str
    tick_id: str = field(default_factory=lambda: uuid4().hex[:8])
    is_renewal: bool = False
    notification: Notification | None = None
    device: DevicePublicRecord | None = None
    device_private: DevicePrivateRecord | None = None
    expiration: datetime | None = None

    @property
    def label(self) -> str:
        """``"<loop>-<tick_id>"``, the value logged as ``tick_id``."""
        return f"{self.loop}-{self.tick_id}"

    @contextmanager
    def activate(self) -> Iterator[TickContext]:
        """Bind this tick's label to :data:`TICK_ID_CTX` for the block."""
        token = TICK_ID_CTX.set(self.label)
        try:
            yield self
        finally:
            TICK_ID_CTX.reset(token)
