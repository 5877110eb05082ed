"""Ordered step pipeline with first-failure short-circuit.

A loop tick that must perform several dependent remote calls (fetch device,
extend expiration, fulfil order, ...) describes them as a list of named
:data:`Step` callables and hands them to :func:`run_steps`.  Each step is
awaited in order; the pipeline stops at the first one that

* raises a :class:`~listing_manager.core.exceptions.ListingManagerError`, or
* returns ``False``.

Every step's outcome is recorded as a :class:`StepResult`, so callers can
report *which* step failed and *why* (its
:class:`~listing_manager.core.exceptions.ErrorKind`) without try/except
ladders of their own.

Exceptions that are not :class:`ListingManagerError` (programming errors,
cancellation) propagate unchanged.

Typical usage::

    outcome = await run_steps([
        ("fetch_device", fetch_device),
        ("update_expiration", extend),
        ("fulfill_order", fulfil),
    ])
    if not outcome.completed:
        logger.error("Step %s failed: %s", outcome.failed.name, outcome.failed.error)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from listing_manager.core import events
from listing_manager.core.exceptions import (
    ApiError,
    DatabaseError,
    ErrorKind,
    ListingManagerError,
)

__all__ = ["PipelineOutcome", "Step", "StepResult", "report_tick_error", "run_steps"]

logger = logging.getLogger(__name__)

#: Message logged when a tick stops on an HTTP 5xx.
SERVER_ERROR_MESSAGE: str = "Connection to the server was refused. Will try again."

#: A named zero-argument coroutine function.
Step = tuple[str, Callable[[], Awaitable[Any]]]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepResult:
    """Outcome of one pipeline step.

    Attributes:
        name: Step name as given to :func:`run_steps`.
        ok: ``True`` if the step completed.
        value: Whatever the step returned.
        error: Exception raised by the step, if any.
    """

    name: str
    ok: bool
    value: Any = None
    error: ListingManagerError | None = None

    @property
    def kind(self) -> ErrorKind | None:
        """Error category of a failed step; ``None`` on success.

        A step that returned ``False`` without raising counts as
        :attr:`ErrorKind.UNEXPECTED`.
        """
        if self.ok:
            return None
        return getattr(self.error, "kind", ErrorKind.UNEXPECTED)


@dataclass
class PipelineOutcome:
    """Ordered results of a :func:`run_steps` call.

    Attributes:
        results: One :class:`StepResult` per step that ran.  Steps after a
            failure do not run and have no entry.
        total: Number of steps the pipeline was given.
    """

    results: list[StepResult] = field(default_factory=list)
    total: int = 0

    @property
    def completed(self) -> bool:
        """``True`` if every step ran and succeeded."""
        return len(self.results) == self.total and all(r.ok for r in self.results)

    @property
    def failed(self) -> StepResult | None:
        """The step that stopped the pipeline, if any."""
        for result in self.results:
            if not result.ok:
                return result
        return None

    def value_of(self, name: str) -> Any:
        """Return the value produced by step *name* (``None`` if it did not run)."""
        for result in self.results:
            if result.name == name:
                return result.value
        return None


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run_steps(steps: Sequence[Step]) -> PipelineOutcome:
    """Await *steps* in order, stopping at the first failure."""
    outcome = PipelineOutcome(total=len(steps))

    for name, step in steps:
        try:
            value = await step()
        except ListingManagerError as exc:
            outcome.results.append(StepResult(name=name, ok=False, error=exc))
            logger.debug("Step %s raised %s: %s", name, type(exc).__name__, exc)
            break

        if value is False:
            outcome.results.append(StepResult(name=name, ok=False, value=value))
            logger.debug("Step %s reported failure.", name)
            break

        outcome.results.append(StepResult(name=name, ok=True, value=value))

    return outcome


# ---------------------------------------------------------------------------
# Tick error reporting
# ---------------------------------------------------------------------------


def report_tick_error(
    loop: str,
    exc: ListingManagerError,
    *,
    server_error_message: str = SERVER_ERROR_MESSAGE,
) -> ErrorKind:
    """Log an error that ended a loop tick, worded by its :class:`ErrorKind`.

    Args:
        loop: Loop name, for the log line.
        exc: The error that stopped the tick.
        server_error_message: Wording used for HTTP 5xx failures.

    Returns:
        The error's kind, for the caller's stats.
    """
    kind: ErrorKind = getattr(exc, "kind", ErrorKind.UNEXPECTED)
    extra = {"event": events.TICK_ABORT}

    if isinstance(exc, DatabaseError):
        logger.error("Database error. Skipping.", extra=extra)
    elif kind is ErrorKind.SERVER_ERROR:
        if isinstance(exc, ApiError) and exc.status_code is None:
            logger.error("Server connection was reset. Will try again.", extra=extra)
        else:
            logger.error(server_error_message, extra=extra)
    elif kind is ErrorKind.NOT_FOUND:
        logger.error("Server returned 404. Is the server running?", extra=extra)
    elif kind is ErrorKind.VALIDATION_ERROR:
        logger.warning("Skipping: %s", exc, extra=extra)
    else:
        logger.error("Error in %s loop: %s", loop, exc, exc_info=exc, extra=extra)

    logger.debug("%s tick stopped by %s: %s", loop, type(exc).__name__, exc)
    return kind
