"""Shared async HTTP client for the rental and marketplace APIs.

Wraps :class:`httpx.AsyncClient` with:

* **Error classification at the boundary** — every non-2xx response is turned
  into the matching :class:`~listing_manager.core.exceptions.ApiError`
  subclass (404 → ``NotFoundError``, 5xx → ``ServerError`` / ``DatabaseError``,
  anything else → ``UnexpectedApiError``).  Transport failures (refused or
  reset connections, timeouts) become ``ServerError`` with no status code.
* **Optional transport retries** — exponential back-off with jitter via
  :mod:`tenacity`, applied only to transport errors.  The default of one
  attempt leaves retrying to the next timer tick.
* **Decoded bodies** — request helpers return the parsed JSON body (or the raw
  text when the body is not JSON, ``None`` when empty).

Typical usage::

    async with ApiHttpClient(service="rental", base_url="http://host:5000") as http:
        body = await http.get("/api/devices/abcdef0123456789abcdef01")
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from listing_manager.core.exceptions import ServerError, api_error_for

__all__ = ["ApiHttpClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default per-request timeout (seconds); matches httpx's own default.
_DEFAULT_TIMEOUT: Final[float] = 5.0

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 30.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 5.0


def _transport_wait(retry_state: RetryCallState) -> float:
    """Exponential back-off (1 s, 2 s, 4 s, ...) plus uniform jitter."""
    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))


def _decode_body(response: httpx.Response) -> Any:
    """Return the JSON body of *response*, its text if not JSON, or ``None``."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class ApiHttpClient:
    """Async JSON-over-HTTP client for one remote service.

    Args:
        service: Short service name used in errors and log lines.
        base_url: Base URL prepended to every request path.
        headers: Default headers sent with every request.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts on transport errors (>= 1).
        transport: Optional custom httpx transport (tests inject
            :class:`httpx.MockTransport` here).

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        service: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        max_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts!r}.")

        self.service = service
        self._base_url = base_url
        self._default_headers: dict[str, str] = headers or {}
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ApiHttpClient:
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call more than once."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("%s HTTP session closed.", self.service)
        self._http = None

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    async def get(self, path: str, *, headers: dict[str, str] | None = None) -> Any:
        return await self.request("GET", path, headers=headers)

    async def post(
        self, path: str, *, json: Any | None = None, headers: dict[str, str] | None = None
    ) -> Any:
        return await self.request("POST", path, json=json, headers=headers)

    async def put(
        self, path: str, *, json: Any | None = None, headers: dict[str, str] | None = None
    ) -> Any:
        return await self.request("PUT", path, json=json, headers=headers)

    async def delete(self, path: str, *, headers: dict[str, str] | None = None) -> Any:
        return await self.request("DELETE", path, headers=headers)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform one request and return its decoded body.

        Raises:
            NotFoundError: HTTP 404.
            DatabaseError: HTTP 5xx tagged ``"database error"``.
            ServerError: Any other HTTP 5xx, or a transport failure once the
                attempt budget is spent.
            UnexpectedApiError: Any other non-2xx status.
        """

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "%s %s %s: attempt %d/%d failed (%s). Retrying…",
                self.service,
                method,
                path,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=_transport_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._send(method, path, json=json, headers=headers)
        except httpx.TransportError as exc:
            raise ServerError(
                self.service,
                f"{method} {path} failed: {type(exc).__name__}: {exc}",
            ) from exc

        assert response is not None, "tenacity exited without a response or exception"
        body = _decode_body(response)

        if response.is_success:
            return body

        raise api_error_for(
            self.service,
            f"{method} {path} returned {response.status_code}: {str(body)[:200]}",
            status_code=response.status_code,
            body=body,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"Accept": "application/json", **self._default_headers},
                transport=self._transport,
            )
            logger.debug("%s HTTP session opened (base_url=%r).", self.service, self._base_url)
        return self._http

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        client = self._ensure_client()
        logger.debug("%s %s %s", self.service, method, path)
        response = await client.request(method, path, json=json, headers=headers)
        logger.debug(
            "%s %s %s → %d (%d bytes)",
            self.service,
            method,
            path,
            response.status_code,
            len(response.content),
        )
        return response
