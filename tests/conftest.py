"""Shared pytest fixtures and configuration for the Listing Manager test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from pydantic_settings import SettingsConfigDict

from listing_manager.core import configure_logging
from listing_manager.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    Using ``force=True`` ensures the configuration is applied even when
    pytest's own ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all Listing Manager env vars for the duration of a test.

    Also disables pydantic-settings `.env` file loading so that values from a
    local `.env` file do not leak into Settings isolation tests.
    """
    prefixes = (
        "RENTAL_",
        "MARKETPLACE_",
        "ADMIN_",
        "FULFILLMENT_",
        "FEE_",
        "REFUND_",
        "ORDER_",
        "RENTED_",
        "LISTED_",
        "MAX_CHECKIN",
        "EXPIRATION_",
        "STARTUP_",
        "ISOLATE_",
        "HTTP_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def settings(clean_env: None) -> Settings:
    """Settings pointing at fake hosts with no startup grace period."""
    return Settings(
        rental_api_url="http://rental.test",
        rental_api_port="5000",
        marketplace_url="http://market.test",
        marketplace_port="4002",
        startup_grace_period=0,
    )


# ---------------------------------------------------------------------------
# HTTP doubles
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_transport() -> Callable[..., httpx.MockTransport]:
    """Build an :class:`httpx.MockTransport` from a ``(method, path) -> response`` map.

    Values are either an :class:`httpx.Response` or a callable taking the
    request.  Every request is recorded on ``transport.requests``.
    Unmapped routes answer 404.
    """

    def _make(routes: dict[tuple[str, str], Any]) -> httpx.MockTransport:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            route = routes.get((request.method, request.url.path))
            if route is None:
                return httpx.Response(404, json={"error": "no route"})
            if callable(route):
                return route(request)
            return route

        transport = httpx.MockTransport(handler)
        transport.requests = seen  # type: ignore[attr-defined]
        return transport

    return _make


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
