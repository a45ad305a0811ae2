"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

import httpx
from fastapi import Depends, Request

from tasmotascope.backups.mirror import InMemoryDeviceRegistry


def get_device_registry(request: Request) -> InMemoryDeviceRegistry:
    """Return the registry created by the app factory."""
    return request.app.state.device_registry


def get_http_client() -> httpx.AsyncClient | None:
    """HTTP client shared by store and device calls; None = one client per call.

    Overridden in tests to route requests through a mock transport.
    """
    return None


# Annotated shortcuts for route signatures
DeviceRegistry = Annotated[InMemoryDeviceRegistry, Depends(get_device_registry)]
HttpClient = Annotated[httpx.AsyncClient | None, Depends(get_http_client)]
