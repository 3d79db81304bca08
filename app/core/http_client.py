"""Outbound HTTP client shared by platform calls within one request."""

from typing import AsyncIterator

import httpx
from fastapi import Depends

from app.config import Settings, get_settings


async def get_http_client(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[httpx.AsyncClient]:
    """FastAPI dependency: yields an httpx client closed after the response."""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client
