"""
Platform contract shared by every commerce integration.

A platform knows how to canonicalize a store identifier, build the URL that
starts its authorization flow, turn a callback grant into credentials, and
fetch + normalize orders for a sync window.
"""

import datetime
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Mapping

import httpx

from app.config import Settings
from app.core.errors import UpstreamError
from app.models.tables import Integration

GUEST = "Guest"


@dataclass
class Credentials:
    access_token: str
    refresh_token: str | None = None
    scope: str | None = None


@dataclass
class OrderRecord:
    """One upstream order, normalized."""
    external_id: str
    total_price: Decimal
    currency: str | None
    customer_name: str
    status: str | None
    ordered_at: datetime.datetime | None
    raw_data: dict = field(default_factory=dict)

    def to_row(self, integration_id) -> dict[str, Any]:
        return {
            "integration_id": integration_id,
            "external_id": self.external_id,
            "total_price": self.total_price,
            "currency": self.currency,
            "customer_name": self.customer_name,
            "status": self.status,
            "ordered_at": self.ordered_at,
            "raw_data": self.raw_data,
        }


def parse_money(amount: Any) -> Decimal:
    """'29.99' -> Decimal('29.99'); garbage -> 0."""
    try:
        return Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def parse_timestamp(value: str | None, assume_utc: bool = True) -> datetime.datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None and assume_utc:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def as_utc(value: datetime.datetime) -> datetime.datetime:
    # Some drivers (sqlite) hand back naive timestamps; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def upstream_text(resp: httpx.Response, limit: int = 500) -> str:
    return resp.text[:limit]


class Platform(ABC):
    tag: str
    window_setting: str

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    @asynccontextmanager
    async def http(self) -> AsyncIterator[httpx.AsyncClient]:
        """Use the injected client, or open a short-lived one."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
            yield client

    def sync_window_start(
        self, integration: Integration, now: datetime.datetime
    ) -> datetime.datetime:
        """Incremental from last_sync_at, else a fixed look-back."""
        if integration.last_sync_at is not None:
            return as_utc(integration.last_sync_at)
        days = getattr(self.settings, self.window_setting)
        return now - datetime.timedelta(days=days)

    async def send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Cannot reach {self.tag} store: {e}") from e

    # --- Capability set ---

    @abstractmethod
    def normalize_identifier(self, raw: str | None) -> str:
        """Canonical store identifier, or ValidationError."""

    @abstractmethod
    def build_authorize_url(self, store: str, *, user_id: str, callback_url: str) -> str:
        """URL the merchant's browser is sent to in order to grant access."""

    @abstractmethod
    def verify_callback(self, store: str, params: Mapping[str, str]) -> str:
        """Check the callback's correlation data and return the owning user id."""

    @abstractmethod
    async def exchange_grant(self, store: str, grant: Mapping[str, Any]) -> Credentials:
        """Turn the platform's callback grant into stored credentials."""

    @abstractmethod
    async def fetch_orders(
        self, integration: Integration, since: datetime.datetime
    ) -> list[OrderRecord]:
        """Orders created or changed since `since`, normalized."""
