"""
Sync orchestrator.

sync_integration: fetch the window for one store, merge orders on
(integration_id, external_id), stamp last_sync_at. Errors propagate.

sync_all: every active integration, one after another. A failing store is
recorded in its own result slot and never stops the batch.
"""

import datetime
from dataclasses import dataclass, field
from typing import Callable

import httpx

from app.config import Settings
from app.core.errors import OrderFeedError
from app.models.repository import IntegrationRepository
from app.models.tables import Integration
from app.platforms.base import Platform
from app.platforms.registry import get_platform

import structlog

logger = structlog.get_logger()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class SyncResult:
    integration_id: str
    count: int
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"integration_id": self.integration_id, "count": self.count}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    results: list[SyncResult] = field(default_factory=list)

    @property
    def integrations(self) -> int:
        return len(self.results)

    @property
    def orders(self) -> int:
        return sum(r.count for r in self.results)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "integrations": self.integrations,
            "orders": self.orders,
            "results": [r.to_dict() for r in self.results],
        }


def _error_message(exc: Exception) -> str:
    if isinstance(exc, OrderFeedError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class SyncOrchestrator:
    def __init__(
        self,
        settings: Settings,
        repo: IntegrationRepository,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        platform_factory: Callable[..., Platform] = get_platform,
    ):
        self.settings = settings
        self.repo = repo
        self.client = client
        self.clock = clock
        self.platform_factory = platform_factory

    async def sync_integration(self, integration: Integration) -> SyncResult:
        integration_id = str(integration.id)
        platform = self.platform_factory(integration.platform, self.settings, self.client)

        since = platform.sync_window_start(integration, self.clock())
        logger.info(
            "sync_started",
            integration_id=integration_id,
            platform=integration.platform,
            since=since.isoformat(),
        )

        fetched = await platform.fetch_orders(integration, since)
        # Pages can overlap when orders arrive mid-fetch; one row per key per statement.
        records = list({r.external_id: r for r in fetched}.values())
        if records:
            await self.repo.upsert_orders([r.to_row(integration.id) for r in records])

        # Always stamped: anchors the next incremental window even when empty.
        await self.repo.mark_synced(integration.id, self.clock())
        await self.repo.commit()

        logger.info("sync_completed", integration_id=integration_id, count=len(records))
        return SyncResult(integration_id=integration_id, count=len(records))

    async def sync_all(self) -> BatchResult:
        integrations = await self.repo.list_active()
        batch = BatchResult()

        for integration in integrations:
            integration_id = str(integration.id)
            try:
                result = await self.sync_integration(integration)
            except Exception as e:
                await self.repo.rollback()
                logger.warning(
                    "sync_integration_failed",
                    integration_id=integration_id,
                    platform=integration.platform,
                    error=_error_message(e),
                    exc_info=not isinstance(e, OrderFeedError),
                )
                result = SyncResult(integration_id=integration_id, count=0, error=_error_message(e))
            batch.results.append(result)

        logger.info(
            "sync_batch_completed",
            integrations=batch.integrations,
            orders=batch.orders,
            failed=sum(1 for r in batch.results if r.error),
        )
        return batch
