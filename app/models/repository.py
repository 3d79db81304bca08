"""
Persistence operations the sync engine needs from the datastore:
read by id, read all active, upsert an integration, upsert orders by key,
stamp last_sync_at.

SQLAlchemy failures surface as PersistenceError so callers handle one
error family.
"""

import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import PersistenceError
from app.models.tables import STATUS_ACTIVE, Integration, Order

import structlog

logger = structlog.get_logger()

ORDER_MERGE_KEY = ("integration_id", "external_id")

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class IntegrationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, integration_id: UUID) -> Integration | None:
        try:
            result = await self.db.execute(
                select(Integration).where(Integration.id == integration_id)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load integration: {e}") from e
        return result.scalar_one_or_none()

    async def list_active(self) -> list[Integration]:
        """Active integrations, detached so a rollback mid-batch can't expire them."""
        try:
            result = await self.db.execute(
                select(Integration)
                .where(Integration.status == STATUS_ACTIVE)
                .order_by(Integration.created_at)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load integrations: {e}") from e
        integrations = list(result.scalars().all())
        for integration in integrations:
            self.db.expunge(integration)
        return integrations

    async def upsert_integration(
        self,
        *,
        user_id: str,
        platform: str,
        store_url: str,
        access_token: str,
        refresh_token: str | None = None,
        scope: str | None = None,
    ) -> Integration:
        """Create or overwrite the (user_id, platform, store_url) integration."""
        try:
            result = await self.db.execute(
                select(Integration).where(
                    Integration.user_id == user_id,
                    Integration.platform == platform,
                    Integration.store_url == store_url,
                )
            )
            integration = result.scalars().first()

            if integration is None:
                integration = Integration(
                    user_id=user_id,
                    platform=platform,
                    store_url=store_url,
                )
                self.db.add(integration)

            integration.access_token = access_token
            integration.refresh_token = refresh_token
            integration.scope = scope
            integration.status = STATUS_ACTIVE
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to save integration: {e}") from e

        logger.info(
            "integration_saved",
            integration_id=str(integration.id),
            platform=platform,
            store_url=store_url,
        )
        return integration

    async def upsert_orders(self, rows: list[dict[str, Any]]) -> None:
        """INSERT ... ON CONFLICT (integration_id, external_id) DO UPDATE."""
        if not rows:
            return

        dialect = self.db.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise PersistenceError(f"Order upsert is not supported on {dialect}")

        stmt = insert(Order).values(rows)
        updatable = [c for c in rows[0] if c not in ORDER_MERGE_KEY and c != "id"]
        stmt = stmt.on_conflict_do_update(
            index_elements=list(ORDER_MERGE_KEY),
            set_={
                **{c: stmt.excluded[c] for c in updatable},
                "synced_at": func.now(),
            },
        )
        try:
            await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert orders: {e}") from e

    async def mark_synced(self, integration_id: UUID, when: datetime.datetime) -> None:
        try:
            await self.db.execute(
                update(Integration)
                .where(Integration.id == integration_id)
                .values(last_sync_at=when)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to stamp last_sync_at: {e}") from e

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Commit failed: {e}") from e

    async def rollback(self) -> None:
        await self.db.rollback()
