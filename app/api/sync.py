"""
Order sync endpoints.

POST /v1/sync       one integration; end-user Bearer (owner only) or cron secret
POST /v1/sync/all   every active integration; cron secret only
"""

from uuid import UUID

import httpx
from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.errors import NotFound, ValidationError
from app.core.http_client import get_http_client
from app.core.sync import SyncOrchestrator
from app.middleware.auth import CallerContext, enforce_owner, require_scheduled, resolve_caller
from app.models.database import get_db
from app.models.repository import IntegrationRepository

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/sync", tags=["sync"])


def _parse_integration_id(payload: dict | None) -> UUID:
    raw = (payload or {}).get("integration_id")
    if not raw:
        raise ValidationError("Missing integration_id")
    try:
        return UUID(str(raw))
    except ValueError:
        raise ValidationError("Invalid integration_id format.")


@router.post("")
async def sync_one(
    payload: dict | None = Body(None),
    caller: CallerContext = Depends(resolve_caller),
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
    db: AsyncSession = Depends(get_db),
):
    integration_id = _parse_integration_id(payload)

    repo = IntegrationRepository(db)
    integration = await repo.get(integration_id)
    if not integration:
        raise NotFound("Integration not found")
    enforce_owner(caller, integration)

    result = await SyncOrchestrator(settings, repo, client).sync_integration(integration)
    return {"success": True, "integration_id": result.integration_id, "count": result.count}


@router.post("/all", dependencies=[Depends(require_scheduled)])
async def sync_all(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
    db: AsyncSession = Depends(get_db),
):
    batch = await SyncOrchestrator(settings, IntegrationRepository(db), client).sync_all()
    return batch.to_dict()
