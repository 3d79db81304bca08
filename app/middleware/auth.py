"""
Caller authorization for sync endpoints.

Two channels, one per call:
  - Scheduled: X-Cron-Secret header equals the configured cron secret.
    Used by the batch trigger; also accepted for single-store syncs.
  - End user: Bearer token resolved through Supabase; the user must own
    the integration being synced.

The caller is resolved before any integration is read, so unauthenticated
requests never touch the datastore.
"""

import hmac
from dataclasses import dataclass

from fastapi import Depends, Request

from app.config import Settings, get_settings
from app.core.errors import Forbidden, Unauthorized
from app.middleware.supabase_auth import bearer_token, resolve_user_id
from app.models.tables import Integration

import structlog

logger = structlog.get_logger()

CRON_SECRET_HEADER = "X-Cron-Secret"


@dataclass
class CallerContext:
    """Resolved identity class for the current request."""
    scheduled: bool
    user_id: str | None = None


def has_valid_cron_secret(request: Request, settings: Settings) -> bool:
    expected = settings.cron_secret.strip()
    if not expected:
        return False
    got = request.headers.get(CRON_SECRET_HEADER, "")
    return bool(got) and hmac.compare_digest(got.encode(), expected.encode())


async def resolve_caller(
    request: Request, settings: Settings = Depends(get_settings)
) -> CallerContext:
    """Accept either the scheduled channel or an end-user Bearer token."""
    if has_valid_cron_secret(request, settings):
        return CallerContext(scheduled=True)

    token = bearer_token(request)
    if not token:
        raise Unauthorized("Unauthorized")
    return CallerContext(scheduled=False, user_id=await resolve_user_id(token, settings))


async def require_scheduled(
    request: Request, settings: Settings = Depends(get_settings)
) -> CallerContext:
    """Scheduled channel only."""
    if not has_valid_cron_secret(request, settings):
        logger.warning("scheduled_call_rejected", path=request.url.path)
        raise Unauthorized("Unauthorized")
    return CallerContext(scheduled=True)


def enforce_owner(caller: CallerContext, integration: Integration):
    """End users may only sync their own integrations."""
    if caller.scheduled:
        return
    if caller.user_id != integration.user_id:
        logger.warning(
            "sync_forbidden",
            integration_id=str(integration.id),
            user_id=caller.user_id,
        )
        raise Forbidden("Forbidden")
