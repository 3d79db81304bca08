"""
Shopify connection: OAuth install + callback.

/install is called by the dashboard with the user's Supabase Bearer token.
/callback is called by Shopify's redirect; there is no Bearer token, so the
owning user comes from the signed state minted at install time.
"""

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.errors import OrderFeedError, ValidationError
from app.core.http_client import get_http_client
from app.middleware.supabase_auth import SupabaseAuthContext, require_supabase_auth
from app.models.database import get_db
from app.models.repository import IntegrationRepository
from app.platforms.shopify import ShopifyPlatform

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/shopify", tags=["shopify"])


def shopify_configured(settings: Settings = Depends(get_settings)) -> Settings:
    """Fail with a configuration error before any auth or network call."""
    settings.require("shopify_client_id")
    return settings


@router.get("/install")
async def install(
    request: Request,
    shop: str | None = None,
    settings: Settings = Depends(shopify_configured),
    auth: SupabaseAuthContext = Depends(require_supabase_auth),
):
    platform = ShopifyPlatform(settings)
    store = platform.normalize_identifier(shop)

    redirect_uri = settings.shopify_redirect_uri or str(request.url_for("shopify_callback"))
    url = platform.build_authorize_url(store, user_id=auth.user_id, callback_url=redirect_uri)

    logger.info("shopify_install_started", shop=store, user_id=auth.user_id)
    return {"url": url}


@router.get("/callback", name="shopify_callback")
async def callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
    db: AsyncSession = Depends(get_db),
):
    params = dict(request.query_params)
    try:
        if not params.get("code") or not params.get("shop") or not params.get("state"):
            raise ValidationError("Missing params")

        platform = ShopifyPlatform(settings, client)
        store = platform.normalize_identifier(params["shop"])
        user_id = platform.verify_callback(store, params)
        credentials = await platform.exchange_grant(store, params)

        await IntegrationRepository(db).upsert_integration(
            user_id=user_id,
            platform=platform.tag,
            store_url=store,
            access_token=credentials.access_token,
            scope=credentials.scope,
        )
    except OrderFeedError as e:
        # Browser-facing: plain text, not JSON.
        logger.warning(
            "shopify_callback_failed",
            shop=params.get("shop"),
            status=e.status_code,
            error=e.message,
        )
        return PlainTextResponse(e.message, status_code=e.status_code)

    logger.info("shopify_store_connected", shop=store, user_id=user_id)
    return RedirectResponse(f"{settings.frontend_url}/dashboard?success=true", status_code=302)
