"""
WooCommerce connection via the store's web auth endpoint.

/initiate is called by the dashboard with the user's Supabase Bearer token
and returns the store's authorize URL. After the merchant approves, the
store POSTs {consumer_key, consumer_secret} to /callback; the owning user
and store arrive on the callback URL we built, together with a signed state
that binds them.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.errors import ValidationError
from app.middleware.supabase_auth import SupabaseAuthContext, require_supabase_auth
from app.models.database import get_db
from app.models.repository import IntegrationRepository
from app.platforms.woocommerce import WooCommercePlatform

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/woocommerce", tags=["woocommerce"])


def woocommerce_configured(settings: Settings = Depends(get_settings)) -> Settings:
    settings.require("oauth_state_secret")
    return settings


@router.get("/initiate")
async def initiate(
    request: Request,
    store_url: str | None = None,
    settings: Settings = Depends(woocommerce_configured),
    auth: SupabaseAuthContext = Depends(require_supabase_auth),
):
    platform = WooCommercePlatform(settings)
    store = platform.normalize_identifier(store_url)

    # Stores refuse to POST keys to plain http.
    callback_url = str(request.url_for("woocommerce_callback").replace(scheme="https"))
    url = platform.build_authorize_url(store, user_id=auth.user_id, callback_url=callback_url)

    logger.info("woocommerce_initiate_started", store_url=store, user_id=auth.user_id)
    return {"url": url}


@router.post("/callback", name="woocommerce_callback")
async def callback(
    request: Request,
    settings: Settings = Depends(woocommerce_configured),
    db: AsyncSession = Depends(get_db),
):
    params = dict(request.query_params)
    if not params.get("user_id") or not params.get("store_url"):
        logger.warning("woocommerce_callback_missing_params")
        raise ValidationError("Missing callback params")

    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body.")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body.")

    platform = WooCommercePlatform(settings)
    store = platform.normalize_identifier(params["store_url"])
    user_id = platform.verify_callback(store, params)
    credentials = await platform.exchange_grant(store, body)

    await IntegrationRepository(db).upsert_integration(
        user_id=user_id,
        platform=platform.tag,
        store_url=store,
        access_token=credentials.access_token,
        refresh_token=credentials.refresh_token,
        scope=credentials.scope,
    )

    logger.info("woocommerce_store_connected", store_url=store, user_id=user_id)
    return {"success": True}
