"""
OrderFeed: unified order feed across linked Shopify and WooCommerce stores.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.shopify import router as shopify_router
from app.api.sync import router as sync_router
from app.api.woocommerce import router as woocommerce_router
from app.middleware.auth import CRON_SECRET_HEADER
from app.middleware.errors import install_error_handlers
from app.config import get_settings
from app.models.database import dispose_engine

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        *(
            [structlog.dev.ConsoleRenderer()]
            if get_settings().debug
            else [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        ),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    missing = settings.missing()
    if missing:
        # Routes that need these fail with a ConfigurationError naming them.
        logger.warning("orderfeed_config_incomplete", missing=missing)
    logger.info("orderfeed_starting", base_url=settings.base_url)
    yield
    logger.info("orderfeed_shutting_down")
    await dispose_engine()


app = FastAPI(
    title="OrderFeed",
    description="Unified order feed across linked Shopify and WooCommerce stores.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

install_error_handlers(app)

# The dashboard calls these endpoints straight from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if get_settings().debug else [get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "apikey", "x-client-info", CRON_SECRET_HEADER],
    max_age=86400,
)

# --- Routes ---
app.include_router(shopify_router)
app.include_router(woocommerce_router)
app.include_router(sync_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "orderfeed", "version": "0.1.0"}
