"""Platform tag -> implementation."""

import httpx

from app.config import Settings
from app.core.errors import ValidationError
from app.platforms.base import Platform
from app.platforms.shopify import ShopifyPlatform
from app.platforms.woocommerce import WooCommercePlatform

PLATFORMS: dict[str, type[Platform]] = {
    ShopifyPlatform.tag: ShopifyPlatform,
    WooCommercePlatform.tag: WooCommercePlatform,
}


def get_platform(
    tag: str, settings: Settings, client: httpx.AsyncClient | None = None
) -> Platform:
    try:
        platform_cls = PLATFORMS[tag]
    except KeyError:
        raise ValidationError(f"Unsupported platform: {tag}")
    return platform_cls(settings, client)
