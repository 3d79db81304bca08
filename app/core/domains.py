"""
Store identifier canonicalization.

Shopify stores are identified by their `*.myshopify.com` hostname, whatever
the merchant pasted (admin console URL, storefront URL, bare host).
WooCommerce stores are identified by an https base URL with no trailing
slash; the path is kept because WordPress may live in a subdirectory.
"""

from urllib.parse import urlsplit

from app.core.errors import ValidationError

SHOPIFY_SUFFIX = ".myshopify.com"
SHOPIFY_ADMIN_HOST = "admin.shopify.com"


def _split(raw: str):
    return urlsplit(raw if "://" in raw else f"https://{raw}")


def normalize_shop_domain(raw: str | None) -> str:
    """Return `<slug>.myshopify.com` or raise ValidationError."""
    value = (raw or "").strip()
    if not value:
        raise ValidationError("Missing shop parameter")

    try:
        parts = _split(value)
        host = (parts.hostname or "").lower()
    except ValueError:
        raise ValidationError(f"Invalid Shopify domain: {value}")

    if host == SHOPIFY_ADMIN_HOST:
        # admin.shopify.com/store/<slug>/... -> <slug>.myshopify.com
        segments = [s for s in parts.path.split("/") if s]
        if "store" in segments:
            idx = segments.index("store")
            if idx + 1 < len(segments):
                host = f"{segments[idx + 1].lower()}{SHOPIFY_SUFFIX}"

    if host.startswith("www."):
        host = host[4:]

    slug = host[: -len(SHOPIFY_SUFFIX)]
    if not host.endswith(SHOPIFY_SUFFIX) or not slug or "" in slug.split("."):
        raise ValidationError(
            "Invalid Shopify domain. Use your store's domain like mystore.myshopify.com."
        )
    return host


def normalize_store_url(raw: str | None) -> str:
    """Return an `https://host[/path]` base URL for a WooCommerce store."""
    value = (raw or "").strip()
    if not value:
        raise ValidationError("Missing store_url")

    try:
        parts = _split(value)
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        raise ValidationError(f"Invalid store_url: {value}")

    if not host or ("." not in host and host != "localhost"):
        raise ValidationError(f"Invalid store_url: {value}")

    netloc = f"{host}:{port}" if port else host
    path = parts.path.rstrip("/")
    return f"https://{netloc}{path}"
