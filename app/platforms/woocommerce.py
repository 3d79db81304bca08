"""
WooCommerce: web auth endpoint + REST v3 order fetch.

Authorize:  {store}/wc-auth/v1/authorize   (keys are POSTed to our callback)
Orders:     GET {store}/wp-json/wc/v3/orders

Credentials map onto the integration row as
access_token = consumer_key, refresh_token = consumer_secret.
"""

import datetime
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from app.core.domains import normalize_store_url
from app.core.errors import UpstreamError, ValidationError
from app.core.oauth_state import mint_state, verify_state
from app.models.tables import PLATFORM_WOOCOMMERCE, Integration
from app.platforms.base import (
    GUEST,
    Credentials,
    OrderRecord,
    Platform,
    parse_money,
    parse_timestamp,
    upstream_text,
)

import structlog

logger = structlog.get_logger()

PAGE_SIZE = 100
AUTH_REJECTED = (401, 403)


def customer_name(order: dict) -> str:
    billing = order.get("billing") or {}
    name = f"{billing.get('first_name') or ''} {billing.get('last_name') or ''}".strip()
    return name or GUEST


def normalize_order(order: dict) -> OrderRecord:
    # Prefer the GMT stamp; date_created is in the shop's local time.
    ordered_at = parse_timestamp(order.get("date_created_gmt")) or parse_timestamp(
        order.get("date_created")
    )
    return OrderRecord(
        external_id=str(order.get("id")),
        total_price=parse_money(order.get("total")),
        currency=order.get("currency"),
        customer_name=customer_name(order),
        status=order.get("status"),
        ordered_at=ordered_at,
        raw_data=order,
    )


class WooCommercePlatform(Platform):
    tag = PLATFORM_WOOCOMMERCE
    window_setting = "woocommerce_window_days"

    def normalize_identifier(self, raw: str | None) -> str:
        return normalize_store_url(raw)

    def build_authorize_url(self, store: str, *, user_id: str, callback_url: str) -> str:
        state = mint_state(self.settings, user_id, storeUrl=store)
        callback = httpx.URL(callback_url).copy_merge_params(
            {"user_id": user_id, "store_url": store, "state": state}
        )
        params = {
            "app_name": self.settings.woocommerce_app_name,
            "scope": "read_write",
            "user_id": user_id,
            "return_url": f"{self.settings.frontend_url}/dashboard?success=true",
            "callback_url": str(callback),
        }
        return f"{store}/wc-auth/v1/authorize?{urlencode(params)}"

    def verify_callback(self, store: str, params: Mapping[str, str]) -> str:
        user_id = params.get("user_id")
        if not user_id or not store:
            raise ValidationError("Missing callback params")

        state = verify_state(self.settings, params.get("state"))
        if state.user_id != user_id or state.claims.get("storeUrl") != store:
            logger.warning("woocommerce_callback_state_mismatch", store_url=store)
            raise ValidationError("Invalid state parameter")
        return user_id

    async def exchange_grant(self, store: str, grant: Mapping[str, Any]) -> Credentials:
        # WooCommerce hands the keys over directly; nothing to exchange.
        consumer_key = grant.get("consumer_key")
        consumer_secret = grant.get("consumer_secret")
        if not consumer_key or not consumer_secret:
            raise ValidationError("Missing consumer_key or consumer_secret")
        return Credentials(
            access_token=consumer_key,
            refresh_token=consumer_secret,
            scope=grant.get("key_permissions"),
        )

    async def _get_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict,
        integration: Integration,
        use_query_auth: bool,
    ) -> tuple[httpx.Response, bool]:
        """One page, retrying once with query-string keys if the header is refused."""
        key, secret = integration.access_token, integration.refresh_token
        if not use_query_auth:
            resp = await self.send(client, "GET", url, params=params, auth=(key, secret))
            if resp.status_code not in AUTH_REJECTED:
                return resp, False
            # Some hosts strip the Authorization header before PHP sees it.
            logger.info(
                "woocommerce_auth_header_rejected",
                integration_id=str(integration.id),
                status=resp.status_code,
            )

        resp = await self.send(
            client,
            "GET",
            url,
            params={**params, "consumer_key": key, "consumer_secret": secret},
        )
        return resp, True

    async def fetch_orders(
        self, integration: Integration, since: datetime.datetime
    ) -> list[OrderRecord]:
        if not integration.refresh_token:
            raise ValidationError("Missing WooCommerce consumer secret")

        base_url = integration.store_url.rstrip("/")
        url = f"{base_url}/wp-json/wc/v3/orders"
        params: dict[str, Any] = {
            "modified_after": since.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
            "dates_are_gmt": "true",
            "per_page": PAGE_SIZE,
            "status": "any",
        }

        orders: list[OrderRecord] = []
        use_query_auth = False
        async with self.http() as client:
            page = 1
            while True:
                page_params = {**params, "page": page} if page > 1 else params
                resp, use_query_auth = await self._get_page(
                    client, url, page_params, integration, use_query_auth
                )
                if not resp.is_success:
                    raise UpstreamError(
                        f"WooCommerce API error: {upstream_text(resp)}",
                        upstream_status=resp.status_code,
                    )

                try:
                    batch = resp.json()
                except ValueError:
                    raise UpstreamError("WooCommerce API error: response was not JSON")
                if not isinstance(batch, list):
                    raise UpstreamError(f"WooCommerce API error: unexpected payload {str(batch)[:200]}")

                orders.extend(normalize_order(o) for o in batch)

                try:
                    total_pages = int(resp.headers.get("X-WP-TotalPages", "1"))
                except ValueError:
                    total_pages = 1
                if (
                    len(batch) < PAGE_SIZE
                    or page >= total_pages
                    or page >= self.settings.sync_max_pages
                ):
                    break
                page += 1

        logger.info(
            "woocommerce_orders_fetched",
            integration_id=str(integration.id),
            store_url=base_url,
            count=len(orders),
            query_auth=use_query_auth,
        )
        return orders
