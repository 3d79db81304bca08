"""
Shopify: OAuth install/callback + GraphQL Admin API order fetch.

Install URL:  https://{shop}/admin/oauth/authorize
Token:        POST https://{shop}/admin/oauth/access_token
Orders:       POST https://{shop}/admin/api/{version}/graphql.json
"""

import datetime
import hashlib
import hmac
from typing import Any, Mapping
from urllib.parse import urlencode

from app.core.domains import normalize_shop_domain
from app.core.errors import UpstreamError, ValidationError
from app.core.oauth_state import mint_state, verify_state
from app.models.tables import PLATFORM_SHOPIFY, Integration
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

PAGE_SIZE = 50

ORDERS_QUERY = """
query getOrders($cursor: String, $query: String) {
  orders(first: %d, after: $cursor, query: $query) {
    edges {
      node {
        id
        createdAt
        totalPriceSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        displayFinancialStatus
        name
        billingAddress {
          name
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""" % PAGE_SIZE


def callback_hmac_message(params: Mapping[str, str]) -> str:
    """Shopify signs every callback query param except hmac/signature, sorted."""
    pairs = sorted((k, v) for k, v in params.items() if k not in ("hmac", "signature"))
    return urlencode(pairs)


def verify_callback_hmac(params: Mapping[str, str], secret: str) -> bool:
    provided = params.get("hmac", "")
    computed = hmac.new(
        secret.encode("utf-8"),
        callback_hmac_message(params).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(computed.encode(), provided.encode())


def order_search_filter(since: datetime.datetime, incremental: bool) -> str:
    """First sync looks at creation date, later syncs pick up any change."""
    field = "updated_at" if incremental else "created_at"
    stamp = since.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"{field}:>='{stamp}'"


def normalize_order(node: dict) -> OrderRecord:
    money = (node.get("totalPriceSet") or {}).get("shopMoney") or {}
    billing = node.get("billingAddress") or {}
    status = node.get("displayFinancialStatus") or "unknown"
    return OrderRecord(
        # gid://shopify/Order/123 -> 123
        external_id=str(node.get("id", "")).rstrip("/").split("/")[-1],
        total_price=parse_money(money.get("amount")),
        currency=money.get("currencyCode"),
        customer_name=billing.get("name") or GUEST,
        status=status.lower(),
        ordered_at=parse_timestamp(node.get("createdAt")),
        raw_data=node,
    )


class ShopifyPlatform(Platform):
    tag = PLATFORM_SHOPIFY
    window_setting = "shopify_window_days"

    def normalize_identifier(self, raw: str | None) -> str:
        return normalize_shop_domain(raw)

    def build_authorize_url(self, store: str, *, user_id: str, callback_url: str) -> str:
        self.settings.require("shopify_client_id")
        params = {
            "client_id": self.settings.shopify_client_id,
            "scope": self.settings.shopify_scopes,
            "redirect_uri": callback_url,
            "state": mint_state(self.settings, user_id),
        }
        return f"https://{store}/admin/oauth/authorize?{urlencode(params)}"

    def verify_callback(self, store: str, params: Mapping[str, str]) -> str:
        self.settings.require("shopify_client_id", "shopify_client_secret")
        if "hmac" in params and not verify_callback_hmac(params, self.settings.shopify_client_secret):
            logger.warning("shopify_callback_bad_hmac", shop=store)
            raise ValidationError("Invalid HMAC signature")
        return verify_state(self.settings, params.get("state")).user_id

    async def exchange_grant(self, store: str, grant: Mapping[str, Any]) -> Credentials:
        self.settings.require("shopify_client_id", "shopify_client_secret")
        code = grant.get("code")
        if not code:
            raise ValidationError("Missing code")

        async with self.http() as client:
            resp = await self.send(
                client,
                "POST",
                f"https://{store}/admin/oauth/access_token",
                json={
                    "client_id": self.settings.shopify_client_id,
                    "client_secret": self.settings.shopify_client_secret,
                    "code": code,
                },
            )

        if not resp.is_success:
            raise UpstreamError(
                f"Token exchange failed: {upstream_text(resp)}",
                upstream_status=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError:
            raise UpstreamError("Token exchange failed: response was not JSON")
        if not body.get("access_token"):
            raise UpstreamError("Token exchange failed: no access_token in response")

        return Credentials(access_token=body["access_token"], scope=body.get("scope"))

    async def fetch_orders(
        self, integration: Integration, since: datetime.datetime
    ) -> list[OrderRecord]:
        url = (
            f"https://{integration.store_url}/admin/api/"
            f"{self.settings.shopify_api_version}/graphql.json"
        )
        search = order_search_filter(since, incremental=integration.last_sync_at is not None)
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": integration.access_token,
        }

        orders: list[OrderRecord] = []
        cursor = None
        async with self.http() as client:
            for _ in range(max(1, self.settings.sync_max_pages)):
                resp = await self.send(
                    client,
                    "POST",
                    url,
                    headers=headers,
                    json={"query": ORDERS_QUERY, "variables": {"cursor": cursor, "query": search}},
                )
                if not resp.is_success:
                    raise UpstreamError(
                        f"Shopify GraphQL error: {upstream_text(resp)}",
                        upstream_status=resp.status_code,
                    )

                try:
                    body = resp.json()
                except ValueError:
                    raise UpstreamError("Shopify GraphQL error: response was not JSON")
                if body.get("errors"):
                    raise UpstreamError(f"Shopify GraphQL errors: {body['errors']}")

                connection = (body.get("data") or {}).get("orders")
                if connection is None:
                    raise UpstreamError("Shopify GraphQL error: no orders in response")

                orders.extend(normalize_order(edge["node"]) for edge in connection.get("edges", []))

                page_info = connection.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")

        logger.info(
            "shopify_orders_fetched",
            integration_id=str(integration.id),
            shop=integration.store_url,
            count=len(orders),
        )
        return orders
