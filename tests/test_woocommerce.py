"""Tests for WooCommerce: normalization, auth fallback, web auth initiate + callback."""

import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlencode, urlsplit
from uuid import uuid4

import httpx
import pytest

from app.core.errors import UpstreamError, ValidationError
from app.core.oauth_state import mint_state, verify_state
from app.models.tables import Integration
from app.platforms.woocommerce import WooCommercePlatform, customer_name, normalize_order

STORE = "https://shop.example.com"
NOW = datetime.datetime(2026, 10, 19, 12, 0, tzinfo=datetime.timezone.utc)


def _order(order_id=501, total="75.00", first="Grace", last="Hopper", status="processing"):
    return {
        "id": order_id,
        "total": total,
        "currency": "EUR",
        "status": status,
        "date_created": "2026-10-01T11:30:00",
        "date_created_gmt": "2026-10-01T09:30:00",
        "billing": {"first_name": first, "last_name": last},
    }


def _integration(last_sync_at=None, secret="cs_secret"):
    return Integration(
        id=uuid4(),
        user_id="user-1",
        platform="woocommerce",
        store_url=STORE,
        access_token="ck_key",
        refresh_token=secret,
        status="active",
        last_sync_at=last_sync_at,
    )


def _query(request: httpx.Request) -> dict:
    return dict(request.url.params)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

class TestNormalizeOrder:
    def test_fields(self):
        order = normalize_order(_order())
        assert order.external_id == "501"
        assert order.total_price == Decimal("75.00")
        assert order.currency == "EUR"
        assert order.status == "processing"
        assert order.customer_name == "Grace Hopper"

    def test_prefers_gmt_timestamp(self):
        order = normalize_order(_order())
        assert order.ordered_at == datetime.datetime(2026, 10, 1, 9, 30, tzinfo=datetime.timezone.utc)

    def test_falls_back_to_local_timestamp(self):
        raw = _order()
        del raw["date_created_gmt"]
        assert normalize_order(raw).ordered_at.hour == 11

    @pytest.mark.parametrize("billing", [None, {}, {"first_name": "", "last_name": None}])
    def test_guest_customer(self, billing):
        assert customer_name({"billing": billing}) == "Guest"

    def test_single_name_part(self):
        assert customer_name({"billing": {"first_name": "", "last_name": "Hopper"}}) == "Hopper"


# ---------------------------------------------------------------------------
# Order fetch: window, auth fallback, errors
# ---------------------------------------------------------------------------

class TestFetchOrders:
    def _platform(self, settings, handler):
        self.calls = []

        def recorder(request):
            self.calls.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        return WooCommercePlatform(settings, client)

    async def test_basic_auth_first(self, settings):
        platform = self._platform(settings, lambda r: httpx.Response(200, json=[_order()]))
        orders = await platform.fetch_orders(_integration(), NOW)

        assert [o.external_id for o in orders] == ["501"]
        assert len(self.calls) == 1
        request = self.calls[0]
        assert request.url.path == "/wp-json/wc/v3/orders"
        assert request.headers["Authorization"].startswith("Basic ")
        params = _query(request)
        assert "consumer_key" not in params
        assert params["modified_after"] == "2026-10-19T12:00:00"
        assert params["dates_are_gmt"] == "true"
        assert params["per_page"] == "100"
        assert params["status"] == "any"
        assert "page" not in params

    @pytest.mark.parametrize("rejected", [401, 403])
    async def test_falls_back_to_query_keys_once(self, settings, rejected):
        def handler(request):
            if "Authorization" in request.headers:
                return httpx.Response(rejected, json={"code": "woocommerce_rest_cannot_view"})
            return httpx.Response(200, json=[_order()])

        platform = self._platform(settings, handler)
        orders = await platform.fetch_orders(_integration(), NOW)

        assert len(orders) == 1
        assert len(self.calls) == 2
        retry = self.calls[1]
        assert "Authorization" not in retry.headers
        assert _query(retry)["consumer_key"] == "ck_key"
        assert _query(retry)["consumer_secret"] == "cs_secret"

    async def test_rejected_twice_is_upstream_error(self, settings):
        platform = self._platform(settings, lambda r: httpx.Response(401, text="Consumer key is invalid."))
        with pytest.raises(UpstreamError, match="Consumer key is invalid") as exc:
            await platform.fetch_orders(_integration(), NOW)
        assert exc.value.upstream_status == 401
        assert len(self.calls) == 2

    async def test_server_error_is_not_retried(self, settings):
        platform = self._platform(settings, lambda r: httpx.Response(500, text="boom"))
        with pytest.raises(UpstreamError, match="WooCommerce API error: boom"):
            await platform.fetch_orders(_integration(), NOW)
        assert len(self.calls) == 1

    async def test_non_list_payload_is_upstream_error(self, settings):
        platform = self._platform(settings, lambda r: httpx.Response(200, json={"code": "oops"}))
        with pytest.raises(UpstreamError):
            await platform.fetch_orders(_integration(), NOW)

    async def test_missing_secret(self, settings):
        platform = self._platform(settings, lambda r: httpx.Response(200, json=[]))
        with pytest.raises(ValidationError, match="consumer secret"):
            await platform.fetch_orders(_integration(secret=None), NOW)
        assert self.calls == []

    async def test_first_page_only_by_default(self, settings):
        batch = [_order(order_id=i) for i in range(100)]
        platform = self._platform(
            settings, lambda r: httpx.Response(200, json=batch, headers={"X-WP-TotalPages": "3"})
        )
        orders = await platform.fetch_orders(_integration(), NOW)
        assert len(orders) == 100
        assert len(self.calls) == 1

    async def test_pages_until_total_pages(self, settings):
        settings = settings.model_copy(update={"sync_max_pages": 5})

        def handler(request):
            page = int(request.url.params.get("page", "1"))
            batch = [_order(order_id=page * 1000 + i) for i in range(100)]
            return httpx.Response(200, json=batch, headers={"X-WP-TotalPages": "2"})

        platform = self._platform(settings, handler)
        orders = await platform.fetch_orders(_integration(), NOW)
        assert len(orders) == 200
        assert [c.url.params.get("page") for c in self.calls] == [None, "2"]

    async def test_query_auth_sticks_across_pages(self, settings):
        settings = settings.model_copy(update={"sync_max_pages": 2})

        def handler(request):
            if "Authorization" in request.headers:
                return httpx.Response(401)
            return httpx.Response(200, json=[_order(order_id=i) for i in range(100)],
                                  headers={"X-WP-TotalPages": "2"})

        platform = self._platform(settings, handler)
        await platform.fetch_orders(_integration(), NOW)
        # header attempt, query retry, then page 2 straight with query keys
        assert len(self.calls) == 3
        assert "Authorization" not in self.calls[2].headers


class TestSyncWindow:
    def test_fallback_is_180_days(self, settings):
        start = WooCommercePlatform(settings).sync_window_start(_integration(), NOW)
        assert start == NOW - datetime.timedelta(days=180)

    def test_incremental_from_last_sync(self, settings):
        last = NOW - datetime.timedelta(hours=3)
        start = WooCommercePlatform(settings).sync_window_start(_integration(last_sync_at=last), NOW)
        assert start == last


# ---------------------------------------------------------------------------
# Web auth capabilities
# ---------------------------------------------------------------------------

class TestAuthorizeUrl:
    def test_contents(self, settings):
        url = WooCommercePlatform(settings).build_authorize_url(
            STORE, user_id="user-1", callback_url="https://api.example.com/v1/woocommerce/callback"
        )
        parts = urlsplit(url)
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}

        assert f"{parts.scheme}://{parts.netloc}" == STORE
        assert parts.path == "/wc-auth/v1/authorize"
        assert query["app_name"] == "OrderFeed"
        assert query["scope"] == "read_write"
        assert query["user_id"] == "user-1"
        assert query["return_url"] == "https://app.example.com/dashboard?success=true"

        callback = urlsplit(query["callback_url"])
        assert callback.path == "/v1/woocommerce/callback"
        cb_query = {k: v[0] for k, v in parse_qs(callback.query).items()}
        assert cb_query["user_id"] == "user-1"
        assert cb_query["store_url"] == STORE
        state = verify_state(settings, cb_query["state"])
        assert state.user_id == "user-1"
        assert state.claims["storeUrl"] == STORE

    def test_verify_callback_rejects_other_store(self, settings):
        platform = WooCommercePlatform(settings)
        state = mint_state(settings, "user-1", storeUrl=STORE)
        with pytest.raises(ValidationError, match="Invalid state"):
            platform.verify_callback("https://other.example.com", {"user_id": "user-1", "state": state})

    def test_verify_callback_rejects_other_user(self, settings):
        platform = WooCommercePlatform(settings)
        state = mint_state(settings, "user-1", storeUrl=STORE)
        with pytest.raises(ValidationError, match="Invalid state"):
            platform.verify_callback(STORE, {"user_id": "user-2", "state": state})

    async def test_exchange_maps_keys(self, settings):
        creds = await WooCommercePlatform(settings).exchange_grant(
            STORE, {"consumer_key": "ck_1", "consumer_secret": "cs_1", "key_permissions": "read_write"}
        )
        assert creds.access_token == "ck_1"
        assert creds.refresh_token == "cs_1"
        assert creds.scope == "read_write"


# ---------------------------------------------------------------------------
# HTTP: /v1/woocommerce/initiate and /v1/woocommerce/callback
# ---------------------------------------------------------------------------

def _mock_db():
    mock_db = AsyncMock(spec=["execute", "add", "commit", "rollback", "flush"])
    lookup = MagicMock()
    lookup.scalars.return_value.first.return_value = None
    mock_db.execute = AsyncMock(return_value=lookup)
    mock_db.add = MagicMock()
    mock_db.commit = AsyncMock()
    mock_db.rollback = AsyncMock()
    return mock_db


class TestWooCommerceEndpoints:
    @pytest.fixture(autouse=True)
    def _setup(self, settings):
        from fastapi import FastAPI
        from fastapi.testclient import TestClient
        from app.api.woocommerce import router
        from app.config import get_settings
        from app.middleware.errors import install_error_handlers
        from app.models.database import get_db

        self.settings = settings
        self.mock_db = _mock_db()
        self.app = FastAPI()
        install_error_handlers(self.app)
        self.app.include_router(router)
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.app.dependency_overrides[get_db] = lambda: self.mock_db
        self.client = TestClient(self.app)

    def _as_user(self, user_id="user-1"):
        from app.middleware.supabase_auth import SupabaseAuthContext, require_supabase_auth
        self.app.dependency_overrides[require_supabase_auth] = lambda: SupabaseAuthContext(user_id=user_id)

    def _callback(self, body, **overrides):
        params = {
            "user_id": "user-1",
            "store_url": STORE,
            "state": mint_state(self.settings, "user-1", storeUrl=STORE),
        }
        params.update(overrides)
        params = {k: v for k, v in params.items() if v is not None}
        return self.client.post(f"/v1/woocommerce/callback?{urlencode(params)}", json=body)

    def test_initiate_returns_authorize_url(self):
        self._as_user()
        resp = self.client.get("/v1/woocommerce/initiate", params={"store_url": "http://shop.example.com/"})

        assert resp.status_code == 200
        url = resp.json()["url"]
        assert url.startswith("https://shop.example.com/wc-auth/v1/authorize?")
        callback_url = parse_qs(urlsplit(url).query)["callback_url"][0]
        assert callback_url.startswith("https://testserver/v1/woocommerce/callback?")

    def test_initiate_requires_bearer(self):
        resp = self.client.get("/v1/woocommerce/initiate", params={"store_url": STORE})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Missing Bearer token"}

    def test_initiate_rejects_bad_store(self):
        self._as_user()
        resp = self.client.get("/v1/woocommerce/initiate", params={"store_url": "not-a-host"})
        assert resp.status_code == 400

    def test_callback_saves_keys(self):
        resp = self._callback({"consumer_key": "ck_1", "consumer_secret": "cs_1", "key_permissions": "read_write"})

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        integration = self.mock_db.add.call_args[0][0]
        assert integration.user_id == "user-1"
        assert integration.platform == "woocommerce"
        assert integration.store_url == STORE
        assert integration.access_token == "ck_1"
        assert integration.refresh_token == "cs_1"
        assert integration.status == "active"
        self.mock_db.commit.assert_awaited_once()

    def test_callback_bad_state(self):
        resp = self._callback({"consumer_key": "ck_1", "consumer_secret": "cs_1"}, state="forged.0000")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid state parameter"}
        self.mock_db.add.assert_not_called()

    def test_callback_storage_failure_is_500(self):
        from sqlalchemy.exc import OperationalError

        self.mock_db.commit.side_effect = OperationalError("INSERT", {}, Exception("db down"))
        resp = self._callback({"consumer_key": "ck_1", "consumer_secret": "cs_1"})

        assert resp.status_code == 500
        assert resp.json()["error"].startswith("Failed to save integration")
        self.mock_db.rollback.assert_awaited_once()

    def test_callback_non_ascii_state(self):
        resp = self._callback({"consumer_key": "ck_1", "consumer_secret": "cs_1"}, state="abc.é")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid state parameter"}
        self.mock_db.add.assert_not_called()

    def test_callback_state_for_other_user(self):
        resp = self._callback({"consumer_key": "ck_1", "consumer_secret": "cs_1"}, user_id="user-2")
        assert resp.status_code == 400
        self.mock_db.add.assert_not_called()

    @pytest.mark.parametrize("missing", ["user_id", "store_url"])
    def test_callback_missing_params(self, missing):
        resp = self._callback({"consumer_key": "ck_1", "consumer_secret": "cs_1"}, **{missing: None})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing callback params"}

    def test_callback_missing_keys(self):
        resp = self._callback({"consumer_key": "ck_1"})
        assert resp.status_code == 400
        self.mock_db.add.assert_not_called()

    def test_callback_invalid_json(self):
        params = {"user_id": "user-1", "store_url": STORE, "state": "x.y"}
        resp = self.client.post(
            f"/v1/woocommerce/callback?{urlencode(params)}",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid JSON body."}
