"""Pytest configuration."""

import os

# Ensure test environment
os.environ.setdefault("OF_DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("OF_DEBUG", "true")
os.environ.setdefault("OF_OAUTH_STATE_SECRET", "test-state-secret")
os.environ.setdefault("OF_CRON_SECRET", "test-cron-secret")

import pytest

from app.config import Settings


@pytest.fixture
def settings():
    """Fully configured settings, independent of the environment."""
    return Settings(
        base_url="https://api.example.com",
        frontend_url="https://app.example.com",
        supabase_url="https://proj.supabase.co",
        supabase_anon_key="anon-key",
        shopify_client_id="shp-client-id",
        shopify_client_secret="shp-client-secret",
        cron_secret="cron-secret",
        oauth_state_secret="state-secret",
    )
