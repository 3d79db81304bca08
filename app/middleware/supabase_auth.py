"""
Supabase authentication for FastAPI.
Validates JWTs server-side by calling Supabase /auth/v1/user and resolves
them to the Supabase user id that owns integrations.
"""

from dataclasses import dataclass

import httpx
from fastapi import Depends, Request

from app.config import Settings, get_settings
from app.core.errors import Unauthorized, UpstreamError

import structlog

logger = structlog.get_logger()


@dataclass
class SupabaseAuthContext:
    user_id: str


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


async def _validate_supabase_token(token: str, settings: Settings) -> dict:
    """Call Supabase /auth/v1/user to validate the Bearer token server-side."""
    settings.require("supabase_url", "supabase_anon_key")
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        try:
            resp = await client.get(
                f"{settings.supabase_url.rstrip('/')}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": settings.supabase_anon_key,
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Cannot reach identity provider: {e}") from e
    if resp.status_code != 200:
        raise Unauthorized("Invalid or expired token")
    return resp.json()


async def resolve_user_id(token: str, settings: Settings) -> str:
    user = await _validate_supabase_token(token, settings)
    user_id = user.get("id") if isinstance(user, dict) else None
    if not user_id:
        raise Unauthorized("Invalid or expired token")
    return str(user_id)


async def require_supabase_auth(
    request: Request, settings: Settings = Depends(get_settings)
) -> SupabaseAuthContext:
    """FastAPI dependency: extracts Bearer token, validates, returns auth context."""
    token = bearer_token(request)
    if not token:
        raise Unauthorized("Missing Bearer token")
    user_id = await resolve_user_id(token, settings)
    return SupabaseAuthContext(user_id=user_id)
