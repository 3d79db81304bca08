"""
OAuth state minting & verification.

Format:  {payload}.{hmac_sig}
- payload   → base64url(JSON) with userId, nonce, exp (unix ts) and any
              extra claims (e.g. storeUrl for WooCommerce callbacks)
- hmac_sig  → HMAC-SHA256(payload, secret), hex

The state is the only link between the user who started a connect flow and
the platform-invoked callback, so it is signed and short-lived.
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass, field

from app.config import Settings
from app.core.errors import ValidationError


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


@dataclass(frozen=True)
class OAuthState:
    user_id: str
    nonce: str
    expiry: int
    claims: dict = field(default_factory=dict)

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expiry


def mint_state(settings: Settings, user_id: str, **claims: str) -> str:
    """Create a signed state token for `user_id`."""
    settings.require("oauth_state_secret")
    body = {
        "userId": user_id,
        "nonce": secrets.token_urlsafe(8),
        "exp": int(time.time()) + settings.oauth_state_ttl_seconds,
        **claims,
    }
    payload = _b64encode(json.dumps(body, separators=(",", ":")).encode())
    return f"{payload}.{_sign(payload, settings.oauth_state_secret)}"


def verify_state(settings: Settings, raw: str | None) -> OAuthState:
    """Parse and verify a state token. Raises ValidationError if unusable."""
    settings.require("oauth_state_secret")
    if not raw or raw.count(".") != 1:
        raise ValidationError("Invalid state parameter")

    payload, sig = raw.split(".")
    expected = _sign(payload, settings.oauth_state_secret)
    if not hmac.compare_digest(sig.encode(), expected.encode()):
        raise ValidationError("Invalid state parameter")

    try:
        body = json.loads(_b64decode(payload))
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid state parameter")

    if not isinstance(body, dict) or not body.get("userId"):
        raise ValidationError("Invalid state parameter: no user id")

    try:
        expiry = int(body.get("exp"))
    except (TypeError, ValueError):
        raise ValidationError("Invalid state parameter")

    state = OAuthState(
        user_id=str(body["userId"]),
        nonce=str(body.get("nonce", "")),
        expiry=expiry,
        claims={k: v for k, v in body.items() if k not in ("userId", "nonce", "exp")},
    )
    if state.is_expired:
        raise ValidationError("State parameter expired. Start the connection again.")
    return state
