# Signed session tokens identifying the end user.
# Created: 2026-10-18
#
# The identity provider (external) authenticates the user and hands the browser a
# session token of the form <b64url(user_id)>.<expiry>.<hmac>. This module only
# verifies them; create_session_token exists for the IdP side and for the CLI.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time

logger = logging.getLogger(__name__)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(secret: str, payload: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def create_session_token(user_id: str, ttl_hours: int = 12, secret: str | None = None) -> str:
    """Mint a session token for *user_id* valid for *ttl_hours*."""
    if not user_id:
        raise ValueError("user_id is required")
    if secret is None:
        from authgate.config import get_secret_key

        secret = get_secret_key()

    expires = int(time.time()) + ttl_hours * 3600
    payload = f"{_b64encode(user_id.encode())}.{expires}"
    return f"{payload}.{_sign(secret, payload)}"


def verify_session_token(token: str, secret: str | None = None) -> str | None:
    """Return the user id carried by *token*, or None if it is forged, malformed or expired."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    encoded_user, expires_raw, signature = parts

    if secret is None:
        from authgate.config import get_secret_key

        secret = get_secret_key()

    expected = _sign(secret, f"{encoded_user}.{expires_raw}")
    if not hmac.compare_digest(expected, signature):
        return None

    try:
        expires = int(expires_raw)
        user_id = _b64decode(encoded_user).decode()
    except (ValueError, UnicodeDecodeError):
        return None

    if time.time() > expires:
        logger.debug("Rejected expired session token")
        return None
    return user_id or None
