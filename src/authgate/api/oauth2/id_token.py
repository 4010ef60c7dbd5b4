# OpenID Connect id_token minting.
# Created: 2026-10-18

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import jwt

ALGORITHM = "HS256"


def mint_id_token(
    *,
    issuer: str,
    subject: str,
    audience: str,
    issued_at: datetime,
    ttl: timedelta,
    key: str,
    claims: dict[str, Any] | None = None,
) -> str:
    payload: dict[str, Any] = dict(claims or {})
    payload.update(
        iss=issuer,
        sub=subject,
        aud=audience,
        azp=audience,
        iat=int(issued_at.timestamp()),
        exp=int((issued_at + ttl).timestamp()),
    )
    return jwt.encode(payload, key, algorithm=ALGORITHM)


def decode_id_token(token: str, *, key: str, audience: str, issuer: str) -> dict[str, Any]:
    """Verify signature, audience, issuer and expiry. Raises jwt.InvalidTokenError."""
    return jwt.decode(token, key, algorithms=[ALGORITHM], audience=audience, issuer=issuer)
