# OpenID provider metadata (OpenID Connect Discovery 1.0).
# Created: 2026-10-18
#
# Advertises only what this server actually implements.

from __future__ import annotations

from typing import Any

from authgate.api.oauth2.id_token import ALGORITHM
from authgate.api.oauth2.models import TOKEN_ENDPOINT_AUTH_METHODS
from authgate.api.oauth2.pkce import SUPPORTED_METHODS
from authgate.api.oauth2.userinfo import SUPPORTED_CLAIMS

API_PREFIX = "/api/v1"


def build_metadata(settings) -> dict[str, Any]:
    issuer = settings.issuer.rstrip("/")
    base = f"{issuer}{API_PREFIX}"
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{base}/oauth/authorize",
        "token_endpoint": f"{base}/oauth/token",
        "revocation_endpoint": f"{base}/oauth/revoke",
        "userinfo_endpoint": f"{base}/oauth/userinfo",
        "registration_endpoint": f"{base}/clients",
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "subject_types_supported": ["public"],
        "scopes_supported": list(settings.supported_scopes),
        "token_endpoint_auth_methods_supported": list(TOKEN_ENDPOINT_AUTH_METHODS),
        "revocation_endpoint_auth_methods_supported": list(TOKEN_ENDPOINT_AUTH_METHODS),
        "code_challenge_methods_supported": sorted(SUPPORTED_METHODS),
        "id_token_signing_alg_values_supported": [ALGORITHM],
        "claims_supported": ["iss", "aud", "exp", "iat", "azp", *SUPPORTED_CLAIMS],
    }
