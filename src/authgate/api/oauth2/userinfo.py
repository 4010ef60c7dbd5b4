# OpenID Connect UserInfo claims.
# Created: 2026-10-18
#
# Profile data lives with the external identity provider; ProfileProvider is the
# port it is read through. Claims are released per granted scope only.

from __future__ import annotations

from typing import Any, Protocol

SCOPE_CLAIMS: dict[str, tuple[str, ...]] = {
    "profile": ("name", "given_name", "family_name", "picture", "updated_at"),
    "email": ("email", "email_verified"),
    "phone": ("phone_number", "phone_number_verified"),
    "address": ("address",),
}

SUPPORTED_CLAIMS = ["sub", *[c for claims in SCOPE_CLAIMS.values() for c in claims]]


class ProfileProvider(Protocol):
    def get_profile(self, user_id: str) -> dict[str, Any] | None: ...


class NullProfileProvider:
    """Knows nothing about anyone; only ``sub`` is released."""

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return None


class StaticProfileProvider:
    """Profiles held in a dict. Handy for development and tests."""

    def __init__(self, profiles: dict[str, dict[str, Any]] | None = None):
        self.profiles = dict(profiles or {})

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return self.profiles.get(user_id)


def build_claims(
    user_id: str, scopes: list[str], provider: ProfileProvider
) -> dict[str, Any]:
    claims: dict[str, Any] = {"sub": user_id}
    profile = provider.get_profile(user_id) or {}
    for scope in scopes:
        for name in SCOPE_CLAIMS.get(scope, ()):
            if profile.get(name) is not None:
                claims[name] = profile[name]
    return claims
