# Redirect URI and scope validation.
# Created: 2026-10-18
#
# Pure functions shared by the client registry, the authorization endpoint and
# the token endpoint. Redirect matching is exact string comparison: no prefix,
# wildcard or normalisation.

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlsplit

from authgate.api.oauth2.errors import ClientRegistrationError
from authgate.api.oauth2.models import OAuthClient

_WEB_SCHEMES = ("http", "https")


def is_valid_redirect_uri(uri: str) -> bool:
    """Absolute URI with a scheme, no fragment; http(s) URIs also need a host."""
    if not isinstance(uri, str) or not uri or uri != uri.strip():
        return False
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    if not parts.scheme or parts.fragment or "#" in uri:
        return False
    if parts.scheme.lower() in _WEB_SCHEMES:
        return bool(parts.netloc)
    return bool(parts.netloc or parts.path)


def validate_redirect_uris(uris: Iterable[str] | None) -> list[str]:
    """Validate a registration's redirect URIs, dropping duplicates but keeping order."""
    result: list[str] = []
    for uri in uris or []:
        if not is_valid_redirect_uri(uri):
            raise ClientRegistrationError("invalid_redirect_uri", f"Invalid redirect_uri: {uri}")
        if uri not in result:
            result.append(uri)
    if not result:
        raise ClientRegistrationError(
            "invalid_redirect_uri", "At least one redirect_uri is required"
        )
    return result


def check_redirect_uri(client: OAuthClient, redirect_uri: str | None) -> bool:
    return bool(redirect_uri) and redirect_uri in client.redirect_uris


def parse_scope(scope: str | Iterable[str] | None) -> list[str]:
    """Split a space-delimited scope string; duplicates collapse, order kept."""
    if scope is None:
        return []
    items = scope.split() if isinstance(scope, str) else [s for s in scope if s]
    result: list[str] = []
    for item in items:
        if item not in result:
            result.append(item)
    return result


def order_scopes(scopes: Iterable[str], vocabulary: list[str]) -> list[str]:
    """Order *scopes* as they appear in *vocabulary*; unknown scopes sort last."""
    rank = {name: i for i, name in enumerate(vocabulary)}
    unique = set(scopes)
    return sorted(unique, key=lambda s: (rank.get(s, len(rank)), s))


def format_scope(scopes: Iterable[str], vocabulary: list[str]) -> str:
    return " ".join(order_scopes(scopes, vocabulary))


def validate_scopes(scopes: Iterable[str], vocabulary: list[str]) -> list[str]:
    """Reject scopes outside the vocabulary (client registration)."""
    scopes = parse_scope(scopes)
    unknown = sorted(set(scopes) - set(vocabulary))
    if unknown:
        raise ClientRegistrationError(
            "invalid_client_metadata", f"Unsupported scopes: {', '.join(unknown)}"
        )
    return order_scopes(scopes, vocabulary)


def narrow_scope(
    requested: Iterable[str], allowed: Iterable[str], vocabulary: list[str]
) -> list[str]:
    """Requested ∩ client-allowed ∩ vocabulary, in vocabulary order."""
    granted = set(requested) & set(allowed) & set(vocabulary)
    return order_scopes(granted, vocabulary)


def is_subset(requested: Iterable[str], granted: Iterable[str]) -> bool:
    return set(requested) <= set(granted)
