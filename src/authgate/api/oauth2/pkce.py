# PKCE verification (RFC 7636).
# Created: 2026-10-18

from __future__ import annotations

import base64
import hashlib
import secrets

PLAIN = "plain"
S256 = "S256"
SUPPORTED_METHODS = (PLAIN, S256)


def compute_challenge(verifier: str, method: str = S256) -> str:
    """Derive the code_challenge a client would send for *verifier*."""
    if method == PLAIN:
        return verifier
    if method != S256:
        raise ValueError(f"unsupported code_challenge_method: {method}")
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def verify(verifier: str | None, challenge: str, method: str | None) -> bool:
    """Return True if *verifier* matches the stored *challenge*.

    A stored challenge without a method is treated as ``plain``. The verifier
    is compared as sent; only an empty one is refused.
    """
    if not verifier:
        return False
    method = method or PLAIN
    if method not in SUPPORTED_METHODS:
        return False
    expected = compute_challenge(verifier, method)
    return secrets.compare_digest(expected.encode("utf-8"), challenge.encode("utf-8"))


def make_pair(method: str = S256) -> tuple[str, str]:
    """Generate a (verifier, challenge) pair. Used by clients and tests."""
    verifier = secrets.token_urlsafe(48)
    return verifier, compute_challenge(verifier, method)
