# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-18

from __future__ import annotations

from fastapi import HTTPException, Request

from authgate.security.session_tokens import verify_session_token

SESSION_COOKIE = "authgate_session"


def _session_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "")
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(SESSION_COOKIE)


async def optional_user(request: Request) -> str | None:
    """Resolve the signed-in user from the session token, if there is one.

    Usage::

        @router.get("/clients/{client_id}")
        async def get_client(client_id: str, user_id: str | None = Depends(optional_user)): ...
    """
    token = _session_token(request)
    if not token:
        return None
    return verify_session_token(token)


async def require_user(request: Request) -> str:
    """Like optional_user, but answers 401 when nobody is signed in."""
    user_id = await optional_user(request)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
