# OAuth2 router: authorize, token, revoke, userinfo, discovery.
# Created: 2026-10-18
#
# Errors raised before the redirect URI is trusted are answered as JSON; later
# ones are delivered to the client by 302. The token endpoint always answers JSON.

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from authgate.api.deps import require_user
from authgate.api.oauth2.errors import (
    InvalidClientError,
    InvalidRequestError,
    InvalidTokenError,
    OAuth2Error,
    ServerError,
    StorageError,
)
from authgate.api.v1.schemas.clients import ClientPublic
from authgate.api.v1.schemas.common import OAuthErrorResponse
from authgate.api.v1.schemas.oauth2 import ConsentContext, ConsentDecision, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_ERRORS = {
    400: {"model": OAuthErrorResponse},
    401: {"model": OAuthErrorResponse},
    500: {"model": OAuthErrorResponse},
}


def _error_response(exc: OAuth2Error, headers: dict[str, str] | None = None):
    if exc.redirectable:
        return RedirectResponse(exc.redirect_location(), status_code=302)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def _read_params(request: Request) -> dict[str, Any]:
    """Accept both form-encoded and JSON bodies."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequestError("Malformed JSON body.") from e
        if not isinstance(body, dict):
            raise InvalidRequestError("Request body must be an object.")
        return {k: v for k, v in body.items() if v is not None}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


@router.get("/oauth/authorize", response_model=ConsentContext)
async def authorize(
    client_id: str | None = Query(None),
    redirect_uri: str | None = Query(None),
    response_type: str | None = Query(None),
    scope: str | None = Query(None),
    state: str | None = Query(None),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
    user_id: str = Depends(require_user),
):
    """Validate an authorization request and describe it for the consent UI."""
    from authgate.api.oauth2.server import get_oauth_server

    server = get_oauth_server()
    try:
        req = server.validate_authorization_request(
            client_id,
            redirect_uri,
            response_type=response_type,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
    except OAuth2Error as e:
        return _error_response(e)
    except StorageError:
        logger.exception("Storage failure while validating authorization request")
        return _error_response(ServerError())

    return ConsentContext(
        client=ClientPublic.model_validate(req.client),
        scopes=req.scopes,
        requested_scopes=req.requested_scopes,
        redirect_uri=req.redirect_uri,
        response_type=req.response_type,
        state=req.state,
        code_challenge=req.code_challenge,
        code_challenge_method=req.code_challenge_method,
    )


@router.post("/oauth/authorize")
async def authorize_decision(request: Request, user_id: str = Depends(require_user)):
    """Record the user's consent decision and redirect back to the client."""
    from authgate.api.oauth2.server import get_oauth_server

    server = get_oauth_server()
    try:
        params = await _read_params(request)
        decision = ConsentDecision.model_validate(params)
    except OAuth2Error as e:
        return _error_response(e)
    except ValueError:
        return _error_response(InvalidRequestError("decision must be 'allow' or 'deny'."))

    req = None
    try:
        req = server.validate_authorization_request(
            decision.client_id,
            decision.redirect_uri,
            response_type=decision.response_type,
            scope=decision.scope,
            state=decision.state,
            code_challenge=decision.code_challenge,
            code_challenge_method=decision.code_challenge_method,
        )
        if decision.decision != "allow":
            return RedirectResponse(server.deny(req), status_code=302)
        _, location = server.approve(req, user_id, decision.approved_scope)
    except OAuth2Error as e:
        return _error_response(e)
    except StorageError:
        logger.exception("Storage failure while issuing authorization code")
        error = req.error(ServerError) if req is not None else ServerError()
        return _error_response(error)

    return RedirectResponse(location, status_code=302)


@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    responses=_ERRORS,
)
async def token(request: Request):
    """Exchange an authorization code or refresh token for tokens."""
    from authgate.api.oauth2.server import get_oauth_server

    server = get_oauth_server()
    authorization = request.headers.get("authorization")
    try:
        params = await _read_params(request)
        result = server.create_token_response(params, authorization)
    except InvalidClientError as e:
        headers = dict(_NO_STORE)
        if authorization and authorization.lower().startswith("basic"):
            headers["WWW-Authenticate"] = 'Basic realm="authgate"'
        return JSONResponse(status_code=401, content=e.to_dict(), headers=headers)
    except OAuth2Error as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict(), headers=_NO_STORE)
    except StorageError:
        logger.exception("Storage failure at the token endpoint")
        return JSONResponse(status_code=500, content=ServerError().to_dict(), headers=_NO_STORE)

    return JSONResponse(content=result, headers=_NO_STORE)


@router.post("/oauth/revoke", responses=_ERRORS)
async def revoke(request: Request):
    """Revoke an access or refresh token (RFC 7009). 200 whether or not it existed."""
    from authgate.api.oauth2.server import get_oauth_server

    server = get_oauth_server()
    authorization = request.headers.get("authorization")
    try:
        params = await _read_params(request)
        server.revoke(params, authorization)
    except InvalidClientError as e:
        headers = {}
        if authorization and authorization.lower().startswith("basic"):
            headers["WWW-Authenticate"] = 'Basic realm="authgate"'
        return JSONResponse(status_code=401, content=e.to_dict(), headers=headers)
    except OAuth2Error as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except StorageError:
        logger.exception("Storage failure at the revocation endpoint")
        return JSONResponse(status_code=500, content=ServerError().to_dict())
    return JSONResponse(content={})


@router.api_route("/oauth/userinfo", methods=["GET", "POST"], responses=_ERRORS)
async def userinfo(request: Request):
    """OpenID Connect UserInfo for the bearer access token."""
    from authgate.api.oauth2.server import get_oauth_server

    server = get_oauth_server()
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    try:
        if scheme.lower() != "bearer" or not token.strip():
            raise InvalidTokenError("Missing bearer token.")
        claims = server.userinfo(token.strip())
    except InvalidTokenError as e:
        return JSONResponse(
            status_code=401,
            content=e.to_dict(),
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )
    except StorageError:
        logger.exception("Storage failure at the userinfo endpoint")
        return JSONResponse(status_code=500, content=ServerError().to_dict())
    return JSONResponse(content=claims, headers=_NO_STORE)


@router.get("/.well-known/openid-configuration")
async def openid_configuration():
    """OpenID provider metadata."""
    from authgate.api.oauth2.discovery import build_metadata
    from authgate.api.oauth2.server import get_oauth_server

    metadata = build_metadata(get_oauth_server().settings)
    return JSONResponse(content=metadata, headers={"Cache-Control": "public, max-age=86400"})
