# Clients router: register, list, get, update, rotate secret, deactivate, delete.
# Created: 2026-10-18

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from authgate.api.deps import optional_user, require_user
from authgate.api.oauth2.errors import ClientNotFound, ClientRegistrationError, Forbidden
from authgate.api.oauth2.registry import ClientFullView, ClientPatch
from authgate.api.v1.schemas.clients import (
    ClientDetail,
    ClientInfo,
    ClientPublic,
    CreateClientRequest,
    DeleteClientResponse,
    RotateSecretResponse,
    UpdateClientRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Clients"])


def _registry():
    from authgate.api.oauth2.server import get_oauth_server

    return get_oauth_server().clients


def _http_error(exc: Exception, client_id: str | None = None) -> HTTPException:
    if isinstance(exc, ClientRegistrationError):
        return HTTPException(status_code=400, detail=exc.to_dict())
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=403, detail="Not the owner of this client")
    return HTTPException(status_code=404, detail=f"Client not found: {client_id}")


@router.post("/clients", response_model=ClientDetail, status_code=201)
async def create_client(body: CreateClientRequest, user_id: str = Depends(require_user)):
    """Register a new OAuth client. The secret is returned in full."""
    registry = _registry()
    try:
        client = registry.register(
            owner_id=user_id,
            name=body.name,
            redirect_uris=body.redirect_uris,
            scopes=body.scopes,
            logo_url=body.logo_url,
            description=body.description,
            token_endpoint_auth_method=body.token_endpoint_auth_method,
        )
    except ClientRegistrationError as e:
        raise _http_error(e) from e
    return ClientDetail.model_validate(ClientFullView.from_client(client))


@router.get("/clients", response_model=list[ClientInfo])
async def list_clients(user_id: str = Depends(require_user)):
    """List the caller's clients. Secrets are never included."""
    return [ClientInfo.model_validate(c) for c in _registry().list_clients(user_id)]


@router.get("/clients/{client_id}")
async def get_client(client_id: str, user_id: str | None = Depends(optional_user)):
    """Full view for the owner, public metadata for anyone else."""
    try:
        view = _registry().get(client_id, requester_id=user_id)
    except ClientNotFound as e:
        raise _http_error(e, client_id) from e
    if isinstance(view, ClientFullView):
        return ClientDetail.model_validate(view)
    return ClientPublic.model_validate(view)


@router.patch("/clients/{client_id}", response_model=ClientDetail)
async def update_client(
    client_id: str, body: UpdateClientRequest, user_id: str = Depends(require_user)
):
    """Change only the supplied fields."""
    registry = _registry()
    patch = ClientPatch(**body.model_dump(exclude_unset=True))
    try:
        client = registry.update(client_id, user_id, patch)
    except (ClientNotFound, Forbidden, ClientRegistrationError) as e:
        raise _http_error(e, client_id) from e
    return ClientDetail.model_validate(ClientFullView.from_client(client))


@router.post("/clients/{client_id}/rotate-secret", response_model=RotateSecretResponse)
async def rotate_secret(client_id: str, user_id: str = Depends(require_user)):
    try:
        secret = _registry().rotate_secret(client_id, user_id)
    except (ClientNotFound, Forbidden) as e:
        raise _http_error(e, client_id) from e
    return RotateSecretResponse(client_id=client_id, client_secret=secret)


@router.post("/clients/{client_id}/deactivate", response_model=ClientDetail)
async def deactivate_client(client_id: str, user_id: str = Depends(require_user)):
    try:
        client = _registry().deactivate(client_id, user_id)
    except (ClientNotFound, Forbidden) as e:
        raise _http_error(e, client_id) from e
    return ClientDetail.model_validate(ClientFullView.from_client(client))


@router.delete("/clients/{client_id}", response_model=DeleteClientResponse)
async def delete_client(client_id: str, user_id: str = Depends(require_user)):
    """Revoke every token the client holds, then remove it."""
    try:
        revoked = _registry().delete(client_id, user_id)
    except (ClientNotFound, Forbidden) as e:
        raise _http_error(e, client_id) from e
    return DeleteClientResponse(tokens_revoked=revoked)
