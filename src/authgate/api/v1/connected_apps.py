# Connected apps router: the user's live grants, and disconnect.
# Created: 2026-10-18

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from authgate.api.deps import require_user
from authgate.api.v1.schemas.connected_apps import ConnectedAppInfo, DisconnectResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Connected Apps"])


@router.get("/connected-apps", response_model=list[ConnectedAppInfo])
async def list_connected_apps(user_id: str = Depends(require_user)):
    """Applications currently holding a live token for the caller."""
    from authgate.api.oauth2.server import get_oauth_server

    apps = get_oauth_server().grants.list_connected_apps(user_id)
    return [ConnectedAppInfo.model_validate(a) for a in apps]


@router.delete("/connected-apps/{client_id}", response_model=DisconnectResponse)
async def disconnect_app(client_id: str, user_id: str = Depends(require_user)):
    """Revoke everything the caller granted to *client_id*. Idempotent."""
    from authgate.api.oauth2.server import get_oauth_server

    count = get_oauth_server().grants.disconnect(user_id, client_id)
    return DisconnectResponse(client_id=client_id, tokens_revoked=count)
