# Health router.
# Created: 2026-10-18

from __future__ import annotations

import logging

from fastapi import APIRouter

from authgate import __version__
from authgate.api.oauth2.errors import StorageError
from authgate.api.v1.schemas.health import HealthSummary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthSummary)
async def get_health_status():
    """Liveness plus a storage round trip."""
    from authgate.api.oauth2.server import get_oauth_server

    server = get_oauth_server()
    summary = HealthSummary(version=__version__, storage_backend=server.settings.storage_backend)
    try:
        server.storage.get_client("health-check")
    except StorageError as e:
        logger.error("Health check storage failure: %s", e)
        summary.status = "degraded"
        summary.error = str(e)
        return summary
    summary.status = "ok"
    return summary
