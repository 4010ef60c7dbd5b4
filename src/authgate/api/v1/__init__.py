# API v1 router aggregation.
# Created: 2026-10-18
#
# mount_v1_routers(app) registers all domain routers at /api/v1/.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Domain routers: imported lazily inside mount_v1_routers() to avoid circular imports.
_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("authgate.api.v1.health", "router", "Health"),
    ("authgate.api.v1.oauth2", "router", "OAuth2"),
    ("authgate.api.v1.clients", "router", "Clients"),
    ("authgate.api.v1.connected_apps", "router", "Connected Apps"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 domain routers on *app* at ``/api/v1``."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router, prefix=API_PREFIX)
        logger.debug("Mounted v1 router: %s (%s)", module_path, tag)
