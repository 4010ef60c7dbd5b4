"""API server for ``authgate serve``.

Mounts the versioned ``/api/v1/`` routers with CORS. The OpenID discovery
document is also served at the issuer root, where relying parties look for it.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def create_api_app(settings=None):
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from authgate import __version__
    from authgate.api.v1 import mount_v1_routers
    from authgate.api.v1.oauth2 import openid_configuration

    if settings is None:
        from authgate.config import get_settings

        settings = get_settings()

    app = FastAPI(
        title="authgate API",
        description="OAuth 2.0 authorization server: clients, codes, tokens, revocation.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    # --- CORS -----------------------------------------------------------
    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allowed_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # --- Mount all /api/v1/ routers -------------------------------------
    mount_v1_routers(app)
    app.add_api_route(
        "/.well-known/openid-configuration",
        openid_configuration,
        methods=["GET"],
        include_in_schema=False,
    )

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8000,
    dev: bool = False,
) -> None:
    """Start the API server."""
    import uvicorn

    print("\n" + "=" * 50)
    print("AUTHGATE API SERVER")
    print("=" * 50)
    print(f"\nAPI docs: http://{host}:{port}/api/v1/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "authgate.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
