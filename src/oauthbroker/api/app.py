"""FastAPI application for the broker.

``create_app()`` mounts the broker router at the root (``/``, ``/callback``,
``/token``, ``/revoke``) and builds the BrokerServer up front so a bad
database URL fails at startup rather than on the first request.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def create_app():
    """Build the broker FastAPI application."""
    from fastapi import FastAPI

    from oauthbroker import __version__
    from oauthbroker.api.routes import router
    from oauthbroker.broker.server import get_broker_server

    app = FastAPI(
        title="OAuth2 Broker",
        description="Issues opaque bearer tokens for upstream-verified email identities.",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.include_router(router)

    get_broker_server()
    return app


def run_server(host: str = "127.0.0.1", port: int = 8080, dev: bool = False) -> None:
    """Start the broker under uvicorn."""
    import uvicorn

    logger.info("Listening on http://%s:%d", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "oauthbroker.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_app()
        uvicorn.run(app, host=host, port=port, log_config=None)
