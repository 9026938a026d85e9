"""Application definition for nsscache-http."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from safir.logging import configure_uvicorn_logging
from safir.slack.webhook import SlackRouteErrorHandler

from . import __version__
from .dependencies.cache import snapshot_cache_dependency
from .dependencies.config import config_dependency
from .handlers import internal, nss

__all__ = ["create_app", "create_openapi"]


def create_app(*, load_config: bool = True) -> FastAPI:
    """Create the FastAPI application.

    This is in a function rather than using a global variable (as is more
    typical for FastAPI) so that the test suite can create a new application
    with a different configuration for each test.

    Parameters
    ----------
    load_config
        If set to `False`, do not try to load the configuration. This is used
        primarily for OpenAPI schema generation, where constructing the app
        is required but the configuration won't matter.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        config = config_dependency.config()
        await snapshot_cache_dependency.initialize(config)

        yield

        await snapshot_cache_dependency.aclose()

    app = FastAPI(
        title="nsscache-http",
        description=(
            "nsscache-http serves the passwd, group, and shadow maps from an"
            " LDAP server over HTTP, from a cache refreshed periodically in"
            " the background."
        ),
        version=__version__,
        tags_metadata=[
            {
                "name": "nss",
                "description": "NSS maps in flat file and JSON formats.",
            },
            {
                "name": "internal",
                "description": "Internal routes used by health checks.",
            },
        ],
        lifespan=lifespan,
    )

    # Add all of the routes.
    app.include_router(internal.router)
    app.include_router(nss.router)

    # Load configuration if it is available to us and configure Uvicorn
    # logging.
    config = None
    if load_config:
        config = config_dependency.config()
        configure_uvicorn_logging()

    # Configure Slack alerts.
    if config and config.slack_alerts and config.slack_webhook:
        logger = structlog.get_logger("nsscache-http")
        SlackRouteErrorHandler.initialize(
            config.slack_webhook, "nsscache-http", logger
        )
        logger.debug("Initialized Slack webhook")

    return app


def create_openapi() -> str:
    """Generate the OpenAPI schema.

    Returns
    -------
    str
        OpenAPI schema as serialized JSON.
    """
    app = create_app(load_config=False)
    schema = get_openapi(
        title=app.title,
        description=app.description,
        version=app.version,
        routes=app.routes,
    )
    return json.dumps(schema)
