"""
FastAPI application entrypoint for the credential broker.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mail_broker.api.routes import router
from mail_broker.clients import StoreUnavailableError
from mail_broker.core.config import AppSettings, get_settings
from mail_broker.core.logging import configure_logging, uvicorn_log_config
from mail_broker.dependencies import BrokerComponents, build_components
from mail_broker.services import BrokerOAuthError

logger = logging.getLogger(__name__)


async def _oauth_error_handler(request: Request, exc: BrokerOAuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


async def _store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("Token store unavailable while serving %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={
            "error": "temporarily_unavailable",
            "error_description": "Token store unavailable",
        },
    )


def create_app(
    settings: Optional[AppSettings] = None,
    components: Optional[BrokerComponents] = None,
) -> FastAPI:
    """Factory for the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    components = components or build_components(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        components.token_store.close()

    app = FastAPI(
        title="Gmail MCP Credential Broker",
        version="0.1.0",
        description="Session tokens and Google mailbox delegation for MCP clients.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.components = components

    if settings.server.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.server.allowed_origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "Mcp-Session-Id"],
        )

    app.add_exception_handler(BrokerOAuthError, _oauth_error_handler)
    app.add_exception_handler(StoreUnavailableError, _store_unavailable_handler)
    app.include_router(router)
    return app


def run() -> None:
    """Serve the broker with uvicorn on the configured port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",
        port=settings.server.port,
        log_config=uvicorn_log_config(),
    )


__all__ = ["create_app", "run"]
