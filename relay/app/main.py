"""
FastAPI Relay Application Factory
=================================

This is the main entry point for the relay service that sits between a
browser application and a backend API served from a different site.

Architecture:
    Browser → Relay (this service) → Upstream API

Routes:
    - <PROXY_PREFIX>*  : Forwarded to the upstream, cookies and CORS rewritten
    - anything else    : Fixed informational text

Environment Variables:
    - UPSTREAM_ORIGIN: Upstream origin (e.g., "https://backend.example.com")
    - PROXY_PREFIX: Proxied path prefix (default: /api/)
    - STRIP_PREFIX: Strip the prefix before forwarding (default: false)
    - COOKIE_SAMESITE_POLICY: "none" or "preserve" (default: none)
    - UPSTREAM_TIMEOUT_SECONDS / UPSTREAM_CONNECT_TIMEOUT_SECONDS
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn relay.app.main:create_app --factory --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn relay.app.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn relay.app.main:create_app --factory --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings, get_settings, validate_configuration
from .models import ErrorResponse, UpstreamTarget
from .proxy import ProxyForwarder, create_upstream_client, proxy_router


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Per-application state container.

    Holds the shared upstream client and the forwarder built on it.
    """
    def __init__(self, settings: Settings):
        self.settings: Settings = settings
        self.target: UpstreamTarget = settings.upstream_target
        self.upstream_client: Optional[httpx.AsyncClient] = None
        self.forwarder: Optional[ProxyForwarder] = None


def build_forwarder(settings: Settings, client: httpx.AsyncClient) -> ProxyForwarder:
    return ProxyForwarder(
        client=client,
        target=settings.upstream_target,
        samesite_policy=settings.COOKIE_SAMESITE_POLICY,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Report configuration warnings
        - Create the pooled upstream client and the forwarder

    Shutdown tasks:
        - Close the upstream client
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("relay.main")

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(warning)
    for error in report["errors"]:
        logger.error(error)

    app_state.upstream_client = create_upstream_client(settings.upstream_timeout)
    app_state.forwarder = build_forwarder(settings, app_state.upstream_client)

    logger.info(
        "Relay service started",
        extra={
            "upstream_origin": settings.upstream_origin_str,
            "proxy_prefix": settings.PROXY_PREFIX,
            "strip_prefix": settings.STRIP_PREFIX,
            "log_level": settings.LOG_LEVEL,
        }
    )

    yield

    logger.info("Shutting down relay service")
    await app_state.upstream_client.aclose()
    app_state.upstream_client = None
    app_state.forwarder = None
    logger.info("Relay service shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - The catch-all relay route
        - Exception handlers

    CORS is handled by the relay itself rather than CORSMiddleware, which
    would answer preflight requests without forwarding them.

    Args:
        settings: Explicit configuration; loaded from the environment if omitted

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    # Every path belongs to the relay, so no docs or schema routes
    app = FastAPI(
        title="Cookie Relay",
        description="Reverse proxy that rewrites cookies and CORS headers for cross-site sessions",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.app_state = AppState(settings)

    app.include_router(proxy_router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("relay.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        error = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=error.model_dump())

    return app


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m relay.app.main
    """
    settings = get_settings()

    uvicorn.run(
        "relay.app.main:create_app",
        factory=True,
        host=settings.RELAY_HOST,
        port=settings.RELAY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
