"""
Proxy Routes - Request Routing
==============================

Catch-all route of the relay. Every path under the configured prefix is
forwarded to the upstream; every other path gets a fixed informational
text response.

OPTIONS is routed like any other method: preflight requests are forwarded
upstream and come back with the relay's CORS headers attached.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, Response

from ..models import UpstreamTarget
from .forwarder import ProxyForwarder, request_path

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Create router
proxy_router = APIRouter()


def fallback_message(prefix: str) -> str:
    return f"This is a proxy worker. API requests should be sent to {prefix}..."


# ============================================================================
# Dependencies
# ============================================================================

def get_forwarder(request: Request) -> ProxyForwarder:
    """
    Get the upstream forwarder from app state.

    Args:
        request: FastAPI request object

    Returns:
        ProxyForwarder created during application startup

    Raises:
        HTTPException: 503 if the application lifespan has not run
    """
    app_state = getattr(request.app.state, "app_state", None)
    forwarder = getattr(app_state, "forwarder", None)
    if forwarder is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not available",
        )
    return forwarder


def get_target(request: Request) -> UpstreamTarget:
    """Dependency to get the configured upstream target from app state."""
    return request.app.state.app_state.target


# ============================================================================
# Routing
# ============================================================================

async def route(request: Request, target: UpstreamTarget) -> Response:
    """
    Forward prefix paths upstream, answer everything else locally.

    Args:
        request: Inbound request
        target: Configured upstream target (prefix rule)

    Returns:
        Upstream-derived response, or the 200 text/plain fallback
    """
    if target.matches(request_path(request)):
        forwarder = get_forwarder(request)
        return await forwarder.forward(request)

    logger.debug("Path outside proxy prefix", extra={"path": request.url.path})
    return PlainTextResponse(fallback_message(target.prefix))


@proxy_router.api_route(
    "/{path:path}",
    methods=PROXY_METHODS,
    include_in_schema=False,
)
async def relay(
    request: Request,
    target: UpstreamTarget = Depends(get_target),
) -> Response:
    return await route(request, target)
