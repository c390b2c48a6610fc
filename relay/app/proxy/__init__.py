"""
Proxy Package
=============

This package implements the relay between browsers and the upstream API:
requests under the configured prefix are forwarded, and upstream responses
are rebuilt so their cookies and CORS headers work across sites.

Main Components:
----------------
- cookies.py:   Set-Cookie parsing and Domain/SameSite/Secure rewriting
- headers.py:   hop-by-hop filtering, CORS headers, response assembly
- rebuilder.py: rebuild final upstream responses
- forwarder.py: forward requests upstream, pass redirects through
- routes.py:    catch-all FastAPI route (prefix match or fallback text)

Usage:
------
    from relay.app.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .forwarder import ProxyForwarder, create_upstream_client
from .routes import proxy_router

__all__ = ["ProxyForwarder", "create_upstream_client", "proxy_router"]
