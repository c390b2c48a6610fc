"""
Header processing for the relay.

Single source of truth for which headers cross the relay in each direction
and for the CORS headers attached to proxied responses.

RFC 7230 §6.1: hop-by-hop headers MUST NOT be forwarded by intermediaries.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from fastapi.responses import Response

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"


def build_upstream_headers(
    request_headers: Iterable[Tuple[str, str]],
    has_body: bool,
) -> List[Tuple[str, str]]:
    """
    Build the header list sent to the upstream.

    Every inbound header is forwarded in order, duplicates included
    (Authorization, Cookie and Content-Type among them), except:

      - ``Host``: httpx derives it from the upstream URL
      - hop-by-hop headers
      - ``Content-Length`` when no body is forwarded

    Args:
        request_headers: (name, value) pairs, typically ``request.headers.items()``
        has_body: Whether the inbound body is streamed upstream

    Returns:
        List of (name, value) pairs for the upstream request
    """
    headers: List[Tuple[str, str]] = []
    for name, value in request_headers:
        lower_name = name.lower()
        if lower_name == "host" or lower_name in HOP_BY_HOP_HEADERS:
            continue
        if lower_name == "content-length" and not has_body:
            continue
        headers.append((name, value))
    return headers


def is_relayed_response_header(name: str, keep_content_length: bool = False) -> bool:
    """
    Whether an upstream response header may be copied to the client.

    Content-Length is normally recomputed from the relayed body. A HEAD
    reply has no body, so its upstream Content-Length is kept instead.
    """
    lower_name = name.lower()
    if lower_name == "content-length":
        return keep_content_length
    return lower_name not in HOP_BY_HOP_HEADERS


def build_cors_headers(request_origin: str) -> Dict[str, str]:
    """
    CORS headers for a credentialed cross-origin response.

    Args:
        request_origin: scheme://host[:port] of the inbound request

    Returns:
        Header dict (the origin is echoed, never ``*``, since credentials are allowed)
    """
    return {
        "Access-Control-Allow-Origin": request_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }


def build_response(
    status_code: int,
    header_pairs: Iterable[Tuple[str, str]],
    body: Optional[bytes] = b"",
) -> Response:
    """
    Build an outbound response from scratch.

    Starlette sets Content-Length from the body; every pair in
    ``header_pairs`` is then appended, so repeated keys (Set-Cookie) stay
    distinct entries. An explicit Content-Length pair replaces the computed
    one.
    """
    response = Response(content=body, status_code=status_code)
    for name, value in header_pairs:
        if name.lower() == "content-length":
            response.headers[name] = value
        else:
            response.headers.append(name, value)
    return response
