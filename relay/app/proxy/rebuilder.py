"""
Response rebuilding for final (non-redirect) upstream responses.

The outbound header list is built from scratch:

1. Non-cookie upstream headers, last value wins per key
2. Each Set-Cookie rewritten and appended as its own header, in order
3. CORS headers for the inbound request's origin, overwriting upstream values

The body is relayed byte for byte. Content-Length is recomputed from it,
except for HEAD, where the upstream value is copied.
"""

import logging
from typing import Dict, List, Tuple

import httpx
from fastapi.responses import Response

from .cookies import SAMESITE_NONE, rewrite_set_cookie
from .headers import build_cors_headers, build_response, is_relayed_response_header

logger = logging.getLogger(__name__)


def rebuild_response(
    upstream: httpx.Response,
    body: bytes,
    request_origin: str,
    request_url: str,
    samesite_policy: str = SAMESITE_NONE,
    request_method: str = "GET",
) -> Response:
    """
    Build the client-facing response for a final upstream response.

    Args:
        upstream: Upstream response (only status and headers are read)
        body: Raw upstream body, already buffered
        request_origin: scheme://host[:port] of the inbound request
        request_url: Full inbound request URL, used for the cookie Domain
        samesite_policy: SameSite rewrite mode passed to the cookie rewriter
        request_method: Inbound method; a HEAD reply keeps the upstream Content-Length

    Returns:
        Starlette Response ready to be sent
    """
    # Keyed by lowercase name so last-value-wins ignores casing
    single_headers: Dict[str, Tuple[str, str]] = {}
    cookies: List[str] = []
    keep_content_length = request_method.upper() == "HEAD"

    for name, value in upstream.headers.multi_items():
        lower_name = name.lower()
        if lower_name == "set-cookie":
            rewritten = rewrite_set_cookie(value, request_url, samesite_policy)
            if rewritten is not None:
                cookies.append(rewritten)
        elif is_relayed_response_header(name, keep_content_length):
            single_headers[lower_name] = (name, value)

    for name, value in build_cors_headers(request_origin).items():
        single_headers[name.lower()] = (name, value)

    header_pairs = list(single_headers.values())
    header_pairs.extend(("Set-Cookie", cookie) for cookie in cookies)

    logger.debug(
        "Rebuilt upstream response",
        extra={
            "status_code": upstream.status_code,
            "cookie_count": len(cookies),
            "body_length": len(body),
        },
    )

    return build_response(upstream.status_code, header_pairs, body)
