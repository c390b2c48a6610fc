"""
Upstream Forwarding
===================

Forwards a matched inbound request to the upstream origin and turns the
upstream reply into the client-facing response.

Flow:
-----
1. Build the upstream URL from the target (prefix kept or stripped)
2. Forward method, headers and body unchanged (minus Host and hop-by-hop)
3. Send without following redirects
4. 3xx with Location: pass through untouched, headers only
5. Anything else: buffer the body and rebuild (cookie rewrite + CORS)

Transport failures map to 504 (timeout) or 502 (anything else). Nothing is
retried. If the client disconnects once its body has been forwarded, the
upstream call is cancelled.
"""

import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import AsyncIterator, Optional

import anyio
import httpx
from fastapi import HTTPException, Request, status
from fastapi.responses import Response

from ..models import UpstreamTarget
from .cookies import SAMESITE_NONE
from .headers import build_cors_headers, build_response, build_upstream_headers, is_relayed_response_header
from .rebuilder import rebuild_response

logger = logging.getLogger(__name__)

# Status for a request whose client went away before the reply (nginx convention)
CLIENT_CLOSED_REQUEST = 499


def create_upstream_client(
    timeout: httpx.Timeout,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the pooled client shared by all requests.

    The cookie jar rejects every cookie: cookies belong to the browser
    session that sent them and must never be replayed for another request.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=False,
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
        transport=transport,
    )


def request_origin(request: Request) -> str:
    """scheme://host[:port] of the inbound request."""
    return f"{request.url.scheme}://{request.url.netloc}"


def request_path(request: Request) -> str:
    """
    Path of the inbound request as sent by the client.

    Uses the undecoded ``raw_path`` when the server provides it, so the
    upstream sees the same percent-encoding as the relay did.
    """
    raw_path: Optional[bytes] = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return request.url.path


def request_has_body(request: Request) -> bool:
    headers = request.headers
    if "transfer-encoding" in headers:
        return True
    content_length = headers.get("content-length")
    return content_length is not None and content_length.strip() not in ("", "0")


async def read_raw_body(upstream: httpx.Response) -> bytes:
    """
    Buffer the upstream body without decoding it.

    Raw bytes keep any Content-Encoding intact for the client. Responses
    built in memory arrive already read; their content is returned as is.
    """
    if upstream.is_stream_consumed:
        return upstream.content
    return b"".join([chunk async for chunk in upstream.aiter_raw()])


def is_redirect(upstream: httpx.Response) -> bool:
    return 300 <= upstream.status_code < 400 and "location" in upstream.headers


async def relay_body(request: Request, body_sent: anyio.Event) -> AsyncIterator[bytes]:
    """Stream the inbound body upstream, flagging when it is exhausted."""
    async for chunk in request.stream():
        yield chunk
    body_sent.set()


async def watch_disconnect(
    request: Request,
    body_sent: anyio.Event,
    cancel_scope: anyio.CancelScope,
) -> None:
    """
    Cancel ``cancel_scope`` when the client disconnects.

    Waits for the body to be forwarded first: until then ``receive`` belongs
    to the body stream.
    """
    await body_sent.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            cancel_scope.cancel()
            return


def gateway_error(
    exc: httpx.TransportError,
    method: str,
    upstream_url: str,
    origin: str,
) -> HTTPException:
    """
    Map an upstream transport failure to the client-facing error.

    Args:
        exc: Failure raised while sending or reading the upstream response
        method: Inbound request method (for logging)
        upstream_url: Upstream URL that was called (for logging)
        origin: Inbound request origin, echoed in the CORS headers

    Returns:
        HTTPException: 504 for timeouts, 502 for any other transport error
    """
    log_extra = {"method": method, "upstream_url": upstream_url}

    if isinstance(exc, httpx.TimeoutException):
        logger.error("Upstream request timeout", extra=log_extra)
        return HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Upstream service timeout",
            headers=build_cors_headers(origin),
        )

    logger.error(f"Upstream network error: {exc}", extra=log_extra)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Cannot reach upstream service",
        headers=build_cors_headers(origin),
    )


class ProxyForwarder:
    """
    Forwards requests to one upstream target.

    Holds only read-only configuration and the pooled HTTP client, so a
    single instance serves all concurrent requests.

    Args:
        client: httpx client used to reach the upstream (timeouts configured on it)
        target: Upstream origin and prefix rule
        samesite_policy: SameSite rewrite mode for Set-Cookie headers
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        target: UpstreamTarget,
        samesite_policy: str = SAMESITE_NONE,
    ):
        self.client = client
        self.target = target
        self.samesite_policy = samesite_policy

    def build_upstream_request(self, request: Request, body_sent: anyio.Event) -> httpx.Request:
        url = self.target.url_for(request_path(request), request.url.query)
        has_body = request_has_body(request)

        content = None
        if has_body:
            content = relay_body(request, body_sent)
        else:
            body_sent.set()

        return self.client.build_request(
            request.method,
            url,
            headers=build_upstream_headers(request.headers.items(), has_body),
            content=content,
        )

    async def forward(self, request: Request) -> Response:
        """
        Forward one inbound request and build the outbound response.

        The upstream exchange runs alongside a disconnect watcher; whichever
        finishes first cancels the other.

        Args:
            request: Inbound request whose path matched the proxy prefix

        Returns:
            Redirect pass-through or rebuilt response, or a bare 499 when the
            client disconnected first

        Raises:
            HTTPException: 504 on upstream timeout, 502 when the upstream
                cannot be reached
        """
        body_sent = anyio.Event()
        upstream_request = self.build_upstream_request(request, body_sent)
        response: Optional[Response] = None
        error: Optional[Exception] = None

        async with anyio.create_task_group() as task_group:
            task_group.start_soon(watch_disconnect, request, body_sent, task_group.cancel_scope)
            try:
                response = await self.exchange(request, upstream_request)
            except Exception as exc:
                # Re-raised outside the task group, unwrapped
                error = exc
            finally:
                task_group.cancel_scope.cancel()

        if error is not None:
            raise error
        if response is None:
            logger.info(
                "Client disconnected, upstream call cancelled",
                extra={"method": request.method, "upstream_url": str(upstream_request.url)},
            )
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        return response

    async def exchange(self, request: Request, upstream_request: httpx.Request) -> Response:
        """Send the upstream request and turn its reply into the outbound response."""
        origin = request_origin(request)
        upstream_url = str(upstream_request.url)

        try:
            upstream = await self.client.send(
                upstream_request,
                stream=True,
                follow_redirects=False,
            )
            try:
                logger.info(
                    "Proxied request to upstream",
                    extra={
                        "method": request.method,
                        "upstream_url": upstream_url,
                        "status_code": upstream.status_code,
                        "reason_phrase": upstream.reason_phrase,
                    },
                )

                if is_redirect(upstream):
                    return self.pass_through(upstream, request.method)

                body = await read_raw_body(upstream)
            finally:
                with anyio.CancelScope(shield=True):
                    await upstream.aclose()
        except httpx.TransportError as e:
            raise gateway_error(e, request.method, upstream_url, origin) from e

        return rebuild_response(
            upstream,
            body,
            request_origin=origin,
            request_url=str(request.url),
            samesite_policy=self.samesite_policy,
            request_method=request.method,
        )

    def pass_through(self, upstream: httpx.Response, request_method: str = "GET") -> Response:
        """
        Relay a redirect untouched: same status, every header, no body.

        Cookies are not rewritten and no CORS headers are added; only
        hop-by-hop and framing headers are dropped (Content-Length is kept
        for HEAD).
        """
        logger.info(
            "Passing redirect through",
            extra={"status_code": upstream.status_code, "location": upstream.headers.get("location")},
        )
        keep_content_length = request_method.upper() == "HEAD"
        header_pairs = [
            (name, value)
            for name, value in upstream.headers.multi_items()
            if is_relayed_response_header(name, keep_content_length)
        ]
        return build_response(upstream.status_code, header_pairs)
