"""
Unit Tests for Response Rebuilding
==================================

Tests for relay/app/proxy/rebuilder.py and relay/app/proxy/headers.py

Run tests:
----------
    pytest relay/app/tests/test_rebuilder.py -v
"""

import httpx
import pytest

from relay.app.proxy.headers import build_cors_headers, build_upstream_headers
from relay.app.proxy.rebuilder import rebuild_response

REQUEST_ORIGIN = "http://example.com"
REQUEST_URL = "http://example.com/api/login"


def header_list(response, name):
    """All values of one header on a Starlette response, in order"""
    return response.headers.getlist(name)


@pytest.fixture
def upstream_response():
    """Upstream response with mixed headers and two cookies"""
    return httpx.Response(
        201,
        headers=[
            ("Content-Type", "application/json"),
            ("X-Request-Id", "req-1"),
            ("Set-Cookie", "auth_token=abc123; Path=/; Domain=laclipasa-backend.fly.dev"),
            ("Set-Cookie", "session=xyz789; Path=/; Domain=laclipasa-backend.fly.dev"),
            ("Access-Control-Allow-Origin", "*"),
        ],
        content=b'{"ok": true}',
    )


# ============================================================================
# Rebuild Tests
# ============================================================================

def test_rebuild_keeps_status_and_body(upstream_response):
    """Test that the status code and body bytes are relayed unchanged"""
    response = rebuild_response(upstream_response, b'{"ok": true}', REQUEST_ORIGIN, REQUEST_URL)

    assert response.status_code == 201
    assert response.body == b'{"ok": true}'
    assert response.headers["content-length"] == str(len(b'{"ok": true}'))


def test_rebuild_copies_non_cookie_headers(upstream_response):
    """Test that ordinary headers are copied"""
    response = rebuild_response(upstream_response, b"", REQUEST_ORIGIN, REQUEST_URL)

    assert response.headers["content-type"] == "application/json"
    assert response.headers["x-request-id"] == "req-1"


def test_rebuild_preserves_cookie_multiplicity_and_order(upstream_response):
    """Test that two upstream cookies become two rewritten cookies"""
    response = rebuild_response(upstream_response, b"", REQUEST_ORIGIN, REQUEST_URL)

    cookies = header_list(response, "set-cookie")
    assert cookies == [
        "auth_token=abc123; Path=/; Domain=example.com; SameSite=None; Secure",
        "session=xyz789; Path=/; Domain=example.com; SameSite=None; Secure",
    ]


def test_rebuild_overwrites_cors_headers(upstream_response):
    """Test that CORS headers reflect the inbound origin, replacing upstream values"""
    response = rebuild_response(upstream_response, b"", REQUEST_ORIGIN, REQUEST_URL)

    assert header_list(response, "access-control-allow-origin") == ["http://example.com"]
    assert response.headers["access-control-allow-credentials"] == "true"
    assert response.headers["access-control-allow-methods"] == "GET, POST, PUT, DELETE, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"


def test_rebuild_last_value_wins_for_repeated_headers():
    """Test that a repeated non-cookie header collapses to its last value"""
    upstream = httpx.Response(200, headers=[("Vary", "Accept"), ("Vary", "Origin")])

    response = rebuild_response(upstream, b"", REQUEST_ORIGIN, REQUEST_URL)

    assert header_list(response, "vary") == ["Origin"]


def test_rebuild_drops_empty_cookie_and_continues():
    """Test that an empty Set-Cookie is dropped without affecting others"""
    upstream = httpx.Response(
        200,
        headers=[("Set-Cookie", ""), ("Set-Cookie", "a=b"), ("X-Other", "1")],
    )

    response = rebuild_response(upstream, b"", REQUEST_ORIGIN, REQUEST_URL)

    assert header_list(response, "set-cookie") == ["a=b; Domain=example.com; SameSite=None; Secure"]
    assert response.headers["x-other"] == "1"


def test_rebuild_without_cookies_adds_no_cookie_header():
    """Test that zero upstream cookies produce zero outbound cookies"""
    upstream = httpx.Response(200, headers={"Content-Type": "text/plain"})

    response = rebuild_response(upstream, b"hi", REQUEST_ORIGIN, REQUEST_URL)

    assert header_list(response, "set-cookie") == []


def test_rebuild_strips_hop_by_hop_headers():
    """Test that framing and connection headers are not relayed"""
    upstream = httpx.Response(
        200,
        headers=[
            ("Connection", "keep-alive"),
            ("Keep-Alive", "timeout=5"),
            ("Transfer-Encoding", "chunked"),
            ("Content-Length", "999"),
        ],
    )

    response = rebuild_response(upstream, b"abc", REQUEST_ORIGIN, REQUEST_URL)

    assert "connection" not in response.headers
    assert "keep-alive" not in response.headers
    assert "transfer-encoding" not in response.headers
    assert header_list(response, "content-length") == ["3"]


def test_rebuild_head_keeps_upstream_content_length():
    """Test that a HEAD reply reports the upstream length, not the empty body's"""
    upstream = httpx.Response(200, headers=[("Content-Type", "text/plain"), ("Content-Length", "1234")])

    response = rebuild_response(upstream, b"", REQUEST_ORIGIN, REQUEST_URL, request_method="HEAD")

    assert header_list(response, "content-length") == ["1234"]
    assert response.body == b""


# ============================================================================
# Header Helper Tests
# ============================================================================

def test_cors_headers_echo_origin():
    """Test CORS header values"""
    headers = build_cors_headers("https://app.example.org:8443")

    assert headers["Access-Control-Allow-Origin"] == "https://app.example.org:8443"
    assert headers["Access-Control-Allow-Credentials"] == "true"


def test_upstream_headers_drop_host_and_hop_by_hop():
    """Test that Host and hop-by-hop headers are not forwarded"""
    headers = build_upstream_headers(
        [
            ("host", "example.com"),
            ("connection", "keep-alive"),
            ("authorization", "Bearer token123"),
            ("cookie", "a=1"),
            ("cookie", "b=2"),
            ("content-length", "0"),
        ],
        has_body=False,
    )

    assert headers == [
        ("authorization", "Bearer token123"),
        ("cookie", "a=1"),
        ("cookie", "b=2"),
    ]


def test_upstream_headers_keep_content_length_with_body():
    """Test that Content-Length is forwarded together with a body"""
    headers = build_upstream_headers(
        [("content-type", "application/json"), ("content-length", "13")],
        has_body=True,
    )

    assert ("content-length", "13") in headers
