"""
Set-Cookie Rewriting
====================

Parses upstream ``Set-Cookie`` header values and rewrites them so a browser
talking to the relay (a different site than the upstream) stores them for
the relay's host and sends them back on credentialed cross-site requests.

Rewrite rules:
--------------
- ``Domain``   : always replaced with the hostname of the inbound request
- ``SameSite`` : forced to ``None`` (or kept, under the ``preserve`` policy)
- ``Secure``   : always present (``SameSite=None`` requires it)
- anything else (``Path``, ``HttpOnly``, ``Expires``, ``Max-Age``, ...) is
  passed through untouched, in its original position

Each rewritten cookie carries exactly one Domain, one SameSite and one Secure
attribute, however many the upstream sent.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SAMESITE_NONE = "none"
SAMESITE_PRESERVE = "preserve"


# ============================================================================
# Cookie Models
# ============================================================================

class CookieAttribute(BaseModel):
    """
    One ``;``-separated attribute of a Set-Cookie value.

    ``key`` and ``value`` keep the upstream's spelling so unrecognized
    attributes serialize back exactly as received. ``value`` is None for
    flag attributes such as ``HttpOnly``.
    """

    key: str
    value: Optional[str] = None

    @property
    def name(self) -> str:
        """Lowercased attribute name used for recognition."""
        return self.key.strip().lower()

    def serialize(self) -> str:
        if self.value is None:
            return self.key
        return f"{self.key}={self.value}"


class Cookie(BaseModel):
    """
    A parsed Set-Cookie value.

    Attributes:
        main_part: The leading ``name=value`` pair, case-sensitive and never modified
        attributes: Remaining attributes in upstream order
    """

    main_part: str
    attributes: List[CookieAttribute] = Field(default_factory=list)

    def serialize(self) -> str:
        return "; ".join([self.main_part] + [attr.serialize() for attr in self.attributes])


# ============================================================================
# Parsing
# ============================================================================

def parse_set_cookie(header_value: Optional[str]) -> Optional[Cookie]:
    """
    Parse one Set-Cookie header value.

    Args:
        header_value: Raw header value as sent by the upstream

    Returns:
        Parsed Cookie, or None when the value is empty
    """
    if not header_value or not header_value.strip():
        return None

    segments = [segment.strip() for segment in header_value.split(";")]
    main_part = segments[0]
    if not main_part:
        return None

    attributes = []
    for segment in segments[1:]:
        if not segment:
            # Trailing or doubled separators ("a=b;", "a=b;; Path=/")
            continue
        if "=" in segment:
            key, value = segment.split("=", 1)
            attributes.append(CookieAttribute(key=key, value=value))
        else:
            attributes.append(CookieAttribute(key=segment))

    return Cookie(main_part=main_part, attributes=attributes)


# ============================================================================
# Rewriting
# ============================================================================

def rewrite_cookie(
    cookie: Cookie,
    hostname: str,
    samesite_policy: str = SAMESITE_NONE,
) -> Cookie:
    """
    Rewrite Domain, SameSite and Secure on a parsed cookie, in place.

    Recognized attributes are rewritten where they stand; repeats of an
    already-seen one are removed. Missing ones are appended in the order
    Domain, SameSite, Secure.

    Args:
        cookie: Cookie to rewrite
        hostname: Hostname of the inbound request (becomes the Domain)
        samesite_policy: 'none' to force SameSite=None, 'preserve' to keep
            the upstream value when present

    Returns:
        The same Cookie instance, for chaining
    """
    has_domain = False
    has_samesite = False
    has_secure = False
    rewritten: List[CookieAttribute] = []

    for attr in cookie.attributes:
        name = attr.name

        if name == "domain" and attr.value is not None:
            if has_domain:
                continue
            rewritten.append(CookieAttribute(key="Domain", value=hostname))
            has_domain = True

        elif name == "samesite" and attr.value is not None:
            if has_samesite:
                continue
            if samesite_policy == SAMESITE_PRESERVE:
                rewritten.append(attr)
            else:
                rewritten.append(CookieAttribute(key="SameSite", value="None"))
            has_samesite = True

        elif name == "secure" and attr.value is None:
            if has_secure:
                continue
            rewritten.append(CookieAttribute(key="Secure"))
            has_secure = True

        else:
            rewritten.append(attr)

    if not has_domain:
        rewritten.append(CookieAttribute(key="Domain", value=hostname))
    if not has_samesite:
        rewritten.append(CookieAttribute(key="SameSite", value="None"))
    if not has_secure:
        rewritten.append(CookieAttribute(key="Secure"))

    cookie.attributes = rewritten
    return cookie


def rewrite_set_cookie(
    header_value: Optional[str],
    request_url: str,
    samesite_policy: str = SAMESITE_NONE,
) -> Optional[str]:
    """
    Parse, rewrite and serialize one upstream Set-Cookie value.

    Args:
        header_value: Raw Set-Cookie value from the upstream
        request_url: Full URL of the inbound request (its host becomes the Domain)
        samesite_policy: SameSite rewrite mode, see rewrite_cookie

    Returns:
        Rewritten header value, or None if the cookie should be dropped

    Example:
        >>> rewrite_set_cookie(
        ...     "auth=abc; Path=/; Domain=backend.example; SameSite=Lax",
        ...     "http://example.com/api/users",
        ... )
        'auth=abc; Path=/; Domain=example.com; SameSite=None; Secure'
    """
    cookie = parse_set_cookie(header_value)
    if cookie is None:
        logger.debug("Dropping empty Set-Cookie header")
        return None

    # raw_host keeps internationalized names in their ASCII (punycode) form
    hostname = httpx.URL(request_url).raw_host.decode("ascii")
    return rewrite_cookie(cookie, hostname, samesite_policy).serialize()
