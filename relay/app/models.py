"""
Data Models Module

This module defines the Pydantic models shared across the relay:

- Routing models (the upstream target a request is forwarded to)
- Error models (standardized error body returned by the global handler)
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Routing Models
# ============================================================================

class UpstreamTarget(BaseModel):
    """
    Upstream origin plus the prefix rule used to build forwarded URLs.

    Derived from configuration once at startup and shared read-only by
    all requests.
    """

    model_config = ConfigDict(frozen=True)

    origin: str = Field(..., description="Upstream scheme and host, no trailing slash")
    prefix: str = Field(..., description="Path prefix that selects proxied requests")
    strip_prefix: bool = Field(default=False, description="Remove the prefix before forwarding")

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def transform_path(self, path: str) -> str:
        """
        Apply the prefix rule to a matching path.

        Stripping removes the prefix without its trailing slash, so
        '/api/users' becomes '/users' for prefix '/api/'.
        """
        if not self.strip_prefix:
            return path
        return path[len(self.prefix.rstrip("/")):]

    def url_for(self, path: str, query: str = "") -> str:
        url = self.origin + self.transform_path(path)
        if query:
            url += "?" + query
        return url


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Exception detail (DEBUG log level only)")
