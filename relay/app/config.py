"""
Configuration module for the Cookie Relay.

This module uses Pydantic Settings to load and validate environment variables
for the upstream origin, the proxied path prefix, cookie rewriting policy,
upstream timeouts and logging.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Literal

import httpx
from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import UpstreamTarget


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Everything the relay needs to reach the upstream and rewrite its
    responses is defined here and passed explicitly to the app factory.
    """

    # =========================================================================
    # Upstream Configuration
    # =========================================================================

    UPSTREAM_ORIGIN: HttpUrl = Field(
        ...,
        description="Upstream origin, scheme and host only (e.g., https://backend.example.com)",
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Total timeout for one upstream call in seconds",
        gt=0,
    )

    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Connect timeout for the upstream in seconds",
        gt=0,
    )

    # =========================================================================
    # Routing Configuration
    # =========================================================================

    PROXY_PREFIX: str = Field(
        default="/api/",
        description="Path prefix of requests forwarded upstream (e.g., /api/)",
        min_length=2,
    )

    STRIP_PREFIX: bool = Field(
        default=False,
        description="Strip PROXY_PREFIX from the path before forwarding",
    )

    # =========================================================================
    # Cookie Rewriting
    # =========================================================================

    COOKIE_SAMESITE_POLICY: Literal["none", "preserve"] = Field(
        default="none",
        description="'none' forces SameSite=None, 'preserve' keeps an upstream SameSite value",
    )

    # =========================================================================
    # Relay Server Configuration
    # =========================================================================

    RELAY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the relay server",
    )

    RELAY_PORT: int = Field(
        default=8080,
        description="Port to bind the relay server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def upstream_origin_str(self) -> str:
        """
        Get the upstream origin as string (for URL concatenation).

        Returns:
            Upstream origin without trailing slash.
        """
        return str(self.UPSTREAM_ORIGIN).rstrip("/")

    @property
    def upstream_target(self) -> UpstreamTarget:
        """Read-only forwarding target derived from this configuration."""
        return UpstreamTarget(
            origin=self.upstream_origin_str,
            prefix=self.PROXY_PREFIX,
            strip_prefix=self.STRIP_PREFIX,
        )

    @property
    def upstream_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.UPSTREAM_TIMEOUT_SECONDS,
            connect=self.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("UPSTREAM_ORIGIN")
    @classmethod
    def validate_upstream_origin(cls, v: HttpUrl) -> HttpUrl:
        """
        Validate that UPSTREAM_ORIGIN is a bare origin.

        Args:
            v: Parsed upstream URL

        Returns:
            Validated URL

        Raises:
            ValueError: If the URL carries a path, query or fragment
        """
        if v.path not in (None, "", "/"):
            raise ValueError(
                f"UPSTREAM_ORIGIN must not contain a path, got: {v.path}"
            )
        if v.query or v.fragment:
            raise ValueError("UPSTREAM_ORIGIN must not contain a query or fragment")
        return v

    @field_validator("PROXY_PREFIX")
    @classmethod
    def validate_proxy_prefix(cls, v: str) -> str:
        """
        Validate that PROXY_PREFIX is a slash-delimited path segment.

        Raises:
            ValueError: If the prefix does not start and end with '/'
        """
        v = v.strip()
        if not v.startswith("/") or not v.endswith("/") or len(v) < 3:
            raise ValueError(
                f"PROXY_PREFIX must look like '/api/', got: '{v}'"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        v = v.upper()
        if v not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If UPSTREAM_ORIGIN is missing or any variable
                        is invalid.

    Example:
        >>> from relay.app.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.upstream_origin_str)
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate configuration settings and return a status report.

    Called during application startup so that risky but legal
    configurations are visible in the logs.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors: List[str] = []
    warnings: List[str] = []

    if settings.UPSTREAM_ORIGIN.scheme != "https":
        warnings.append(
            "UPSTREAM_ORIGIN is not https; rewritten cookies are always Secure"
        )

    host = settings.UPSTREAM_ORIGIN.host or ""
    if host in ("localhost", "127.0.0.1"):
        warnings.append("Upstream origin points to localhost (may cause issues in containers)")

    if settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS > settings.UPSTREAM_TIMEOUT_SECONDS:
        errors.append(
            "UPSTREAM_CONNECT_TIMEOUT_SECONDS is larger than UPSTREAM_TIMEOUT_SECONDS"
        )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "upstream_origin": settings.upstream_origin_str,
        "proxy_prefix": settings.PROXY_PREFIX,
        "strip_prefix": settings.STRIP_PREFIX,
    }


if __name__ == "__main__":
    """
    Run this module directly to validate your .env configuration:
        python -m relay.app.config
    """
    print("=" * 80)
    print("RELAY CONFIGURATION")
    print("=" * 80)

    try:
        config = get_settings()

        print("\n✓ Configuration loaded successfully!\n")

        print("Upstream:")
        print(f"  Origin:          {config.upstream_origin_str}")
        print(f"  Timeout:         {config.UPSTREAM_TIMEOUT_SECONDS}s "
              f"(connect {config.UPSTREAM_CONNECT_TIMEOUT_SECONDS}s)")

        print("\nRouting:")
        print(f"  Prefix:          {config.PROXY_PREFIX}")
        print(f"  Strip prefix:    {config.STRIP_PREFIX}")

        print("\nCookies:")
        print(f"  SameSite policy: {config.COOKIE_SAMESITE_POLICY}")

        print("\nServer Configuration:")
        print(f"  Host:            {config.RELAY_HOST}")
        print(f"  Port:            {config.RELAY_PORT}")
        print(f"  Log level:       {config.LOG_LEVEL}")

        status = validate_configuration(config)

        print("\n" + "=" * 80)
        if status["valid"]:
            print("✓ All critical checks passed!")
        else:
            print("✗ Configuration errors found:")
            for error in status["errors"]:
                print(f"  - {error}")

        if status["warnings"]:
            print("\n⚠ Warnings:")
            for warning in status["warnings"]:
                print(f"  - {warning}")

    except Exception as e:
        print(f"\n✗ Configuration error: {e}")
        print("\nRequired variables:\n  - UPSTREAM_ORIGIN")
        print("""
Optional variables:
  - PROXY_PREFIX (default: /api/)
  - STRIP_PREFIX (default: false)
  - COOKIE_SAMESITE_POLICY (default: none)
  - UPSTREAM_TIMEOUT_SECONDS (default: 30)
  - UPSTREAM_CONNECT_TIMEOUT_SECONDS (default: 10)
  - RELAY_HOST (default: 0.0.0.0)
  - RELAY_PORT (default: 8080)
  - LOG_LEVEL (default: INFO)
""")
