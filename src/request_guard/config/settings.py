"""Settings and configuration management."""

import hmac
import logging
import secrets
import warnings
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_MIN_ADMIN_TOKEN_LENGTH = 32
_ENVIRONMENTS = ("development", "production")


class Settings(BaseSettings):
    """Application settings, read from ``REQUEST_GUARD_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="REQUEST_GUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    app_name: str = Field("request-guard", description="Application name")
    environment: str = Field(
        "development",
        description="Deployment environment: 'development' or 'production'",
    )
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Sanitize sensitive data from logs")

    # Admin API
    admin_token: Optional[str] = Field(
        None,
        description="Bearer token required by the admin security routes",
    )
    trusted_proxy_header: Optional[str] = Field(
        None,
        description="Header carrying the client IP when running behind a proxy (e.g. X-Forwarded-For)",
    )

    # Input policy overrides (None keeps the environment preset)
    max_input_length: Optional[int] = Field(
        None, description="Override the maximum scanned input length"
    )
    rate_limit_max_requests: Optional[int] = Field(
        None, description="Override requests allowed per client per window"
    )
    rate_limit_window_seconds: Optional[float] = Field(
        None, description="Override the rate limit window length"
    )

    # Auth overrides (None keeps the environment preset)
    max_failed_attempts: Optional[int] = Field(
        None, description="Override failed logins before lockout"
    )
    lockout_duration_seconds: Optional[float] = Field(
        None, description="Override lockout duration"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def has_secure_admin_token(self) -> bool:
        """Check if the admin token is set and long enough."""
        return bool(self.admin_token) and len(self.admin_token) >= _MIN_ADMIN_TOKEN_LENGTH

    @staticmethod
    def generate_admin_token() -> str:
        """Generate a cryptographically secure admin token."""
        return secrets.token_urlsafe(48)

    def verify_admin_token(self, token: Optional[str]) -> bool:
        """Constant-time comparison against the configured admin token."""
        if not self.admin_token or not token:
            return False
        return hmac.compare_digest(self.admin_token.encode(), token.encode())

    def model_post_init(self, __context) -> None:
        """Validate the environment and production configuration."""
        if self.environment.lower() not in _ENVIRONMENTS:
            raise ValueError(
                f"Unknown environment '{self.environment}'. "
                f"Expected one of: {', '.join(_ENVIRONMENTS)}"
            )
        self._validate_production_config()

    def _validate_production_config(self) -> None:
        """Validate configuration for production safety."""
        if self.has_secure_admin_token:
            return

        msg = (
            "REQUEST_GUARD_ADMIN_TOKEN is missing or shorter than "
            f"{_MIN_ADMIN_TOKEN_LENGTH} characters. "
            'Generate one with: python -c "import secrets; print(secrets.token_urlsafe(48))"'
        )
        if self.is_production:
            logger.warning(msg)
        else:
            warnings.warn(msg, stacklevel=2)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
