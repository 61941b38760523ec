"""Environment-driven configuration for the authorization service.

Settings are read from environment variables, optionally populated from a
.env file, and validated into a Pydantic model once at startup.

Environment Variables:
    - AUTH_DEFAULT_EXPIRES_DAYS: lifetime of issued authorizations (default 30)
    - AUTH_SCOPE_MATCHING: "token" (default) or "substring"
    - AUTH_IDENTITY_CONFLICT: "overwrite" (default) or "reject"
    - AUTH_ADMIN_TOKEN: bootstrap admin bearer token, registered at startup;
      commas and whitespace are rejected
    - AUTH_SEED_FILE: file of canonical authorization records loaded at startup
    - CORS_ORIGINS: comma-separated allowed origins
    - API_HOST, API_PORT, API_RELOAD: uvicorn settings

Dependencies:
    - python-dotenv: .env loading
    - pydantic: settings validation
    - structlog: logging configuration
"""

import os
from typing import Optional

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .auth.models import RECORD_SEPARATOR, ScopeMatching
from .auth.store import IdentityConflictPolicy

# Load environment variables for configuration
load_dotenv()


class AuthSettings(BaseModel):
    """Validated service settings."""

    default_expires_days: int = Field(30, description="Lifetime of issued authorizations in days")
    scope_matching: ScopeMatching = Field(ScopeMatching.TOKEN, description="Scope comparison strategy")
    identity_conflict: IdentityConflictPolicy = Field(
        IdentityConflictPolicy.OVERWRITE, description="Behaviour on conflicting registrations"
    )
    admin_token: Optional[str] = Field(None, description="Bootstrap admin bearer token")
    seed_file: Optional[str] = Field(None, description="Path of a record file loaded at startup")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    @field_validator("admin_token")
    @classmethod
    def validate_admin_token(cls, v: Optional[str]) -> Optional[str]:
        """Reject tokens that cannot be stored as a record or sent as a bearer credential."""
        if v is None:
            return v
        if not v or RECORD_SEPARATOR in v or any(c.isspace() for c in v):
            raise ValueError("admin_token must be non-empty and must not contain commas or whitespace")
        return v

    @classmethod
    def from_env(cls) -> "AuthSettings":
        """Build settings from the current environment.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value
        """
        return cls(
            default_expires_days=os.getenv("AUTH_DEFAULT_EXPIRES_DAYS", "30"),
            scope_matching=os.getenv("AUTH_SCOPE_MATCHING", ScopeMatching.TOKEN.value).lower(),
            identity_conflict=os.getenv(
                "AUTH_IDENTITY_CONFLICT", IdentityConflictPolicy.OVERWRITE.value
            ).lower(),
            admin_token=os.getenv("AUTH_ADMIN_TOKEN") or None,
            seed_file=os.getenv("AUTH_SEED_FILE") or None,
            cors_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=os.getenv("API_PORT", "8000"),
            api_reload=os.getenv("API_RELOAD", "true").lower() == "true",
        )


def configure_logging() -> None:
    """Configure structured logging for the service process."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
