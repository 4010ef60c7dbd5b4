# Settings for the authorization server.
# Created: 2026-10-18
#
# Values come from AUTHGATE_* environment variables or a local .env file.
# The signing secret lives in <config dir>/secret.key unless AUTHGATE_SECRET_KEY is set.

from __future__ import annotations

import logging
import os
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Authorization codes may never live longer than this, whatever the config says.
MAX_CODE_TTL_SECONDS = 600

STANDARD_SCOPES = ["openid", "profile", "email", "phone", "address", "offline_access"]


def get_config_dir() -> Path:
    """Return (and create) the directory holding the secret key, database and audit log."""
    override = os.environ.get("AUTHGATE_CONFIG_DIR")
    path = Path(override) if override else Path.home() / ".authgate"
    path.mkdir(parents=True, exist_ok=True)
    return path


class Settings(BaseSettings):
    """Authorization server settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHGATE_",
        env_file=".env",
        extra="ignore",
    )

    issuer: str = "http://localhost:8000"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    access_token_ttl_seconds: int = Field(default=3600, gt=0)
    refresh_token_ttl_days: int = Field(default=30, ge=1, le=90)
    authorization_code_ttl_seconds: int = Field(default=600, gt=0, le=MAX_CODE_TTL_SECONDS)
    clock_skew_seconds: int = Field(default=5, ge=0)
    rotate_refresh_tokens: bool = True

    supported_scopes: list[str] = Field(default_factory=lambda: list(STANDARD_SCOPES))
    default_client_scopes: list[str] = Field(
        default_factory=lambda: ["openid", "profile", "email"]
    )

    storage_backend: Literal["memory", "sql"] = "memory"
    database_url: str | None = None

    secret_key: str | None = None
    session_token_ttl_hours: int = Field(default=12, gt=0)

    cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = "INFO"
    audit_log_path: Path | None = None

    @model_validator(mode="after")
    def _check_consistency(self) -> Settings:
        if self.clock_skew_seconds > self.authorization_code_ttl_seconds:
            raise ValueError(
                "clock_skew_seconds must not exceed authorization_code_ttl_seconds"
            )
        unknown = set(self.default_client_scopes) - set(self.supported_scopes)
        if unknown:
            raise ValueError(f"default_client_scopes not in supported_scopes: {sorted(unknown)}")
        return self

    @classmethod
    def load(cls) -> Settings:
        """Build a fresh Settings from the current environment."""
        return cls()

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{get_config_dir() / 'authgate.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings (cached)."""
    return Settings.load()


def get_secret_key(settings: Settings | None = None) -> str:
    """Return the signing secret, creating ``secret.key`` on first use."""
    settings = settings or get_settings()
    if settings.secret_key:
        return settings.secret_key

    path = get_config_dir() / "secret.key"
    if path.exists():
        value = path.read_text().strip()
        if value:
            return value

    value = secrets.token_urlsafe(48)
    path.write_text(value)
    try:
        path.chmod(0o600)
    except OSError:
        logger.warning("Could not restrict permissions on %s", path)
    logger.info("Generated new signing secret at %s", path)
    return value
