"""
Application configuration models and helpers.

Settings are grouped by concern and read from the environment (optionally
seeded from a ``.env`` file). Only the application factory calls
``get_settings``; every component receives what it needs via its constructor.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_SETTINGS_CONFIG = SettingsConfigDict(extra="ignore", populate_by_name=True)


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without overriding the environment."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        os.environ[key] = value.strip().strip('"').strip("'")


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (tuple, list)):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class ServerSettings(BaseSettings):
    """Where the broker listens and how it names itself."""

    model_config = _SETTINGS_CONFIG

    port: int = Field(3000, gt=0, validation_alias="PORT")
    base_url: AnyHttpUrl = Field(..., validation_alias="BASE_URL")
    allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="ALLOWED_ORIGINS",
        description="Origins allowed to call the broker from a browser.",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
        return _split_csv(value)

    @property
    def issuer(self) -> str:
        """Base URL without a trailing slash, used as the session token issuer."""
        return str(self.base_url).rstrip("/")


class GoogleSettings(BaseSettings):
    """Configuration required for the Google OAuth client."""

    model_config = _SETTINGS_CONFIG

    client_id: str = Field(..., min_length=1, validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., min_length=1, validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="OAUTH_REDIRECT_URI")
    http_timeout_seconds: float = Field(
        10.0,
        gt=0,
        validation_alias="PROVIDER_HTTP_TIMEOUT",
        description="Upper bound for every call to Google's OAuth endpoints.",
    )


class SecuritySettings(BaseSettings):
    """Secrets loaded once at start-up and never logged."""

    model_config = _SETTINGS_CONFIG

    token_encryption_key: str = Field(
        ...,
        min_length=32,
        validation_alias="TOKEN_ENCRYPTION_KEY",
        description="Master secret the refresh-token encryption keys are derived from.",
    )
    jwt_secret: str = Field(
        ...,
        min_length=32,
        validation_alias="JWT_SECRET",
        description="HMAC secret for signing session tokens.",
    )


class OAuthSettings(BaseSettings):
    """Provider OAuth flow configuration."""

    model_config = _SETTINGS_CONFIG

    state_ttl_seconds: int = Field(600, gt=0, validation_alias="OAUTH_STATE_TTL")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "https://www.googleapis.com/auth/gmail.modify",
            "https://www.googleapis.com/auth/userinfo.email",
            "openid",
        ),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class StorageSettings(BaseSettings):
    """Location of the durable token store."""

    model_config = _SETTINGS_CONFIG

    db_url: str = Field("./data/gmail-mcp.db", validation_alias="DB_URL")


class AppSettings(BaseSettings):
    """Root settings object for the broker."""

    model_config = _SETTINGS_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL a browser is sent to after linking a mailbox.",
    )
    server: ServerSettings = Field(default_factory=ServerSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "OAuthSettings",
    "SecuritySettings",
    "ServerSettings",
    "StorageSettings",
    "get_settings",
]
