"""Configuration management for the AWS client cache."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AWSSettings(BaseModel):
    sts_region: str = Field(
        default="",
        description="Region for STS clients; empty uses the SDK default and global endpoint",
    )
    endpoint_url: str | None = Field(
        default=None,
        description="Overrides endpoint resolution for every client (local testing)",
    )
    fips: bool = Field(default=False, description="Use FIPS endpoints where available")

    @field_validator("endpoint_url")
    @classmethod
    def _validate_endpoint_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"endpoint_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")


class CacheSettings(BaseModel):
    debug_transport: bool = Field(
        default=False,
        description="Log every outgoing AWS request at DEBUG level",
    )
    assume_role_duration_seconds: int = Field(default=3600, ge=900, le=43200)
    role_session_name: str = Field(default="aws-client-cache", min_length=2, max_length=64)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sts_region": "AWS_STS_REGION",
    "endpoint_url": "AWS_ENDPOINT_URL",
    "fips": "AWS_USE_FIPS_ENDPOINT",
    "debug_transport": "CACHE_DEBUG_TRANSPORT",
    "assume_role_duration": "CACHE_ASSUME_ROLE_DURATION_SECONDS",
    "role_session_name": "CACHE_ROLE_SESSION_NAME",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": os.getenv(ENV_KEYS["log_file"]) or None,
        },
        "aws": {
            "sts_region": os.getenv(ENV_KEYS["sts_region"], AWSSettings().sts_region),
            "endpoint_url": os.getenv(ENV_KEYS["endpoint_url"]),
            "fips": _env_bool(ENV_KEYS["fips"], AWSSettings().fips),
        },
        "cache": {
            "debug_transport": _env_bool(
                ENV_KEYS["debug_transport"],
                CacheSettings().debug_transport,
            ),
            "assume_role_duration_seconds": _env_int(
                ENV_KEYS["assume_role_duration"],
                CacheSettings().assume_role_duration_seconds,
            ),
            "role_session_name": os.getenv(
                ENV_KEYS["role_session_name"],
                CacheSettings().role_session_name,
            ),
        },
    }

    try:
        return Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc
