"""Configuration module for the habitrack server.

ServerConfig holds every setting of the habitrack server. Values come from
field defaults, a TOML file and CLI options, merged by ``main.load_configuration``.
"""

from importlib.metadata import PackageNotFoundError, version
from typing import Any, Literal, Self

import pytz
from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

from habitrack.core.clock import resolve_timezone
from habitrack.core.models import DEFAULT_TARGET_COMPLETIONS


def _default_user_agent() -> str:
    try:
        return f"habitrack/{version('habitrack')}"
    except PackageNotFoundError:
        return "habitrack/0.0.0"


class ServerConfig(BaseModel):
    """Validated server settings.

    This Pydantic model handles the store backend selection, the user scope,
    the timezone that defines "today", HTTP client tuning and logging level.
    """

    user_id: str = Field(
        ...,
        min_length=1,
        description="User whose habits collection (users/{user_id}/habits) is served",
    )

    store_backend: Literal["memory", "firestore"] = Field(
        default="memory",
        description="Document store backing the habit repository",
    )

    firestore_project_id: str | None = Field(
        default=None,
        description="Google Cloud project hosting the Firestore database",
    )

    firestore_database: str = Field(
        default="(default)",
        description="Firestore database ID",
    )

    firestore_base_url: HttpUrl = Field(
        default=HttpUrl("https://firestore.googleapis.com/v1/"),
        description="Base URL for the Firestore REST API",
    )

    store_token: str | None = Field(
        default=None,
        description="Bearer token (ID or OAuth access token) for store authentication",
    )

    timezone: str = Field(
        default="UTC",
        description="IANA timezone used to determine the current calendar date",
    )

    default_target_completions: int = Field(
        default=DEFAULT_TARGET_COMPLETIONS,
        ge=1,
        le=10000,
        description="Target completions applied when the create form leaves it blank",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root logging level (stderr)",
    )

    config_file: str | None = Field(
        default=None,
        description="TOML file the configuration was loaded from",
    )

    http_retries: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retry count for transient failures of idempotent store requests",
    )

    http_backoff_start_seconds: float = Field(
        default=0.25,
        ge=0.0,
        le=10.0,
        description="Delay before the first retry; doubled after each attempt",
    )

    http_user_agent: str = Field(
        default_factory=_default_user_agent,
        description="User-Agent sent to the store",
    )

    timeout_connect: float = Field(
        default=5.0,
        ge=1.0,
        le=30.0,
        description="Seconds allowed to open a store connection",
    )

    timeout_read: float = Field(
        default=30.0,
        ge=5.0,
        le=120.0,
        description="Seconds allowed for a store response",
    )

    subscription_poll_seconds: float = Field(
        default=5.0,
        ge=0.1,
        le=3600.0,
        description="Polling interval for live habit updates from the remote store",
    )

    @field_validator("firestore_base_url")
    @classmethod
    def validate_https_url(cls, v: HttpUrl) -> HttpUrl:
        """Require an https:// store URL."""
        if v.scheme != "https":
            msg = "URL must use HTTPS"
            raise ValueError(msg)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the timezone is a known IANA name.

        Raises:
            ValueError: If the timezone cannot be resolved.
        """
        try:
            resolve_timezone(v)
        except pytz.UnknownTimeZoneError as error:
            msg = f"Unknown timezone: {v}"
            raise ValueError(msg) from error
        return v

    @model_validator(mode="after")
    def validate_firestore_settings(self) -> Self:
        """Require a project ID when the Firestore backend is selected."""
        if self.store_backend == "firestore" and not self.firestore_project_id:
            msg = "firestore_project_id is required when store_backend is 'firestore'"
            raise ValueError(msg)
        return self

    def to_redacted_dict(self) -> dict[str, Any]:
        """Dump the settings for logging, with the store token masked."""
        config_dict = self.model_dump()
        if config_dict["store_token"] is not None:
            config_dict["store_token"] = "***redacted***"  # noqa: S105 - redaction placeholder
        config_dict["firestore_base_url"] = str(config_dict["firestore_base_url"])
        return config_dict
