"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError


def _split_csv(value: Any) -> Any:
    """Accept comma separated strings for list-valued settings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class IdentitySettings(BaseModel):
    """Who the outbound message comes from and who receives it."""

    site_name: str = Field(default="Website", description="Human readable site name")
    sender_name: str = Field(default="Website Contact", description="From display name")
    sender_email: str = Field(
        default="noreply@localhost", description="From address on outbound mail"
    )
    subject_prefix: str = Field(default="Website", description="Subject tag")
    to: list[str] = Field(default_factory=list, description="Primary recipients")
    cc: list[str] = Field(default_factory=list, description="Carbon copy recipients")
    bcc: list[str] = Field(default_factory=list, description="Blind copy recipients")

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _normalize_recipients(cls, value: Any) -> Any:
        return _split_csv(value)

    @property
    def has_recipient(self) -> bool:
        """Return ``True`` when at least one non-empty To address exists."""
        return any(address.strip() for address in self.to)


class TransportSettings(BaseModel):
    """Delivery transport credentials and limits."""

    preferred: Literal["api", "smtp"] = Field(
        default="api", description="Transport attempted first"
    )
    api_url: str = Field(
        default="https://api.postmarkapp.com/email",
        description="HTTP email API endpoint",
    )
    api_token: str | None = Field(default=None, description="Email API server token")
    message_stream: str = Field(default="outbound", description="API message stream")
    smtp_host: str | None = Field(default=None, description="SMTP submission host")
    smtp_port: int = Field(default=587, description="SMTP submission port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    encryption: Literal["starttls", "tls"] = Field(
        default="starttls",
        description="STARTTLS upgrade or implicit TLS on connect",
    )
    ehlo_hostname: str = Field(default="localhost", description="Name sent in EHLO")
    timeout_seconds: float = Field(
        default=15.0, gt=0, description="Wall-clock ceiling per transport attempt"
    )


class AntiAbuseSettings(BaseModel):
    """Thresholds used by the anti-abuse guard and attachment checks."""

    honeypot_field: str = Field(default="website", description="Hidden bot trap field")
    min_submit_seconds: float = Field(
        default=3.0, ge=0, description="Minimum seconds between render and submit"
    )
    rate_window_seconds: int = Field(
        default=600, ge=1, description="Length of the tumbling rate window"
    )
    rate_max: int = Field(default=5, ge=1, description="Submissions allowed per window")
    rate_store_dir: Path = Field(
        default=Path("./var/rate"), description="Directory for rate counter files"
    )
    block_disposable: bool = Field(
        default=True, description="Reject known throwaway mail domains"
    )
    extra_disposable_domains: list[str] = Field(
        default_factory=list, description="Additional blocked domain fragments"
    )
    max_body_length: int = Field(
        default=5000, ge=1, description="Message text is truncated to this length"
    )
    max_extra_fields: int = Field(
        default=20, ge=0, description="Additional form fields copied into the message"
    )
    max_field_length: int = Field(
        default=1000, ge=1, description="Additional field values are cut to this length"
    )
    allowed_extensions: list[str] = Field(
        default_factory=lambda: ["pdf", "doc", "docx", "txt", "jpg", "jpeg", "png"],
        description="Attachment extension allow-list",
    )
    max_attachment_bytes: int = Field(
        default=5 * 1024 * 1024, ge=0, description="Cumulative attachment size cap"
    )
    max_attachments: int = Field(default=5, ge=0, description="Maximum file parts")
    captcha_provider: Literal["none", "turnstile", "hcaptcha", "recaptcha"] = Field(
        default="none", description="Third-party CAPTCHA provider"
    )
    captcha_site_key: str | None = Field(default=None, description="Public site key")
    captcha_secret: str | None = Field(default=None, description="Verification secret")

    @field_validator("extra_disposable_domains", "allowed_extensions", mode="before")
    @classmethod
    def _normalize_lists(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("allowed_extensions")
    @classmethod
    def _lowercase_extensions(cls, value: list[str]) -> list[str]:
        return [item.lower().lstrip(".") for item in value]


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )
    audit_path: Path = Field(
        default=Path("./var/log/formgate-audit.jsonl"),
        description="Append-only audit trail",
    )
    redact_fields: list[str] = Field(
        default_factory=lambda: ["captcha_token", "honeypot"],
        description="Submission fields masked in audit records",
    )

    @field_validator("redact_fields", mode="before")
    @classmethod
    def _normalize_redact(cls, value: Any) -> Any:
        return _split_csv(value)


class ServerSettings(BaseModel):
    """HTTP surface settings."""

    endpoint_path: str = Field(default="/submit", description="Form POST path")
    host: str = Field(default="127.0.0.1", description="Bind address for serve")
    port: int = Field(default=8080, description="Bind port for serve")


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    model_config = {"frozen": True}

    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    anti_abuse: AntiAbuseSettings = Field(default_factory=AntiAbuseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def require_recipients(self) -> None:
        """Fail closed when no primary recipient is configured."""
        if not self.identity.has_recipient:
            raise ConfigurationError("recipient_missing")


ENV_PREFIX = "FORMGATE_"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool
) -> dict[str, Any]:
    """Load configuration values from the config file and environment."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if not env_path.is_file():
            raise ConfigurationError(
                "config_missing", f"Configuration file not found: {env_path}"
            )
        file_values = {
            key: value
            for key, value in dotenv_values(env_path).items()
            if key and key.startswith(ENV_PREFIX)
        }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=4)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    require_recipients: bool = True,
) -> AppSettings:
    """Load and validate settings once; clear the cache to reload."""
    collected = _collect_env_values(env_file, include_environment)
    # Empty values mean "use the default"; drop them before validation.
    pruned = {
        section: {k: v for k, v in values.items() if v is not None}
        if isinstance(values, dict)
        else values
        for section, values in collected.items()
    }
    try:
        settings = AppSettings.model_validate(pruned)
    except ValidationError as exc:
        raise ConfigurationError("config_invalid", str(exc)) from exc
    if require_recipients:
        settings.require_recipients()
    return settings


__all__ = [
    "AntiAbuseSettings",
    "AppSettings",
    "IdentitySettings",
    "LoggingSettings",
    "ServerSettings",
    "TransportSettings",
    "load_app_settings",
]
