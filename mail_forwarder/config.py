"""Configuration management for the mail forwarder."""

from __future__ import annotations

from datetime import timedelta

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .sender_filter import parse_allow_list
from .utils import parse_duration

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()


class ConfigurationError(RuntimeError):
    """Raised when required settings are missing or cannot be parsed."""

    def __init__(self, missing: list[str], invalid: list[str] | None = None) -> None:
        self.missing = list(missing)
        self.invalid = list(invalid or [])
        parts = []
        if self.missing:
            parts.append("Missing required configuration: " + ", ".join(self.missing))
        if self.invalid:
            parts.append("Invalid configuration values: " + ", ".join(self.invalid))
        super().__init__("; ".join(parts) or "Invalid configuration")


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    imap_host: str = Field(..., alias="IMAP_HOST", min_length=1)
    imap_port: int = Field(..., alias="IMAP_PORT", gt=0, lt=65536)
    imap_user: str = Field(..., alias="IMAP_USER", min_length=1)
    imap_password: str = Field(..., alias="IMAP_PASSWORD", min_length=1)
    imap_mailbox: str = Field("INBOX", alias="IMAP_MAILBOX", min_length=1)
    imap_tls: bool = Field(True, alias="IMAP_TLS")
    imap_timeout: float = Field(30.0, alias="IMAP_TIMEOUT", gt=0)

    smtp_host: str = Field(..., alias="SMTP_HOST", min_length=1)
    smtp_port: int = Field(..., alias="SMTP_PORT", gt=0, lt=65536)
    smtp_user: str = Field(..., alias="SMTP_USER", min_length=1)
    smtp_password: str = Field(..., alias="SMTP_PASSWORD", min_length=1)
    smtp_timeout: float = Field(60.0, alias="SMTP_TIMEOUT", gt=0)

    forward_to: str = Field(..., alias="FORWARD_TO", min_length=1)
    forward_from: str = Field(..., alias="FORWARD_FROM", min_length=1)
    allowed_sender_domains_raw: str = Field("", alias="ALLOWED_SENDER_DOMAINS")

    daemon_mode: bool = Field(False, alias="DAEMON_MODE")
    poll_interval: timedelta = Field(timedelta(minutes=5), alias="POLL_INTERVAL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("poll_interval", mode="before")
    @classmethod
    def _parse_poll_interval(cls, value):
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("poll_interval")
    @classmethod
    def _positive_interval(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("POLL_INTERVAL must be positive")
        return value

    @property
    def allowed_sender_domains(self) -> frozenset[str] | None:
        """Allow-list of sender domains, or None when filtering is disabled."""
        return parse_allow_list(self.allowed_sender_domains_raw)

    @property
    def smtp_implicit_tls(self) -> bool:
        return self.smtp_port == 465

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval.total_seconds()


def _field_env_names() -> dict[str, str]:
    names = {}
    for name, field in Settings.model_fields.items():
        alias = field.alias or name.upper()
        names[name] = alias
        names[alias] = alias
        names[alias.lower()] = alias
    return names


def load_settings(**overrides) -> Settings:
    """Build Settings, collapsing validation errors into a ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        env_names = _field_env_names()
        missing: list[str] = []
        invalid: list[str] = []
        for error in exc.errors():
            loc = error.get("loc") or ("",)
            name = env_names.get(str(loc[0]), str(loc[0]))
            raw = error.get("input")
            is_missing = error.get("type") == "missing" or (
                isinstance(raw, str) and not raw.strip()
            )
            bucket = missing if is_missing else invalid
            if name not in bucket:
                bucket.append(name)
        raise ConfigurationError(missing, invalid) from exc
