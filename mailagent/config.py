"""Mail agent configuration.

Uses pydantic-settings so every field can be set from ``MAILAGENT_*``
environment variables or from a JSON settings file (``appsettings.json``
in the working directory, or the path in ``MAILAGENT_CONFIG_FILE``).
Mailbox lists and patterns are usually easier to keep in the file.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

import regex
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

MIN_POLL_INTERVAL_SECONDS = 4
CONFIG_FILE_ENV = "MAILAGENT_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "appsettings.json"


class ProcessMode(str, Enum):
    """How accepted messages are turned into output."""

    DOCUMENT = "document"
    TEXT = "text"
    PLAIN = "plain"
    PLAIN_HTML = "plain_html"
    ENCRYPTED = "encrypted"
    ENCRYPTED_HTML = "encrypted_html"
    PGP_ATTACHMENT = "pgp_attachment"

    @property
    def needs_decryption(self) -> bool:
        return self not in (ProcessMode.PLAIN, ProcessMode.PLAIN_HTML)

    @property
    def writes_files(self) -> bool:
        return self in (ProcessMode.DOCUMENT, ProcessMode.TEXT)


class AuthenticationType(str, Enum):
    BASIC = "basic"
    OAUTH = "oauth"


class MailboxConfig(BaseModel):
    """One monitored mailbox and the site it publishes for."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="", description="Mailbox / site name used in logs and publishing")
    host: str = Field(default="", description="Mail server hostname")
    port: int = Field(default=993, ge=1, le=65535, description="Mail server port")
    username: str = Field(default="", description="Login name / mailbox identity")
    password: SecretStr = Field(default=SecretStr(""), description="Password for basic auth")
    authentication_type: AuthenticationType = Field(default=AuthenticationType.BASIC)
    subject_filter: str = Field(
        default="",
        description="Only accept messages whose subject contains this (case-insensitive)",
    )
    sender_filter: str = Field(
        default="",
        description="Only accept messages whose sender contains this (case-insensitive)",
    )
    api_key: SecretStr = Field(default=SecretStr(""), description="Publish API key of the site")


class PatternField(BaseModel):
    """A named pattern for an organization-specific operation property."""

    model_config = ConfigDict(frozen=True)

    name: str
    pattern: str


def _check_pattern(value: str) -> str:
    if not value:
        return value
    try:
        compiled = regex.compile(value)
    except regex.error as exc:
        raise ValueError(f"invalid pattern {value!r}: {exc}") from exc
    if compiled.groups < 1:
        raise ValueError(f"pattern {value!r} needs a capture group")
    return value


class ExtractionPatterns(BaseModel):
    """Regular expressions mapping message text to operation fields.

    Every non-empty pattern must contain at least one capture group; the
    first group is the field value. Empty patterns leave the field empty.
    """

    model_config = ConfigDict(frozen=True)

    start_pattern: str = ""
    keyword_pattern: str = ""
    facts_pattern: str = ""
    street_pattern: str = ""
    house_number_pattern: str = ""
    city_pattern: str = ""
    district_pattern: str = ""
    zip_code_pattern: str = ""
    ric_pattern: str = ""
    longitude_pattern: str = ""
    latitude_pattern: str = ""
    reporter_name_pattern: str = ""
    reporter_phone_pattern: str = ""
    number_pattern: str = ""
    additional_properties: list[PatternField] = Field(default_factory=list)
    start_day_first: bool = Field(
        default=True,
        description="Read ambiguous dates like 05.10.2026 as day-first",
    )

    @field_validator(
        "start_pattern",
        "keyword_pattern",
        "facts_pattern",
        "street_pattern",
        "house_number_pattern",
        "city_pattern",
        "district_pattern",
        "zip_code_pattern",
        "ric_pattern",
        "longitude_pattern",
        "latitude_pattern",
        "reporter_name_pattern",
        "reporter_phone_pattern",
        "number_pattern",
    )
    @classmethod
    def _validate_pattern(cls, value: str) -> str:
        return _check_pattern(value)

    @field_validator("additional_properties")
    @classmethod
    def _validate_additional(cls, value: list[PatternField]) -> list[PatternField]:
        for field in value:
            _check_pattern(field.pattern)
        return value


class PublishConfig(BaseSettings):
    """Downstream operation API settings."""

    model_config = {"env_prefix": "MAILAGENT_PUBLISH_"}

    base_url: str = Field(
        default="https://connectapi.feuersoftware.com",
        description="Base URL of the operation API",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class HeartbeatConfig(BaseSettings):
    """Liveness heartbeat sent to an external monitor."""

    model_config = {"env_prefix": "MAILAGENT_HEARTBEAT_"}

    url: str = Field(default="", description="URL to GET on every heartbeat (empty disables)")
    interval_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Seconds between heartbeats (unset disables)",
    )
    timeout_seconds: float = Field(default=100.0, description="HTTP request timeout")


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = {"env_prefix": "MAILAGENT_RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum attempts per heartbeat")
    initial_wait_seconds: float = Field(default=5.0, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=25.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=5.0, description="Exponential backoff multiplier")


class OAuthConfig(BaseSettings):
    """Token settings for mailboxes using ``authentication_type=oauth``."""

    model_config = {"env_prefix": "MAILAGENT_OAUTH_"}

    client_id: str | None = Field(
        default=None,
        description="Application (client) id registered with the identity provider",
    )
    authority: str = Field(default="https://login.microsoftonline.com/common")
    scopes: list[str] = Field(
        default_factory=lambda: ["https://outlook.office365.com/IMAP.AccessAsUser.All"],
    )
    token_cache_path: Path = Field(
        default=Path("token_cache.json"),
        description="Serialized token cache written by the interactive login tool",
    )


class AgentConfig(BaseSettings):
    """Root configuration for a mail agent process."""

    model_config = SettingsConfigDict(
        env_prefix="MAILAGENT_",
        env_nested_delimiter="__",
    )

    mailboxes: list[MailboxConfig] = Field(default_factory=list)
    poll_interval_seconds: int = Field(
        default=5,
        ge=MIN_POLL_INTERVAL_SECONDS,
        description="Seconds between poll cycles of every mailbox",
    )
    reconnect_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Seconds between forced reconnects of every mailbox",
    )
    process_mode: ProcessMode = Field(default=ProcessMode.TEXT)
    secret_key_passphrase: SecretStr = Field(default=SecretStr(""))
    gnupg_home: str | None = Field(default=None, description="GnuPG home directory")
    output_path: Path = Field(default=Path("."), description="Directory for written files")
    ignore_certificate_errors: bool = Field(default=False)
    imap_timeout_seconds: float = Field(
        default=100.0,
        gt=0,
        description="Socket timeout for every IMAP command",
    )
    health_port: int = Field(default=8080, description="Health probe port (0 disables)")
    log_json: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    patterns: ExtractionPatterns = Field(default_factory=ExtractionPatterns)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        json_file = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=json_file),
        )
