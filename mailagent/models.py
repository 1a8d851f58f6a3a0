"""Data models for mailbox messages, sites and extracted operations."""

from __future__ import annotations

import email
import email.policy
import email.utils
from dataclasses import dataclass
from datetime import UTC, datetime
from email.message import EmailMessage
from enum import Enum
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel

OPERATION_SOURCE = "MailAgent"


class PollerState(str, Enum):
    """Runtime state of one mailbox poller."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDLE = "idle"
    POLLING = "polling"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class AgentStatus(str, Enum):
    """Lifecycle status of the agent process."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class FetchedEmail:
    """A message listed as unseen by the mailbox.

    ``uid`` is only unique within the session that produced it.
    """

    uid: str
    raw_bytes: bytes

    @cached_property
    def message(self) -> EmailMessage:
        return email.message_from_bytes(self.raw_bytes, policy=email.policy.default)

    @property
    def subject(self) -> str:
        return str(self.message.get("Subject", ""))

    @property
    def sender(self) -> str:
        return str(self.message.get("From", ""))

    @property
    def sent_at(self) -> datetime | None:
        """Send timestamp from the ``Date`` header, always timezone-aware."""
        value = self.message.get("Date")
        if not value:
            return None
        try:
            parsed = email.utils.parsedate_to_datetime(str(value))
        except (TypeError, ValueError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed


class Site(BaseModel):
    """Publish identity tied to one mailbox."""

    model_config = ConfigDict(frozen=True)

    name: str
    api_key: SecretStr = SecretStr("")


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Address(_ApiModel):
    street: str = ""
    house_number: str = ""
    zip_code: str = ""
    city: str = ""
    district: str = ""


class Position(_ApiModel):
    longitude: float
    latitude: float


class Reporter(_ApiModel):
    name: str = ""
    phone: str = ""


class OperationProperty(_ApiModel):
    key: str
    value: str


class Operation(_ApiModel):
    """Structured incident record extracted from one alarm message."""

    start: datetime
    keyword: str = ""
    facts: str = ""
    address: Address | None = None
    position: Position | None = None
    reporter: Reporter | None = None
    ric: str = ""
    number: str = ""
    source: str = OPERATION_SOURCE
    properties: tuple[OperationProperty, ...] = Field(default_factory=tuple)


class HealthStatus(BaseModel):
    """Payload of the ``/health`` endpoint."""

    status: AgentStatus
    uptime_seconds: float
    details: dict[str, Any] = Field(default_factory=dict)
