"""Shared test fixtures for the mail agent test suite."""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime, timedelta
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from mailagent.config import (
    AgentConfig,
    ExtractionPatterns,
    MailboxConfig,
    PatternField,
    ProcessMode,
    RetryConfig,
)
from mailagent.interface import MailSession
from mailagent.models import FetchedEmail, Site

T0 = datetime(2026, 5, 4, 12, 0, 0, tzinfo=UTC)

ALARM_TEXT = (
    "Einsatzbeginn: 04.05.2026 13:58:00\r\n"
    "Stichwort: B3 Wohnungsbrand\r\n"
    "Sachverhalt: Rauch aus Fenster\r\n"
    "Strasse: Hauptstrasse\r\n"
    "Hausnummer: 12a\r\n"
    "PLZ: 12345\r\n"
    "Ort: Musterstadt\r\n"
    "Ortsteil: Nord\r\n"
    "RIC: 1234567\r\n"
    "RIC: 7654321\r\n"
    "Laenge: 13,5678\r\n"
    "Breite: 52.1234\r\n"
    "Melder: Erika Mustermann\r\n"
    "Telefon: 0123 456789\r\n"
    "Einsatznummer: E-2026-0042\r\n"
    "Funkrufname: Florian 1\r\n"
)


class Clock:
    """Settable clock for the poller."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSession(MailSession):
    """In-memory mailbox; ``inbox`` maps uid to raw message bytes."""

    def __init__(self) -> None:
        self.inbox: dict[str, bytes] = {}
        self.seen: set[str] = set()
        self.marked: list[str] = []
        self.connected = False
        self.connect_calls: list[tuple[str, int, str, str, bool]] = []
        self.disconnect_calls = 0
        self.connect_error: Exception | None = None
        self.list_error: Exception | None = None

    async def connect(self, host, port, username, secret, *, oauth=False) -> None:
        self.connect_calls.append((host, port, username, secret, oauth))
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    async def list_unseen(self) -> list[FetchedEmail]:
        if self.list_error is not None:
            raise self.list_error
        return [
            FetchedEmail(uid=uid, raw_bytes=raw)
            for uid, raw in self.inbox.items()
            if uid not in self.seen
        ]

    async def mark_seen(self, uid: str) -> None:
        self.marked.append(uid)
        self.seen.add(uid)


def _build_plain_email(
    *,
    body: str = ALARM_TEXT,
    subject: str = "Alarm",
    sender: str = "leitstelle@example.com",
    sent_at: datetime | None = T0,
    subtype: str = "plain",
) -> bytes:
    msg = MIMEText(body, subtype, "utf-8")
    msg["From"] = sender
    msg["To"] = "wache@example.com"
    msg["Subject"] = subject
    if sent_at is not None:
        msg["Date"] = email.utils.format_datetime(sent_at)
    return msg.as_bytes()


def _build_encrypted_email(
    payload: bytes,
    *,
    subtype: str = "octet-stream",
    plain_body: str | None = ALARM_TEXT,
    sent_at: datetime | None = T0,
) -> bytes:
    """Multipart mail with an encrypted attachment and an optional plain body."""
    msg = MIMEMultipart()
    msg["From"] = "leitstelle@example.com"
    msg["Subject"] = "Alarm"
    if sent_at is not None:
        msg["Date"] = email.utils.format_datetime(sent_at)
    if plain_body is not None:
        msg.attach(MIMEText(plain_body, "plain", "utf-8"))
    msg.attach(MIMEApplication(payload, subtype, Name="alarm.asc"))
    return msg.as_bytes()


def _build_inner_message(text: str, *, content_type: str = "text/plain") -> str:
    """The MIME document carried inside the encrypted attachment."""
    maintype, subtype = content_type.split("/")
    return (
        "MIME-Version: 1.0\r\n"
        'Content-Type: multipart/mixed; boundary="inner"\r\n'
        "\r\n"
        "--inner\r\n"
        f"Content-Type: {maintype}/{subtype}; charset=windows-1252\r\n"
        "Content-Transfer-Encoding: quoted-printable\r\n"
        "\r\n"
        f"{text}\r\n"
        "--inner--\r\n"
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def mailbox_config() -> MailboxConfig:
    return MailboxConfig(
        name="wache-nord",
        host="imap.test.com",
        port=993,
        username="alarm@test.com",
        password=SecretStr("testpass"),
        api_key=SecretStr("site-key"),
    )


@pytest.fixture
def site() -> Site:
    return Site(name="wache-nord", api_key=SecretStr("site-key"))


@pytest.fixture
def patterns() -> ExtractionPatterns:
    return ExtractionPatterns(
        start_pattern=r"Einsatzbeginn:\s*(.+)",
        keyword_pattern=r"Stichwort:\s*(.+)",
        facts_pattern=r"Sachverhalt:\s*(.+)",
        street_pattern=r"Strasse:\s*(.+)",
        house_number_pattern=r"Hausnummer:\s*(.+)",
        zip_code_pattern=r"PLZ:\s*(\d+)",
        city_pattern=r"Ort:\s*(.+)",
        district_pattern=r"Ortsteil:\s*(.+)",
        ric_pattern=r"RIC:\s*(\d+)",
        longitude_pattern=r"Laenge:\s*([\d.,]+)",
        latitude_pattern=r"Breite:\s*([\d.,]+)",
        reporter_name_pattern=r"Melder:\s*(.+)",
        reporter_phone_pattern=r"Telefon:\s*(.+)",
        number_pattern=r"Einsatznummer:\s*(\S+)",
        additional_properties=[PatternField(name="Funkrufname", pattern=r"Funkrufname:\s*(.+)")],
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.1,
        multiplier=2.0,
    )


@pytest.fixture
def agent_config(mailbox_config: MailboxConfig, patterns: ExtractionPatterns, tmp_path) -> AgentConfig:
    return AgentConfig(
        mailboxes=[mailbox_config],
        poll_interval_seconds=5,
        process_mode=ProcessMode.PLAIN,
        output_path=tmp_path,
        health_port=0,
        log_json=False,
        patterns=patterns,
    )


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def mock_publisher() -> AsyncMock:
    publisher = AsyncMock()
    publisher.publish = AsyncMock(return_value=True)
    publisher.start = AsyncMock()
    publisher.stop = AsyncMock()
    return publisher
