"""Mail processors, one per process mode.

Structured processors evaluate message text into an :class:`Operation`
and publish it. The encrypted structured processors fall back to the
matching plain-body processor when anything on the encrypted path fails.
Document processors decrypt the payload and write it to disk.
"""

from __future__ import annotations

import abc
import asyncio
import base64
import binascii
import email
import email.policy
from collections.abc import Callable
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path

import structlog

from .config import ProcessMode
from .errors import MessageFormatError
from .extraction import OperationEvaluator
from .interface import Decryptor, MailProcessor, OperationPublisher
from .models import FetchedEmail, Site
from .quoted_printable import decode_quoted_printable, guess_encoding

logger = structlog.get_logger()

ENCRYPTED_CONTENT_TYPE = "application/octet-stream"
PGP_CONTENT_TYPE = "application/pgp-encrypted"
TEXT_FILE_ENCODING = "cp1252"


# ----------------------------------------------------------------------
# MIME helpers
# ----------------------------------------------------------------------


def find_single_part(message: EmailMessage, content_type: str) -> EmailMessage:
    """Return the only leaf part of *content_type*, attachments included."""
    parts = [
        part
        for part in message.walk()
        if not part.is_multipart() and part.get_content_type() == content_type
    ]
    if len(parts) != 1:
        raise MessageFormatError(f"expected exactly one {content_type} part, found {len(parts)}")
    return parts[0]


def part_bytes(part: EmailMessage) -> bytes:
    """Raw content of *part*, base64-decoded when the transfer encoding says so."""
    raw = part.get_payload(decode=False)
    if not isinstance(raw, str):
        raise MessageFormatError("part has no single payload")
    if str(part.get("Content-Transfer-Encoding", "")).strip().lower() == "base64":
        try:
            return base64.b64decode(raw)
        except (binascii.Error, ValueError) as exc:
            raise MessageFormatError(f"invalid base64 content: {exc}") from exc
    # undo the surrogate escapes the parser uses for 8bit bytes
    return raw.encode("utf-8", errors="surrogateescape")


def part_text(part: EmailMessage, encoding: str | None = None) -> str:
    """Quoted-printable decode *part*, guessing the codec from its charset."""
    raw = part.get_payload(decode=False)
    if not isinstance(raw, str):
        raise MessageFormatError("part has no single payload")
    return decode_quoted_printable(raw, encoding or guess_encoding(part.get_content_charset()))


def body_text(message: EmailMessage, subtype: str) -> str:
    part = message.get_body(preferencelist=(subtype,))
    text = part.get_content() if part is not None else None
    if not isinstance(text, str) or not text.strip():
        raise MessageFormatError(f"text/{subtype} body is missing or blank")
    return text


async def decrypt_part(decryptor: Decryptor, message: EmailMessage, content_type: str) -> str:
    part = find_single_part(message, content_type)
    return await decryptor.decrypt(part_bytes(part))


def parse_nested(plaintext: str) -> EmailMessage:
    return email.message_from_string(plaintext, policy=email.policy.default)


# ----------------------------------------------------------------------
# Structured processors
# ----------------------------------------------------------------------


class PlainProcessor(MailProcessor):
    """Evaluates the unencrypted plain-text body."""

    subtype = "plain"

    def __init__(self, evaluator: OperationEvaluator, publisher: OperationPublisher) -> None:
        self._evaluator = evaluator
        self._publisher = publisher

    async def process(self, message: FetchedEmail, site: Site) -> None:
        text = body_text(message.message, self.subtype)
        operation = self._evaluator.evaluate(text)
        await self._publisher.publish(operation, site)


class PlainHtmlProcessor(PlainProcessor):
    """Evaluates the unencrypted HTML body."""

    subtype = "html"


class _FallbackProcessor(MailProcessor):
    """Runs :meth:`_process`, handing the message to *fallback* on any error."""

    def __init__(self, fallback: MailProcessor) -> None:
        self._fallback = fallback

    async def process(self, message: FetchedEmail, site: Site) -> None:
        try:
            await self._process(message, site)
        except Exception:
            logger.exception(
                "processor_failed",
                processor=type(self).__name__,
                fallback=type(self._fallback).__name__,
                uid=message.uid,
            )
            await self._fallback.process(message, site)

    @abc.abstractmethod
    async def _process(self, message: FetchedEmail, site: Site) -> None: ...


class EncryptedProcessor(_FallbackProcessor):
    """Decrypts the ``application/octet-stream`` part, which holds a nested
    MIME message, and evaluates its quoted-printable text part."""

    inner_content_type = "text/plain"

    def __init__(
        self,
        decryptor: Decryptor,
        evaluator: OperationEvaluator,
        publisher: OperationPublisher,
        fallback: MailProcessor | None = None,
    ) -> None:
        super().__init__(fallback or PlainProcessor(evaluator, publisher))
        self._decryptor = decryptor
        self._evaluator = evaluator
        self._publisher = publisher

    async def _process(self, message: FetchedEmail, site: Site) -> None:
        plaintext = await decrypt_part(self._decryptor, message.message, ENCRYPTED_CONTENT_TYPE)
        inner = find_single_part(parse_nested(plaintext), self.inner_content_type)
        operation = self._evaluator.evaluate(part_text(inner))
        await self._publisher.publish(operation, site)


class EncryptedHtmlProcessor(EncryptedProcessor):
    inner_content_type = "text/html"

    def __init__(
        self,
        decryptor: Decryptor,
        evaluator: OperationEvaluator,
        publisher: OperationPublisher,
    ) -> None:
        super().__init__(decryptor, evaluator, publisher, PlainHtmlProcessor(evaluator, publisher))


class PgpAttachmentProcessor(_FallbackProcessor):
    """Decrypts the ``application/pgp-encrypted`` part and evaluates the
    plaintext as is."""

    def __init__(
        self,
        decryptor: Decryptor,
        evaluator: OperationEvaluator,
        publisher: OperationPublisher,
    ) -> None:
        super().__init__(PlainProcessor(evaluator, publisher))
        self._decryptor = decryptor
        self._evaluator = evaluator
        self._publisher = publisher

    async def _process(self, message: FetchedEmail, site: Site) -> None:
        plaintext = await decrypt_part(self._decryptor, message.message, PGP_CONTENT_TYPE)
        operation = self._evaluator.evaluate(plaintext)
        await self._publisher.publish(operation, site)


# ----------------------------------------------------------------------
# File processors
# ----------------------------------------------------------------------


def write_exclusive(directory: Path, stem: str, suffix: str, data: bytes) -> Path:
    """Create a new file ``<stem><suffix>``, adding ``_<n>`` on name clashes."""
    counter = 0
    while True:
        name = f"{stem}{suffix}" if counter == 0 else f"{stem}_{counter}{suffix}"
        path = directory / name
        try:
            with open(path, "xb") as handle:
                handle.write(data)
        except FileExistsError:
            counter += 1
            continue
        return path


class _FileProcessor(MailProcessor):
    def __init__(
        self,
        decryptor: Decryptor,
        output_path: Path,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._decryptor = decryptor
        self._output_path = Path(output_path)
        self._clock = clock

    def _stem(self, prefix: str) -> str:
        return f"{prefix}_{self._clock():%Y%m%d%H%M%S}"

    async def _write(self, prefix: str, suffix: str, data: bytes, site: Site) -> Path:
        path = await asyncio.to_thread(
            write_exclusive, self._output_path, self._stem(prefix), suffix, data
        )
        logger.info("alarm_file_written", site=site.name, path=str(path), size_bytes=len(data))
        return path


class DocumentProcessor(_FileProcessor):
    """Writes the encrypted alarm printout (a PDF) to the output directory."""

    async def process(self, message: FetchedEmail, site: Site) -> None:
        plaintext = await decrypt_part(self._decryptor, message.message, ENCRYPTED_CONTENT_TYPE)
        document = find_single_part(parse_nested(plaintext), ENCRYPTED_CONTENT_TYPE)
        await self._write("Alarmdruck", ".pdf", part_bytes(document), site)


class TextProcessor(_FileProcessor):
    """Writes the decrypted alarm text to the output directory."""

    async def process(self, message: FetchedEmail, site: Site) -> None:
        plaintext = await decrypt_part(self._decryptor, message.message, ENCRYPTED_CONTENT_TYPE)
        text_part = find_single_part(parse_nested(plaintext), "text/plain")
        text = part_text(text_part, TEXT_FILE_ENCODING)
        await self._write("Alarm", ".txt", text.encode("utf-8"), site)


def create_processor(
    mode: ProcessMode,
    *,
    evaluator: OperationEvaluator,
    publisher: OperationPublisher,
    decryptor: Decryptor | None,
    output_path: Path,
) -> MailProcessor:
    """Build the processor for *mode*."""
    if mode is ProcessMode.PLAIN:
        return PlainProcessor(evaluator, publisher)
    if mode is ProcessMode.PLAIN_HTML:
        return PlainHtmlProcessor(evaluator, publisher)

    if decryptor is None:
        raise ValueError(f"process mode {mode.value!r} needs a decryptor")
    if mode is ProcessMode.ENCRYPTED:
        return EncryptedProcessor(decryptor, evaluator, publisher)
    if mode is ProcessMode.ENCRYPTED_HTML:
        return EncryptedHtmlProcessor(decryptor, evaluator, publisher)
    if mode is ProcessMode.PGP_ATTACHMENT:
        return PgpAttachmentProcessor(decryptor, evaluator, publisher)
    if mode is ProcessMode.DOCUMENT:
        return DocumentProcessor(decryptor, output_path)
    if mode is ProcessMode.TEXT:
        return TextProcessor(decryptor, output_path)
    raise ValueError(f"unsupported process mode {mode!r}")
