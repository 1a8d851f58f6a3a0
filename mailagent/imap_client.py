"""Async IMAP session wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import ssl

import structlog

from .errors import MailSessionError
from .interface import MailSession
from .models import FetchedEmail

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 100.0

# socket timeouts surface as TimeoutError, a subclass of OSError
_IO_ERRORS = (imaplib.IMAP4.error, OSError)


def _xoauth2_string(username: str, token: str) -> bytes:
    return f"user={username}\x01auth=Bearer {token}\x01\x01".encode()


class ImapSession(MailSession):
    """Async-friendly IMAP session on the INBOX folder.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop. Messages are
    fetched with ``BODY.PEEK[]`` so listing never flags them as seen.
    Every socket operation is bounded by *timeout* seconds, so a silent
    server fails the call instead of holding the poller's lock.
    """

    def __init__(
        self,
        *,
        use_ssl: bool = True,
        ignore_certificate_errors: bool = False,
        mailbox: str = "INBOX",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._use_ssl = use_ssl
        self._ignore_certificate_errors = ignore_certificate_errors
        self._mailbox = mailbox
        self._timeout = timeout
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        secret: str,
        *,
        oauth: bool = False,
    ) -> None:
        logger.debug("imap_connecting", host=host, port=port, username=username)
        await asyncio.to_thread(self._connect_sync, host, port, username, secret, oauth)
        logger.info("imap_connected", host=host, username=username)

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self._ignore_certificate_errors:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _open(self, host: str, port: int) -> imaplib.IMAP4:
        if self._use_ssl:
            return imaplib.IMAP4_SSL(
                host, port, ssl_context=self._ssl_context(), timeout=self._timeout
            )
        return imaplib.IMAP4(host, port, timeout=self._timeout)

    def _connect_sync(
        self,
        host: str,
        port: int,
        username: str,
        secret: str,
        oauth: bool,
    ) -> None:
        try:
            conn = self._open(host, port)
        except _IO_ERRORS as exc:
            raise MailSessionError(f"cannot connect to {host}:{port}: {exc}") from exc

        try:
            if oauth:
                conn.authenticate("XOAUTH2", lambda _: _xoauth2_string(username, secret))
            else:
                conn.login(username, secret)
            status, _ = conn.select(self._mailbox)
            if status != "OK":
                raise MailSessionError(f"cannot select mailbox {self._mailbox!r} on {host}")
        except _IO_ERRORS as exc:
            self._abandon(conn)
            raise MailSessionError(f"cannot log in to {host}:{port} as {username}: {exc}") from exc
        except MailSessionError:
            self._abandon(conn)
            raise
        self._conn = conn

    @staticmethod
    def _abandon(conn: imaplib.IMAP4) -> None:
        """Release the socket of a connection that never became usable."""
        try:
            conn.logout()
        except _IO_ERRORS:
            try:
                conn.shutdown()
            except _IO_ERRORS:
                pass

    async def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except _IO_ERRORS:
            pass
        try:
            self._conn.logout()
        except _IO_ERRORS:
            pass

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def list_unseen(self) -> list[FetchedEmail]:
        return await asyncio.to_thread(self._list_unseen_sync)

    async def mark_seen(self, uid: str) -> None:
        await asyncio.to_thread(self._mark_seen_sync, uid)
        logger.debug("imap_marked_seen", uid=uid)

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise MailSessionError("IMAP session is not connected")
        return self._conn

    def _list_unseen_sync(self) -> list[FetchedEmail]:
        conn = self._require_conn()
        try:
            status, data = conn.uid("SEARCH", None, "UNSEEN")
            if status != "OK":
                raise MailSessionError(f"UNSEEN search failed: {data!r}")
            if not data or not data[0]:
                return []

            results: list[FetchedEmail] = []
            for uid_bytes in data[0].split():
                uid = uid_bytes.decode()
                status, msg_data = conn.uid("FETCH", uid, "(BODY.PEEK[])")
                if status != "OK":
                    raise MailSessionError(f"FETCH of UID {uid} failed")
                raw_bytes = next(
                    (item[1] for item in msg_data or [] if isinstance(item, tuple)),
                    None,
                )
                if raw_bytes is None:
                    # expunged between SEARCH and FETCH
                    continue
                results.append(FetchedEmail(uid=uid, raw_bytes=raw_bytes))
        except _IO_ERRORS as exc:
            raise MailSessionError(f"listing unseen messages failed: {exc}") from exc

        logger.debug("imap_unseen_listed", count=len(results))
        return results

    def _mark_seen_sync(self, uid: str) -> None:
        conn = self._require_conn()
        try:
            status, data = conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        except _IO_ERRORS as exc:
            raise MailSessionError(f"cannot flag UID {uid} as seen: {exc}") from exc
        if status != "OK":
            raise MailSessionError(f"cannot flag UID {uid} as seen: {data!r}")
