"""MailboxPoller: periodic fetch / filter / dedup for one mailbox.

Each poller owns one :class:`MailSession` and runs two periodic tasks
against it, a poll cycle and a forced reconnect cycle. Both take the
poller's lock before touching the session, so they never overlap.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from .config import MIN_POLL_INTERVAL_SECONDS, AuthenticationType, MailboxConfig
from .errors import AuthenticationError
from .interface import MailSession, TokenProvider
from .models import FetchedEmail, PollerState, Site
from .stream import MailStream

logger = structlog.get_logger()

MESSAGE_MAX_AGE = timedelta(minutes=15)
SUPPRESSION_WINDOW = timedelta(minutes=5)
RETENTION_WINDOW = timedelta(minutes=10)
DEFAULT_RECONNECT_INTERVAL_SECONDS = 3600.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SeenCache:
    """Identifiers recently accepted by one mailbox, oldest first."""

    def __init__(
        self,
        *,
        suppression: timedelta = SUPPRESSION_WINDOW,
        retention: timedelta = RETENTION_WINDOW,
    ) -> None:
        self._suppression = suppression
        self._retention = retention
        self._entries: OrderedDict[str, datetime] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, uid: object) -> bool:
        return uid in self._entries

    def evict_expired(self, now: datetime) -> int:
        evicted = 0
        while self._entries:
            seen_at = next(iter(self._entries.values()))
            if abs(now - seen_at) <= self._retention:
                break
            self._entries.popitem(last=False)
            evicted += 1
        return evicted

    def seen_at(self, uid: str) -> datetime | None:
        return self._entries.get(uid)

    def is_suppressed(self, uid: str, now: datetime) -> bool:
        seen_at = self._entries.get(uid)
        return seen_at is not None and abs(now - seen_at) <= self._suppression

    def record(self, uid: str, now: datetime) -> None:
        # re-recording moves the entry to the back to keep time order
        self._entries.pop(uid, None)
        self._entries[uid] = now


class MailboxPoller:
    """Polls one mailbox and emits accepted messages on a shared stream.

    Filtering per poll cycle, in order: messages sent more than 15
    minutes from now are flagged seen and dropped; identifiers accepted
    within the last 5 minutes are dropped; then the optional sender and
    subject substring filters apply. Survivors are recorded, flagged seen
    and emitted once the cycle's session work is done.
    """

    def __init__(
        self,
        mailbox: MailboxConfig,
        session: MailSession,
        stream: MailStream,
        *,
        poll_interval_seconds: float,
        reconnect_interval_seconds: float = DEFAULT_RECONNECT_INTERVAL_SECONDS,
        token_provider: TokenProvider | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if poll_interval_seconds < MIN_POLL_INTERVAL_SECONDS:
            raise ValueError(
                f"poll interval {poll_interval_seconds}s is below the supported "
                f"minimum of {MIN_POLL_INTERVAL_SECONDS}s"
            )
        self.mailbox = mailbox
        self.site = Site(name=mailbox.name, api_key=mailbox.api_key)
        self.state: PollerState = PollerState.DISCONNECTED
        self.last_poll_time: datetime | None = None
        self.messages_emitted: int = 0

        self._session = session
        self._stream = stream
        self._poll_interval = poll_interval_seconds
        self._reconnect_interval = reconnect_interval_seconds
        self._token_provider = token_provider
        self._clock = clock
        self._seen = SeenCache()
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._watcher: asyncio.Task[None] | None = None
        self._log = logger.bind(mailbox=mailbox.name)

    @property
    def seen_cache(self) -> SeenCache:
        return self._seen

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Connect, then schedule the poll and reconnect cycles.

        Raises if the initial connect fails; nothing is scheduled then.
        """
        async with self._lock:
            await self._connect()
        self._stop_event.clear()
        self._watcher = asyncio.create_task(self._watch(shutdown_event))
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name=f"poll-{self.mailbox.name}"),
            asyncio.create_task(self._reconnect_loop(), name=f"reconnect-{self.mailbox.name}"),
        ]
        self._log.info(
            "mailbox_polling_started",
            poll_interval_seconds=self._poll_interval,
            reconnect_interval_seconds=self._reconnect_interval,
        )

    async def stop(self) -> None:
        """Stop scheduling, let an in-flight cycle finish, then disconnect."""
        self._stop_event.set()
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
        async with self._lock:
            try:
                await self._session.disconnect()
            except Exception:
                self._log.warning("mailbox_disconnect_failed", exc_info=True)
            self.state = PollerState.DISCONNECTED
        self._log.info("mailbox_polling_stopped")

    async def _watch(self, shutdown_event: asyncio.Event) -> None:
        await shutdown_event.wait()
        self._stop_event.set()

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return True if the poller is stopping."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Periodic activities
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while not await self._wait(self._poll_interval):
            await self.poll_once()

    async def _reconnect_loop(self) -> None:
        while not await self._wait(self._reconnect_interval):
            async with self._lock:
                await self._reconnect_or_fail(reason="scheduled")

    async def poll_once(self) -> list[FetchedEmail]:
        """Run one poll cycle and return the messages it emitted."""
        accepted: list[FetchedEmail] = []
        async with self._lock:
            self.state = PollerState.POLLING
            try:
                await self._collect(accepted)
                self.state = PollerState.IDLE
            except Exception as exc:
                self._log.error("mailbox_poll_failed", error=str(exc), exc_info=True)
                # recover while still holding the lock
                await self._reconnect_or_fail(reason="poll_failed")
            self.last_poll_time = self._clock()

        # accepted messages are already flagged seen, emit them even
        # when the cycle failed part way
        for message in accepted:
            self._stream.emit(message, self.site)
        self.messages_emitted += len(accepted)
        return accepted

    async def _collect(self, accepted: list[FetchedEmail]) -> None:
        now = self._clock()
        evicted = self._seen.evict_expired(now)
        if evicted:
            self._log.debug("seen_cache_evicted", count=evicted)

        messages = await self._session.list_unseen()
        self._log.debug("mailbox_unseen_listed", count=len(messages))

        for message in messages:
            sent_at = message.sent_at
            if sent_at is None or abs(now - sent_at) > MESSAGE_MAX_AGE:
                self._log.info(
                    "mail_outdated",
                    uid=message.uid,
                    subject=message.subject,
                    sent_at=sent_at.isoformat() if sent_at else None,
                )
                await self._session.mark_seen(message.uid)
                continue

            if self._seen.is_suppressed(message.uid, now):
                self._log.info(
                    "mail_already_processed",
                    uid=message.uid,
                    subject=message.subject,
                    seen_at=self._seen.seen_at(message.uid).isoformat(),
                )
                continue

            if not self._matches(self.mailbox.sender_filter, message.sender):
                self._log.info(
                    "mail_sender_filtered",
                    uid=message.uid,
                    subject=message.subject,
                    sender=message.sender,
                )
                continue

            if not self._matches(self.mailbox.subject_filter, message.subject):
                self._log.info("mail_subject_filtered", uid=message.uid, subject=message.subject)
                continue

            self._seen.record(message.uid, now)
            await self._session.mark_seen(message.uid)
            accepted.append(message)
            self._log.debug("mail_accepted", uid=message.uid, subject=message.subject)

    @staticmethod
    def _matches(needle: str, haystack: str) -> bool:
        return not needle or needle.casefold() in haystack.casefold()

    # ------------------------------------------------------------------
    # Connection handling (callers hold the lock)
    # ------------------------------------------------------------------

    async def _credential(self) -> str:
        if self.mailbox.authentication_type is AuthenticationType.OAUTH:
            if self._token_provider is None:
                raise AuthenticationError(f"no token provider for mailbox {self.mailbox.name!r}")
            return await self._token_provider.get_token(self.mailbox.username)
        return self.mailbox.password.get_secret_value()

    async def _connect(self) -> None:
        self.state = PollerState.CONNECTING
        try:
            secret = await self._credential()
            await self._session.connect(
                self.mailbox.host,
                self.mailbox.port,
                self.mailbox.username,
                secret,
                oauth=self.mailbox.authentication_type is AuthenticationType.OAUTH,
            )
        except Exception:
            self.state = PollerState.FAILED
            raise
        self.state = PollerState.IDLE

    async def _reconnect_or_fail(self, *, reason: str) -> None:
        self.state = PollerState.RECONNECTING
        self._log.info("mailbox_reconnecting", reason=reason)
        try:
            try:
                await self._session.disconnect()
            except Exception:
                self._log.warning("mailbox_disconnect_failed", exc_info=True)
            await self._connect()
        except Exception as exc:
            self._log.error("mailbox_reconnect_failed", reason=reason, error=str(exc), exc_info=True)
            self._stream.fail(self.mailbox.name, exc)
            return
        self._log.info("mailbox_reconnected", reason=reason)

    def health(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "last_poll_time": self.last_poll_time.isoformat() if self.last_poll_time else None,
            "messages_emitted": self.messages_emitted,
            "seen_cache_size": len(self._seen),
        }
