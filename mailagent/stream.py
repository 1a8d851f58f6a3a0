"""Fan-in stream shared by all mailbox pollers and read by the agent."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

from .models import FetchedEmail, Site


@dataclass(frozen=True)
class MailItem:
    message: FetchedEmail
    site: Site


@dataclass(frozen=True)
class StreamError:
    """An unrecoverable failure of one mailbox; other mailboxes keep running."""

    mailbox: str
    error: BaseException


@dataclass(frozen=True)
class StreamCompleted:
    pass


StreamEvent = MailItem | StreamError | StreamCompleted


class MailStream:
    """Multi-producer, single-consumer queue of :data:`StreamEvent`.

    Iteration yields items and errors and ends after :meth:`complete`.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def emit(self, message: FetchedEmail, site: Site) -> None:
        if self._completed:
            raise RuntimeError("stream already completed")
        self._queue.put_nowait(MailItem(message, site))

    def fail(self, mailbox: str, error: BaseException) -> None:
        if not self._completed:
            self._queue.put_nowait(StreamError(mailbox, error))

    def complete(self) -> None:
        if not self._completed:
            self._completed = True
            self._queue.put_nowait(StreamCompleted())

    def qsize(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[MailItem | StreamError]:
        while True:
            event = await self._queue.get()
            if isinstance(event, StreamCompleted):
                return
            yield event
