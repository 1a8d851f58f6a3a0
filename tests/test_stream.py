"""Tests for mailagent.stream."""

from __future__ import annotations

import pytest

from mailagent.errors import MailSessionError
from mailagent.models import FetchedEmail
from mailagent.stream import MailItem, MailStream, StreamError


class TestMailStream:
    @pytest.mark.asyncio
    async def test_yields_items_in_order_until_completed(self, site):
        stream = MailStream()
        stream.emit(FetchedEmail(uid="1", raw_bytes=b""), site)
        stream.fail("wache-nord", MailSessionError("down"))
        stream.emit(FetchedEmail(uid="2", raw_bytes=b""), site)
        stream.complete()

        events = [event async for event in stream]

        assert isinstance(events[0], MailItem) and events[0].message.uid == "1"
        assert isinstance(events[1], StreamError) and events[1].mailbox == "wache-nord"
        assert isinstance(events[2], MailItem) and events[2].message.uid == "2"
        assert len(events) == 3

    def test_emit_after_complete_rejected(self, site):
        stream = MailStream()
        stream.complete()
        with pytest.raises(RuntimeError):
            stream.emit(FetchedEmail(uid="1", raw_bytes=b""), site)

    def test_complete_is_idempotent(self):
        stream = MailStream()
        stream.complete()
        stream.complete()
        assert stream.completed
        assert stream.qsize() == 1

    def test_fail_after_complete_ignored(self):
        stream = MailStream()
        stream.complete()
        stream.fail("wache-nord", MailSessionError("down"))
        assert stream.qsize() == 1
