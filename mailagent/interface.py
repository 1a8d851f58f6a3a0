"""Collaborator interfaces the polling pipeline depends on."""

from __future__ import annotations

import abc

from .models import FetchedEmail, Operation, Site


class MailSession(abc.ABC):
    """An authenticated handle to one mailbox.

    Implementations must allow ``connect`` again after ``disconnect``;
    the poller reuses one session for error recovery and for the
    scheduled reconnect.
    """

    @abc.abstractmethod
    async def connect(
        self,
        host: str,
        port: int,
        username: str,
        secret: str,
        *,
        oauth: bool = False,
    ) -> None:
        """Connect and authenticate. *secret* is a password or, with
        ``oauth=True``, a bearer token."""

    @abc.abstractmethod
    async def disconnect(self) -> None: ...

    @abc.abstractmethod
    async def list_unseen(self) -> list[FetchedEmail]:
        """Return unseen messages in provider order without flagging them."""

    @abc.abstractmethod
    async def mark_seen(self, uid: str) -> None: ...


class Decryptor(abc.ABC):
    """Decrypts payloads with a passphrase held by the implementation."""

    @abc.abstractmethod
    async def decrypt(self, data: bytes) -> str:
        """Return the plaintext of *data*; raise ``DecryptionError`` on failure."""


class TokenProvider(abc.ABC):
    """Supplies bearer tokens for token-authenticated mailboxes."""

    @abc.abstractmethod
    async def get_token(self, username: str) -> str:
        """Return a valid access token; raise ``AuthenticationError`` if none."""


class OperationPublisher(abc.ABC):
    @abc.abstractmethod
    async def publish(self, operation: Operation, site: Site) -> bool:
        """Deliver *operation* for *site*; return ``False`` on failure."""


class MailProcessor(abc.ABC):
    """Turns one accepted message into a published operation or a file.

    Exactly one processor is active per deployment, selected by the
    configured process mode.
    """

    @abc.abstractmethod
    async def process(self, message: FetchedEmail, site: Site) -> None:
        """Handle *message* for *site*; raise if it cannot be handled."""
