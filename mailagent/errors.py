"""Exception hierarchy for the mail agent."""

from __future__ import annotations


class MailAgentError(Exception):
    """Base class for all mail agent errors."""


class MailSessionError(MailAgentError):
    """A mailbox protocol operation failed or the session is not connected."""


class AuthenticationError(MailAgentError):
    """No bearer token could be obtained for a mailbox identity."""


class DecryptionError(MailAgentError):
    """An encrypted payload could not be decrypted."""


class MessageFormatError(MailAgentError):
    """A message does not have the MIME structure a processor expects."""


class AgentStartupError(MailAgentError):
    """The agent cannot start (e.g. no mailbox could be connected)."""
