"""Mail agent: turns alarm e-mails into operations or alarm files.

Public API re-exported here for convenience::

    from mailagent import AgentConfig, MailAgent, OperationEvaluator
"""

from .agent import MailAgent
from .config import (
    AgentConfig,
    AuthenticationType,
    ExtractionPatterns,
    HeartbeatConfig,
    MailboxConfig,
    OAuthConfig,
    PatternField,
    ProcessMode,
    PublishConfig,
    RetryConfig,
)
from .errors import (
    AgentStartupError,
    AuthenticationError,
    DecryptionError,
    MailAgentError,
    MailSessionError,
    MessageFormatError,
)
from .extraction import OperationEvaluator
from .interface import (
    Decryptor,
    MailProcessor,
    MailSession,
    OperationPublisher,
    TokenProvider,
)
from .models import (
    Address,
    AgentStatus,
    FetchedEmail,
    Operation,
    OperationProperty,
    PollerState,
    Position,
    Reporter,
    Site,
)
from .poller import MailboxPoller, SeenCache
from .processors import create_processor
from .quoted_printable import decode_quoted_printable, guess_encoding
from .stream import MailItem, MailStream, StreamCompleted, StreamError
from .validation import ConfigurationIssue, IssueSeverity, validate_config

__all__ = [
    "Address",
    "AgentConfig",
    "AgentStartupError",
    "AgentStatus",
    "AuthenticationError",
    "AuthenticationType",
    "ConfigurationIssue",
    "DecryptionError",
    "Decryptor",
    "ExtractionPatterns",
    "FetchedEmail",
    "HeartbeatConfig",
    "IssueSeverity",
    "MailAgent",
    "MailAgentError",
    "MailItem",
    "MailProcessor",
    "MailSession",
    "MailSessionError",
    "MailStream",
    "MailboxConfig",
    "MailboxPoller",
    "MessageFormatError",
    "OAuthConfig",
    "Operation",
    "OperationEvaluator",
    "OperationProperty",
    "OperationPublisher",
    "PatternField",
    "PollerState",
    "Position",
    "ProcessMode",
    "PublishConfig",
    "Reporter",
    "RetryConfig",
    "SeenCache",
    "Site",
    "StreamCompleted",
    "StreamError",
    "TokenProvider",
    "create_processor",
    "decode_quoted_printable",
    "guess_encoding",
    "validate_config",
]
