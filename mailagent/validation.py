"""Start-up checks for an :class:`AgentConfig`.

Pydantic already rejects malformed values (ports, poll interval,
patterns). The checks here cover combinations that are valid data but
cannot work at runtime, and print hints for fixing them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from .config import AgentConfig, AuthenticationType

logger = structlog.get_logger()

OFFICE365_HOST = "outlook.office365.com"


class IssueSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ConfigurationIssue:
    severity: IssueSeverity
    category: str
    message: str
    hint: str = ""


def validate_config(config: AgentConfig) -> list[ConfigurationIssue]:
    """Return every problem found in *config*; errors must abort start-up."""
    issues: list[ConfigurationIssue] = []

    if not config.mailboxes:
        issues.append(
            ConfigurationIssue(
                IssueSeverity.ERROR,
                "mailboxes",
                "No mailboxes configured.",
                "Add an entry to 'mailboxes' with name, host, username and authentication_type.",
            )
        )

    for index, mailbox in enumerate(config.mailboxes):
        category = f"mailboxes[{index}] ({mailbox.name})"

        if not mailbox.name.strip():
            issues.append(
                ConfigurationIssue(
                    IssueSeverity.WARNING,
                    category,
                    "Mailbox has no name configured.",
                    "Set 'name' to identify this mailbox in logs.",
                )
            )
        if not mailbox.host.strip():
            issues.append(
                ConfigurationIssue(
                    IssueSeverity.ERROR,
                    category,
                    "host is required but not configured.",
                    f"Set 'host' to your mail server, e.g. '{OFFICE365_HOST}' or 'imap.gmail.com'.",
                )
            )
        if not mailbox.username.strip():
            issues.append(
                ConfigurationIssue(
                    IssueSeverity.ERROR,
                    category,
                    "username is required but not configured.",
                    "Set 'username' to the mailbox address, e.g. 'user@company.com'.",
                )
            )

        if mailbox.authentication_type is AuthenticationType.BASIC:
            if not mailbox.password.get_secret_value().strip():
                issues.append(
                    ConfigurationIssue(
                        IssueSeverity.ERROR,
                        category,
                        "password is required for basic authentication but not configured.",
                        "Set 'password', or switch 'authentication_type' to 'oauth'.",
                    )
                )
            continue

        if not (config.oauth.client_id or "").strip():
            issues.append(
                ConfigurationIssue(
                    IssueSeverity.ERROR,
                    category,
                    "oauth.client_id is required for oauth authentication but not configured.",
                    "Set MAILAGENT_OAUTH_CLIENT_ID to the client id of your registered application.",
                )
            )
        if mailbox.host.strip() and OFFICE365_HOST not in mailbox.host.casefold():
            issues.append(
                ConfigurationIssue(
                    IssueSeverity.WARNING,
                    category,
                    f"host is set to '{mailbox.host}' but '{OFFICE365_HOST}' is recommended for oauth.",
                    f"Change 'host' to '{OFFICE365_HOST}' for Office 365 mailboxes.",
                )
            )

    if config.process_mode.writes_files and not config.output_path.is_dir():
        issues.append(
            ConfigurationIssue(
                IssueSeverity.ERROR,
                "output_path",
                f"output_path '{config.output_path}' does not exist or is not a directory.",
                f"Create the directory or point 'output_path' elsewhere for mode '{config.process_mode.value}'.",
            )
        )
    if config.process_mode.needs_decryption and not config.secret_key_passphrase.get_secret_value():
        issues.append(
            ConfigurationIssue(
                IssueSeverity.ERROR,
                "secret_key_passphrase",
                f"Process mode '{config.process_mode.value}' decrypts messages but no passphrase is set.",
                "Set 'secret_key_passphrase' to the passphrase of the private key.",
            )
        )

    return issues


def has_errors(issues: list[ConfigurationIssue]) -> bool:
    return any(issue.severity is IssueSeverity.ERROR for issue in issues)


def mask_email(address: str) -> str:
    """Shorten *address* for logs: ``jane.doe@example.com`` -> ``ja***@example.com``."""
    if not address.strip():
        return "(not set)"
    at = address.find("@")
    if at <= 0:
        return address[:3] + "***" if len(address) > 3 else "***"
    local, domain = address[:at], address[at:]
    return local[: 1 if len(local) <= 2 else 2] + "***" + domain


def log_config_summary(config: AgentConfig) -> None:
    logger.info(
        "config_summary",
        process_mode=config.process_mode.value,
        poll_interval_seconds=config.poll_interval_seconds,
        output_path=str(config.output_path),
        mailboxes=len(config.mailboxes),
    )
    for mailbox in config.mailboxes:
        logger.info(
            "config_mailbox",
            mailbox=mailbox.name,
            host=f"{mailbox.host}:{mailbox.port}",
            username=mask_email(mailbox.username),
            authentication_type=mailbox.authentication_type.value,
            credentials_set=bool(mailbox.password.get_secret_value().strip()),
        )


def log_issues(issues: list[ConfigurationIssue]) -> None:
    if not issues:
        logger.info("config_validation_passed")
        return
    for issue in issues:
        log = logger.error if issue.severity is IssueSeverity.ERROR else logger.warning
        log(
            "config_issue",
            category=issue.category,
            issue=issue.message,
            hint=issue.hint,
        )
