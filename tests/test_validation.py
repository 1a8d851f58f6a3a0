"""Tests for mailagent.validation."""

from __future__ import annotations

import pytest
from pydantic import SecretStr

from mailagent.config import AgentConfig, AuthenticationType, MailboxConfig, OAuthConfig, ProcessMode
from mailagent.validation import (
    IssueSeverity,
    has_errors,
    log_config_summary,
    log_issues,
    mask_email,
    validate_config,
)


def _messages(issues, severity: IssueSeverity) -> list[str]:
    return [issue.message for issue in issues if issue.severity is severity]


class TestValidateConfig:
    def test_valid_config_has_no_issues(self, agent_config: AgentConfig):
        assert validate_config(agent_config) == []

    def test_no_mailboxes(self, agent_config: AgentConfig):
        issues = validate_config(agent_config.model_copy(update={"mailboxes": []}))
        assert has_errors(issues)
        assert "No mailboxes configured." in _messages(issues, IssueSeverity.ERROR)

    def test_missing_host_username_password(self, agent_config: AgentConfig):
        config = agent_config.model_copy(update={"mailboxes": [MailboxConfig(name="leer")]})
        errors = _messages(validate_config(config), IssueSeverity.ERROR)
        assert any("host" in message for message in errors)
        assert any("username" in message for message in errors)
        assert any("password" in message for message in errors)

    def test_unnamed_mailbox_is_warning(self, agent_config: AgentConfig, mailbox_config: MailboxConfig):
        mailbox = mailbox_config.model_copy(update={"name": ""})
        issues = validate_config(agent_config.model_copy(update={"mailboxes": [mailbox]}))
        assert not has_errors(issues)
        assert _messages(issues, IssueSeverity.WARNING) == ["Mailbox has no name configured."]

    def test_oauth_needs_client_id(self, agent_config: AgentConfig):
        mailbox = MailboxConfig(
            name="o365",
            host="outlook.office365.com",
            username="alarm@example.com",
            authentication_type=AuthenticationType.OAUTH,
        )
        config = agent_config.model_copy(
            update={"mailboxes": [mailbox], "oauth": OAuthConfig(client_id=None)}
        )
        errors = _messages(validate_config(config), IssueSeverity.ERROR)
        assert len(errors) == 1
        assert "client_id" in errors[0]

    def test_oauth_with_other_host_warns(self, agent_config: AgentConfig):
        mailbox = MailboxConfig(
            name="o365",
            host="imap.example.com",
            username="alarm@example.com",
            authentication_type=AuthenticationType.OAUTH,
        )
        config = agent_config.model_copy(
            update={"mailboxes": [mailbox], "oauth": OAuthConfig(client_id="client-123")}
        )
        issues = validate_config(config)
        assert not has_errors(issues)
        assert "outlook.office365.com" in _messages(issues, IssueSeverity.WARNING)[0]

    def test_file_mode_needs_output_directory(self, agent_config: AgentConfig, tmp_path):
        config = agent_config.model_copy(
            update={
                "process_mode": ProcessMode.DOCUMENT,
                "output_path": tmp_path / "missing",
                "secret_key_passphrase": SecretStr("pw"),
            }
        )
        errors = _messages(validate_config(config), IssueSeverity.ERROR)
        assert len(errors) == 1
        assert "output_path" in errors[0]

    @pytest.mark.parametrize(
        "mode",
        [ProcessMode.ENCRYPTED, ProcessMode.ENCRYPTED_HTML, ProcessMode.PGP_ATTACHMENT, ProcessMode.TEXT],
    )
    def test_decrypting_mode_needs_passphrase(self, agent_config: AgentConfig, mode: ProcessMode):
        config = agent_config.model_copy(update={"process_mode": mode})
        errors = _messages(validate_config(config), IssueSeverity.ERROR)
        assert any("passphrase" in message for message in errors)


class TestMaskEmail:
    @pytest.mark.parametrize(
        ("address", "masked"),
        [
            ("jane.doe@example.com", "ja***@example.com"),
            ("jd@example.com", "j***@example.com"),
            ("localuser", "loc***"),
            ("abc", "***"),
            ("", "(not set)"),
        ],
    )
    def test_masking(self, address, masked):
        assert mask_email(address) == masked


class TestLogging:
    def test_log_helpers_do_not_raise(self, agent_config: AgentConfig):
        log_config_summary(agent_config)
        log_issues(validate_config(agent_config))
        log_issues(validate_config(agent_config.model_copy(update={"mailboxes": []})))
