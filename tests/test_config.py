"""Tests for mailagent.config."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from mailagent.config import (
    CONFIG_FILE_ENV,
    AgentConfig,
    AuthenticationType,
    ExtractionPatterns,
    HeartbeatConfig,
    MailboxConfig,
    PatternField,
    ProcessMode,
    PublishConfig,
)


@pytest.fixture(autouse=True)
def _no_settings_file(monkeypatch, tmp_path):
    monkeypatch.setenv(CONFIG_FILE_ENV, str(tmp_path / "missing.json"))


class TestAgentConfig:
    def test_defaults(self):
        cfg = AgentConfig()
        assert cfg.mailboxes == []
        assert cfg.poll_interval_seconds == 5
        assert cfg.reconnect_interval_seconds == 3600.0
        assert cfg.process_mode is ProcessMode.TEXT
        assert cfg.ignore_certificate_errors is False
        assert cfg.health_port == 8080
        assert cfg.publish.base_url == "https://connectapi.feuersoftware.com"
        assert cfg.heartbeat.timeout_seconds == 100.0
        assert cfg.oauth.client_id is None

    def test_poll_interval_below_minimum_rejected(self):
        with pytest.raises(ValidationError):
            AgentConfig(poll_interval_seconds=2)

    def test_poll_interval_minimum_accepted(self):
        assert AgentConfig(poll_interval_seconds=4).poll_interval_seconds == 4

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MAILAGENT_POLL_INTERVAL_SECONDS", "30")
        monkeypatch.setenv("MAILAGENT_PROCESS_MODE", "encrypted")
        monkeypatch.setenv("MAILAGENT_SECRET_KEY_PASSPHRASE", "s3cret")
        cfg = AgentConfig()
        assert cfg.poll_interval_seconds == 30
        assert cfg.process_mode is ProcessMode.ENCRYPTED
        assert cfg.secret_key_passphrase.get_secret_value() == "s3cret"

    def test_from_json_file(self, monkeypatch, tmp_path):
        settings = {
            "process_mode": "plain_html",
            "mailboxes": [
                {
                    "name": "wache",
                    "host": "outlook.office365.com",
                    "username": "alarm@example.com",
                    "authentication_type": "oauth",
                    "api_key": "k",
                }
            ],
            "patterns": {"keyword_pattern": "Stichwort: (.+)"},
        }
        path = tmp_path / "appsettings.json"
        path.write_text(json.dumps(settings), encoding="utf-8")
        monkeypatch.setenv(CONFIG_FILE_ENV, str(path))

        cfg = AgentConfig()
        assert cfg.process_mode is ProcessMode.PLAIN_HTML
        assert cfg.mailboxes[0].authentication_type is AuthenticationType.OAUTH
        assert cfg.mailboxes[0].port == 993
        assert cfg.patterns.keyword_pattern == "Stichwort: (.+)"

    def test_env_overrides_json_file(self, monkeypatch, tmp_path):
        path = tmp_path / "appsettings.json"
        path.write_text(json.dumps({"poll_interval_seconds": 10}), encoding="utf-8")
        monkeypatch.setenv(CONFIG_FILE_ENV, str(path))
        monkeypatch.setenv("MAILAGENT_POLL_INTERVAL_SECONDS", "20")
        assert AgentConfig().poll_interval_seconds == 20


class TestMailboxConfig:
    def test_defaults(self):
        cfg = MailboxConfig()
        assert cfg.port == 993
        assert cfg.authentication_type is AuthenticationType.BASIC
        assert cfg.subject_filter == ""
        assert cfg.password.get_secret_value() == ""

    def test_invalid_port(self):
        with pytest.raises(ValidationError):
            MailboxConfig(port=70000)

    def test_secrets_hidden_in_repr(self):
        cfg = MailboxConfig(password="hunter2", api_key="key")
        assert "hunter2" not in repr(cfg)


class TestExtractionPatterns:
    def test_empty_patterns_allowed(self):
        assert ExtractionPatterns().keyword_pattern == ""

    def test_pattern_without_group_rejected(self):
        with pytest.raises(ValidationError, match="capture group"):
            ExtractionPatterns(keyword_pattern=r"Stichwort: .+")

    def test_invalid_pattern_rejected(self):
        with pytest.raises(ValidationError, match="invalid pattern"):
            ExtractionPatterns(street_pattern=r"Strasse: (.+")

    def test_additional_property_checked(self):
        with pytest.raises(ValidationError):
            ExtractionPatterns(additional_properties=[PatternField(name="x", pattern="no group")])


class TestProcessMode:
    @pytest.mark.parametrize(
        ("mode", "needs_decryption", "writes_files"),
        [
            (ProcessMode.PLAIN, False, False),
            (ProcessMode.PLAIN_HTML, False, False),
            (ProcessMode.ENCRYPTED, True, False),
            (ProcessMode.ENCRYPTED_HTML, True, False),
            (ProcessMode.PGP_ATTACHMENT, True, False),
            (ProcessMode.DOCUMENT, True, True),
            (ProcessMode.TEXT, True, True),
        ],
    )
    def test_properties(self, mode, needs_decryption, writes_files):
        assert mode.needs_decryption is needs_decryption
        assert mode.writes_files is writes_files


class TestSectionConfigs:
    def test_publish_from_env(self, monkeypatch):
        monkeypatch.setenv("MAILAGENT_PUBLISH_BASE_URL", "http://connect.local")
        assert PublishConfig().base_url == "http://connect.local"

    def test_heartbeat_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            HeartbeatConfig(interval_seconds=0)
