"""
Unit tests for config.defaults module and the phased load_config.

Tests cover:
- Server bind overrides (SALESVOICE_HOST / SALESVOICE_PORT)
- Conversation overrides (QUESTION_THRESHOLD / WORDS_PER_SECOND)
- Logging level default
- End-to-end load_config with YAML, environment and validation
"""

import pytest
from pydantic import ValidationError

from salesvoice.config import AppConfig, load_config, validate_runtime_config
from salesvoice.config.defaults import (
    apply_conversation_defaults,
    apply_logging_defaults,
    apply_server_defaults,
)

_ENV_VARS = (
    "SALESVOICE_HOST",
    "SALESVOICE_PORT",
    "QUESTION_THRESHOLD",
    "WORDS_PER_SECOND",
    "LOG_LEVEL",
    "OPENAI_API_KEY",
    "DEEPGRAM_API_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestApplyServerDefaults:
    def test_no_env_leaves_yaml_values(self):
        config_data = {"server": {"port": 4000}}
        apply_server_defaults(config_data)
        assert config_data["server"] == {"port": 4000}

    def test_env_overrides_host_and_port(self, monkeypatch):
        monkeypatch.setenv("SALESVOICE_HOST", "127.0.0.1")
        monkeypatch.setenv("SALESVOICE_PORT", "8081")

        config_data = {"server": {"port": 4000}}
        apply_server_defaults(config_data)

        assert config_data["server"]["host"] == "127.0.0.1"
        assert config_data["server"]["port"] == 8081

    def test_invalid_port_ignored(self, monkeypatch):
        monkeypatch.setenv("SALESVOICE_PORT", "not-a-port")

        config_data = {}
        apply_server_defaults(config_data)

        assert "port" not in config_data["server"]


class TestApplyConversationDefaults:
    def test_env_overrides_threshold_and_rate(self, monkeypatch):
        monkeypatch.setenv("QUESTION_THRESHOLD", "5")
        monkeypatch.setenv("WORDS_PER_SECOND", "3.5")

        config_data = {"conversation": {"question_threshold": 6}}
        apply_conversation_defaults(config_data)

        assert config_data["conversation"]["question_threshold"] == 5
        assert config_data["conversation"]["words_per_second"] == 3.5

    def test_invalid_values_ignored(self, monkeypatch):
        monkeypatch.setenv("QUESTION_THRESHOLD", "five")
        monkeypatch.setenv("WORDS_PER_SECOND", "fast")

        config_data = {}
        apply_conversation_defaults(config_data)

        assert config_data["conversation"] == {}


class TestApplyLoggingDefaults:
    def test_yaml_level_kept(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        config_data = {"logging": {"level": "warning"}}
        apply_logging_defaults(config_data)
        assert config_data["logging"]["level"] == "warning"

    def test_env_level_used_when_missing(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        config_data = {}
        apply_logging_defaults(config_data)
        assert config_data["logging"]["level"] == "debug"


class TestLoadConfig:
    def test_load_bundled_config(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
        monkeypatch.setenv("DEEPGRAM_API_KEY", "dg-test-key")

        config = load_config()

        assert isinstance(config, AppConfig)
        assert config.openai.api_key == "sk-test-key"
        assert config.deepgram.api_key == "dg-test-key"
        assert config.conversation.question_threshold == 6
        assert config.default_scenario.product == "high-end wooden furniture"
        assert validate_runtime_config(config)[0] == []

    def test_missing_file_falls_back_to_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUESTION_THRESHOLD", "5")

        config = load_config(str(tmp_path / "absent.yaml"))

        assert config.server.port == 3000
        assert config.conversation.question_threshold == 5
        assert config.openai.chat_model == "gpt-4"
        assert config.default_scenario.persona.buyer_type == "consumer"

    def test_business_default_scenario_from_yaml(self, tmp_path):
        config_file = tmp_path / "salesvoice.yaml"
        config_file.write_text(
            """
default_scenario:
  persona:
    buyer_type: business
    job_title: IT Director
    priorities: [security, uptime]
  product: managed firewalls
  industry: healthcare
  difficulty: hard
"""
        )

        config = load_config(str(config_file))

        assert config.default_scenario.persona.job_title == "IT Director"
        assert config.default_scenario.persona.priorities == ("security", "uptime")

    def test_invalid_threshold_rejected(self, tmp_path):
        config_file = tmp_path / "salesvoice.yaml"
        config_file.write_text("conversation:\n  question_threshold: 0\n")

        with pytest.raises(ValidationError):
            load_config(str(config_file))

    def test_missing_keys_are_runtime_errors(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"))

        errors, _ = validate_runtime_config(config)

        assert any("OPENAI_API_KEY" in e for e in errors)
        assert any("DEEPGRAM_API_KEY" in e for e in errors)
