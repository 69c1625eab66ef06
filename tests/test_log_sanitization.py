"""
Log sanitization and correlation tests.

Verifies that provider credentials never reach log sinks and that the
session correlation id is attached to every event.
"""

import asyncio

import pytest

from salesvoice.logging_config import (
    add_correlation_id,
    add_service_context,
    get_correlation_id,
    sanitize_secrets,
    set_correlation_id,
)


class TestLogSanitization:
    """Tests for secret sanitization processor."""

    def test_redact_openai_key(self):
        event_dict = {"event": "OpenAI chat completion request", "api_key": "sk-1234567890abcdef"}
        result = sanitize_secrets(None, None, event_dict)

        assert result["api_key"] == "sk***REDACTED***"
        assert result["event"] == "OpenAI chat completion request"

    def test_redact_authorization_header(self):
        event_dict = {"headers": {"Authorization": "Token dg-abcdef123456", "Content-Type": "application/json"}}
        result = sanitize_secrets(None, None, event_dict)

        assert result["headers"]["Authorization"].startswith("To***REDACTED***")
        assert result["headers"]["Content-Type"] == "application/json"

    def test_short_values_fully_redacted(self):
        result = sanitize_secrets(None, None, {"token": "abc"})
        assert result["token"] == "***REDACTED***"

    def test_case_insensitive_and_suffix_matching(self):
        event_dict = {
            "OPENAI_API_KEY": "sk-test-value",
            "deepgram_api_key": "dg-test-value",
            "client-secret": "secret123",
        }
        result = sanitize_secrets(None, None, event_dict)

        assert all("REDACTED" in value for value in result.values())

    def test_preserve_conversation_fields(self):
        event_dict = {
            "session_id": "4f2c",
            "turn_count": 3,
            "preview": "What makes this chair special?",
            "total_tokens": 120,
        }
        result = sanitize_secrets(None, None, event_dict)

        assert result == event_dict

    def test_none_and_empty_values_preserved(self):
        result = sanitize_secrets(None, None, {"api_key": None, "password": ""})

        assert result["api_key"] is None
        assert result["password"] == ""

    def test_list_with_sensitive_data(self):
        result = sanitize_secrets(None, None, {"api_keys": ["sk-key1", "sk-key2"]})
        assert all("REDACTED" in key for key in result["api_keys"])

    def test_no_false_positive_on_passthrough(self):
        event_dict = {"passthrough_events": ["gpt_reply", "gpt_audio"]}
        result = sanitize_secrets(None, None, event_dict)
        assert result["passthrough_events"] == ["gpt_reply", "gpt_audio"]


class TestCorrelationContext:
    def test_correlation_id_added_when_set(self):
        async def scenario():
            set_correlation_id("conn-42")
            return add_correlation_id(None, None, {"event": "Final transcript"})

        result = asyncio.run(scenario())
        assert result["correlation_id"] == "conn-42"

    @pytest.mark.asyncio
    async def test_child_tasks_inherit_correlation_id(self):
        set_correlation_id("conn-7")

        async def child():
            return get_correlation_id()

        assert await asyncio.create_task(child()) == "conn-7"

    def test_generated_correlation_id(self):
        async def scenario():
            return set_correlation_id()

        value = asyncio.run(scenario())
        assert isinstance(value, str) and len(value) == 36

    def test_service_context(self):
        result = add_service_context(None, None, {"event": "x", "logger": "salesvoice.server"})

        assert result["service"] == "salesvoice"
        assert result["component"] == "salesvoice.server"
