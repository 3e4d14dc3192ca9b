"""
Tests for viv_sdk.types module.

Tests pydantic model validation, wire aliases and ClientConfig defaults.
"""

import pytest
from pydantic import ValidationError

from viv_sdk.types import (
    ChatMessage,
    ClientConfig,
    CompletionRequest,
    CompletionResponse,
    EventKind,
    FunctionCallResultData,
    Record,
    StreamEvent,
)


class TestClientConfig:
    """Tests for ClientConfig model."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = ClientConfig(api_key="sk-test")

        assert config.base_url == "https://api.vivgrid.com/v1"
        assert config.max_retries == 3
        assert config.retry_delay == 1.0
        assert config.max_retry_delay == 30.0
        assert config.timeout == 600.0
        assert config.read_timeout == 60.0
        assert config.framing == "blank_line"
        assert config.extended_tags is False
        assert config.max_decode_errors == 16
        assert config.response_format == "vivgrid"
        assert config.default_headers == {}
        assert config.default_query == {}

    @pytest.mark.parametrize("field,value", [
        ("api_key", ""),
        ("max_retries", -1),
        ("timeout", 0),
        ("framing", "sse"),
        ("max_decode_errors", -5),
    ])
    def test_invalid_values(self, field, value):
        """Test that out-of-range settings are rejected."""
        values = {"api_key": "sk-test", field: value}
        with pytest.raises(ValidationError):
            ClientConfig(**values)

    def test_read_timeout_disabled(self):
        """Test that the idle timeout can be turned off."""
        assert ClientConfig(api_key="k", read_timeout=None).read_timeout is None

    def test_from_env(self, monkeypatch):
        """Test reading settings from the environment."""
        monkeypatch.setenv("VIV_API_KEY", "sk-env")
        monkeypatch.setenv("VIV_BASE_URL", "https://proxy.example.com/v1")

        config = ClientConfig.from_env(max_retries=0)

        assert config.api_key == "sk-env"
        assert config.base_url == "https://proxy.example.com/v1"
        assert config.max_retries == 0

    def test_from_env_overrides(self, monkeypatch):
        """Test that explicit values win over the environment."""
        monkeypatch.setenv("VIV_API_KEY", "sk-env")

        assert ClientConfig.from_env(api_key="sk-arg").api_key == "sk-arg"


class TestStreamModels:
    """Tests for protocol models."""

    def test_record_tag_is_one_character(self):
        """Test that multi-character tags are rejected."""
        with pytest.raises(ValidationError):
            Record(tag="cc", raw="x")

    def test_event_is_frozen(self):
        """Test that events cannot be mutated."""
        event = StreamEvent(kind=EventKind.CONTENT, data="a")
        with pytest.raises(ValidationError):
            event.data = "b"

    def test_event_kind_values(self):
        """Test the snake_case kind names."""
        assert EventKind("function_call") is EventKind.FUNCTION_CALL
        assert EventKind.FUNCTION_CALL_RESULT.value == "function_call_result"

    def test_function_result_alias(self):
        """Test that note is accepted under both names."""
        by_alias = FunctionCallResultData.model_validate(
            {"tool_call_id": "1", "name": "f", "result": "r", "ai_note": "n"}
        )
        by_name = FunctionCallResultData(tool_call_id="1", name="f", result="r", note="n")

        assert by_alias.note == by_name.note == "n"


class TestRequestModels:
    """Tests for request and response models."""

    def test_to_payload_drops_unset(self):
        """Test that unset optional fields are not sent."""
        request = CompletionRequest(messages=[{"role": "user", "content": "hi"}])

        assert request.to_payload() == {"messages": [{"role": "user", "content": "hi"}]}

    def test_to_payload_stream(self):
        """Test the stream flag and passthrough of unknown fields."""
        request = CompletionRequest(
            messages=[{"role": "user", "content": "hi"}],
            temperature=0.5,
            model="viv-1",
        )
        payload = request.to_payload(stream=True)

        assert payload["stream"] is True
        assert payload["temperature"] == 0.5
        assert payload["model"] == "viv-1"

    def test_invalid_role(self):
        """Test that unknown message roles are rejected."""
        with pytest.raises(ValidationError):
            ChatMessage(role="robot", content="beep")

    def test_response_text(self):
        """Test the first-choice text shortcut."""
        response = CompletionResponse.model_validate(
            {"choices": [{"message": {"role": "assistant", "content": "hello"}}]}
        )

        assert response.text == "hello"
        assert CompletionResponse().text == ""
