"""Tests for provider failure classification."""

import json

import pytest

from knowledgeoracle.infra.providers.errors import (
    ContextLengthError,
    FatalProviderError,
    ModelUnavailableError,
    TransientProviderError,
    UnsupportedParameterError,
    clamp,
    classify_failure,
    extract_message,
)


def _body(message: str, **extra) -> str:
    return json.dumps({"error": {"message": message, **extra}})


class TestExtractMessage:
    def test_nested_error_message(self):
        assert extract_message(_body("bad thing")) == "bad thing"

    def test_top_level_message(self):
        assert extract_message('{"message": "oops"}') == "oops"

    def test_error_description(self):
        assert extract_message('{"error_description": "denied"}') == "denied"

    def test_string_error(self):
        assert extract_message('{"error": "plain"}') == "plain"

    def test_plain_text(self):
        assert extract_message("Service Unavailable") == "Service Unavailable"

    def test_empty(self):
        assert extract_message("") == ""


class TestClassifyFailure:
    @pytest.mark.parametrize("status", [401, 403, 429])
    def test_fatal_statuses(self, status):
        err = classify_failure(status, _body("whatever"))
        assert isinstance(err, FatalProviderError)

    def test_429_defaults_to_rate_limited(self):
        assert classify_failure(429, "slow down").code == "rate_limited"

    def test_401_defaults_to_invalid_key(self):
        assert classify_failure(401, "nope").code == "invalid_api_key"

    def test_quota_message_is_fatal_on_any_status(self):
        err = classify_failure(400, _body("You exceeded your current quota"))
        assert isinstance(err, FatalProviderError)
        assert err.code == "quota_exceeded"

    def test_unsupported_parameter_from_param_field(self):
        err = classify_failure(
            400, _body("Unsupported parameter: 'temperature' is not supported", param="temperature")
        )
        assert isinstance(err, UnsupportedParameterError)
        assert err.parameter == "temperature"

    def test_unsupported_parameter_from_message(self):
        err = classify_failure(400, _body("Unsupported value: 'reasoning.effort' does not support 'minimal'"))
        assert isinstance(err, UnsupportedParameterError)
        assert err.parameter == "reasoning.effort"

    def test_missing_model(self):
        err = classify_failure(404, _body("The model `gpt-9` does not exist"))
        assert isinstance(err, ModelUnavailableError)
        assert err.code == "model"

    def test_context_length(self):
        err = classify_failure(400, _body("This model's maximum context length is 8192 tokens"))
        assert isinstance(err, ContextLengthError)

    def test_server_error_is_transient(self):
        err = classify_failure(502, "Bad Gateway")
        assert isinstance(err, TransientProviderError)
        assert err.code == "unknown"
        assert err.status == 502

    def test_timeout_code(self):
        assert classify_failure(None, "upstream timed out").code == "timeout"

    def test_empty_body_gets_default_message(self):
        err = classify_failure(500, "")
        assert "unavailable" in err.message.lower()

    def test_raw_is_clamped(self):
        err = classify_failure(500, "x" * 2000)
        assert len(err.raw) <= 480
        assert len(err.message) <= 360


def test_clamp():
    assert clamp("short", 10) == "short"
    assert clamp("abcdefghij", 8) == "abcde..."
