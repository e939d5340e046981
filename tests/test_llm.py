"""Unit tests for model string parsing and model handles."""

from __future__ import annotations

import pytest
from pydantic_ai.models.openai import OpenAIModel

from agents.llm import build_model, parse_model_string


@pytest.mark.unit
class TestParseModelString:
    def test_hosted(self):
        assert parse_model_string("openai:gpt-4o-mini") == ("gpt-4o-mini", None)

    def test_local(self):
        assert parse_model_string("openai:qwen2.5-7b@http://localhost:1234/v1") == (
            "qwen2.5-7b",
            "http://localhost:1234/v1",
        )

    def test_local_loaded_model(self):
        assert parse_model_string("openai:@http://localhost:1234/v1") == ("", "http://localhost:1234/v1")

    def test_bare_name(self):
        assert parse_model_string("gpt-4o") == ("gpt-4o", None)

    @pytest.mark.parametrize("model_str", ["anthropic:claude-3-5-haiku", "google-gla:gemini-2.0-flash"])
    def test_rejects_providers_without_logprobs(self, model_str):
        with pytest.raises(ValueError, match="log-probabilities"):
            parse_model_string(model_str)


@pytest.mark.unit
class TestBuildModel:
    def test_hosted_client(self):
        model = build_model("openai:gpt-4o-mini", api_key="sk-test", timeout=12.0)

        assert model.name == "gpt-4o-mini"
        assert model.is_local is False
        assert model.label == "gpt-4o-mini"
        assert model.client.max_retries == 0
        assert model.client.timeout == 12.0

    def test_local_client(self):
        model = build_model("openai:@http://localhost:1234/v1")

        assert model.is_local is True
        assert str(model.client.base_url).startswith("http://localhost:1234/v1")
        assert model.client.max_retries == 0
        assert model.label == "<loaded>@http://localhost:1234/v1"

    def test_pydantic_ai_model_shares_client(self):
        model = build_model("openai:gpt-4o-mini", api_key="sk-test")
        wrapped = model.as_pydantic_ai()

        assert isinstance(wrapped, OpenAIModel)
        assert wrapped.model_name == "gpt-4o-mini"
        assert wrapped.client is model.client
