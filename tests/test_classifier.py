"""Unit tests for the policy classifier and its category fan-out."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import openai
import pytest

from agents.classifier import (
    build_system_prompt,
    build_user_message,
    classify,
    classify_all,
    confidence_from_logprobs,
)
from agents.llm import LanguageModel
from errors import GenerationFailure
from policies import POLICY_CATALOG
from conftest import CREATED_AT, FAKE_MODEL_ID, FakeOpenAIClient, label_responder, make_completion

WEAPONS = POLICY_CATALOG["weapons"]


def _model(responder) -> LanguageModel:
    return LanguageModel(name="gpt-4o-mini", client=FakeOpenAIClient(responder))


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("error", response=response, body=None)


# =============================================================================
# Prompt construction
# =============================================================================


@pytest.mark.unit
class TestPrompts:
    def test_system_prompt_embeds_label_and_examples(self):
        prompt = build_system_prompt(WEAPONS)
        assert f"<criteria>{WEAPONS.label}</criteria>" in prompt
        assert f"<examples>{WEAPONS.examples}</examples>" in prompt
        assert "not enough information" in prompt

    def test_user_message_omits_permalink(self, product):
        payload = json.loads(build_user_message(product))
        assert payload == {
            "product": {
                "name": product.name,
                "description": product.description,
                "short_description": product.short_description,
            }
        }
        assert product.permalink not in build_user_message(product)


# =============================================================================
# Confidence extraction
# =============================================================================


@pytest.mark.unit
class TestConfidence:
    def test_matching_token_probability(self):
        tokens = [SimpleNamespace(token="true", logprob=0.0)]
        assert confidence_from_logprobs(tokens, True) == pytest.approx(1.0)

    def test_uses_first_matching_token(self):
        tokens = [
            SimpleNamespace(token="false", logprob=-0.5),
            SimpleNamespace(token="false", logprob=-3.0),
        ]
        assert confidence_from_logprobs(tokens, False) == pytest.approx(0.6065, abs=1e-4)

    def test_ignores_other_boolean(self):
        tokens = [SimpleNamespace(token="false", logprob=-0.1)]
        assert confidence_from_logprobs(tokens, True) == 0.0

    def test_token_must_match_exactly(self):
        tokens = [SimpleNamespace(token=" true", logprob=-0.1)]
        assert confidence_from_logprobs(tokens, True) == 0.0

    @pytest.mark.parametrize("logprobs", [None, []])
    def test_missing_logprobs_is_zero(self, logprobs):
        assert confidence_from_logprobs(logprobs, True) == 0.0


# =============================================================================
# classify
# =============================================================================


@pytest.mark.unit
class TestClassify:
    async def test_returns_verdict_for_category(self, product):
        model = _model(lambda req: make_completion(True, "Combat knife", probability=0.98))

        verdict = await classify(WEAPONS, product, model)

        assert verdict.category_key == "weapons"
        assert verdict.violates is True
        assert verdict.reason == "Combat knife"
        assert verdict.confidence == pytest.approx(0.98)
        assert verdict.model_id == FAKE_MODEL_ID
        assert verdict.generated_at == datetime.fromtimestamp(CREATED_AT, timezone.utc)
        assert verdict.product == product

    async def test_request_is_deterministic_with_logprobs(self, product, fake_model, fake_client):
        await classify(WEAPONS, product, fake_model)

        request = fake_client.calls[0]
        assert request["model"] == "gpt-4o-mini"
        assert request["temperature"] == 0
        assert request["logprobs"] is True
        schema = request["response_format"]["json_schema"]
        assert schema["strict"] is True
        assert schema["schema"]["required"] == ["violates_criteria", "reason"]
        assert schema["schema"]["additionalProperties"] is False
        assert [m["role"] for m in request["messages"]] == ["system", "user"]

    async def test_confidence_zero_without_logprobs(self, product):
        model = _model(lambda req: make_completion(False, "Not a weapon", probability=None))
        verdict = await classify(WEAPONS, product, model)
        assert verdict.confidence == 0.0

    async def test_falls_back_to_configured_model_name(self, product):
        model = _model(lambda req: make_completion(False, "ok", model=""))
        verdict = await classify(WEAPONS, product, model)
        assert verdict.model_id == "gpt-4o-mini"

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            json.dumps({"violates_criteria": True}),
            json.dumps({"violates_criteria": "maybe", "reason": "x"}),
            json.dumps({"violates_criteria": True, "reason": ""}),
            json.dumps({"violates_criteria": True, "reason": "x", "extra": 1}),
        ],
    )
    async def test_contract_violation_raises(self, product, content):
        model = _model(lambda req: make_completion(True, content=content))
        with pytest.raises(GenerationFailure) as exc_info:
            await classify(WEAPONS, product, model)
        assert exc_info.value.fatal is False

    async def test_empty_content_raises(self, product):
        model = _model(lambda req: make_completion(True, content=""))
        with pytest.raises(GenerationFailure):
            await classify(WEAPONS, product, model)

    async def test_no_choices_raises(self, product):
        model = _model(lambda req: SimpleNamespace(choices=[], model=FAKE_MODEL_ID, created=CREATED_AT))
        with pytest.raises(GenerationFailure):
            await classify(WEAPONS, product, model)

    async def test_auth_error_is_fatal(self, product):
        def respond(req):
            raise _status_error(openai.AuthenticationError, 401)

        with pytest.raises(GenerationFailure) as exc_info:
            await classify(WEAPONS, product, _model(respond))
        assert exc_info.value.fatal is True
        assert isinstance(exc_info.value.__cause__, openai.AuthenticationError)

    async def test_server_error_is_not_fatal(self, product):
        def respond(req):
            raise _status_error(openai.InternalServerError, 500)

        with pytest.raises(GenerationFailure) as exc_info:
            await classify(WEAPONS, product, _model(respond))
        assert exc_info.value.fatal is False

    async def test_timeout_is_not_fatal(self, product):
        def respond(req):
            raise openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

        with pytest.raises(GenerationFailure) as exc_info:
            await classify(WEAPONS, product, _model(respond))
        assert exc_info.value.fatal is False

    async def test_connection_refused_is_fatal(self, product):
        def respond(req):
            raise openai.APIConnectionError(request=httpx.Request("POST", "http://localhost:1234/v1/chat/completions"))

        with pytest.raises(GenerationFailure) as exc_info:
            await classify(WEAPONS, product, _model(respond))
        assert exc_info.value.fatal is True

    async def test_no_retry_on_failure(self, product):
        client = FakeOpenAIClient(lambda req: make_completion(True, content="{}"))
        with pytest.raises(GenerationFailure):
            await classify(WEAPONS, product, LanguageModel(name="m", client=client))
        assert len(client.calls) == 1


# =============================================================================
# classify_all
# =============================================================================


@pytest.mark.unit
class TestClassifyAll:
    async def test_one_verdict_per_category(self, product, fake_model, fake_client):
        result_set = await classify_all(product, fake_model)

        assert set(result_set.results) == set(POLICY_CATALOG)
        assert len(fake_client.calls) == len(POLICY_CATALOG)
        for key, verdict in result_set.results.items():
            assert verdict.category_key == key

    async def test_excluded_categories_are_skipped(self, product, fake_model):
        result_set = await classify_all(product, fake_model, excluded={"adult", "gambling"})

        assert len(result_set.results) == len(POLICY_CATALOG) - 2
        assert "adult" not in result_set.results
        assert "gambling" not in result_set.results

    async def test_single_excluded_key_string(self, product, fake_model, fake_client):
        result_set = await classify_all(product, fake_model, excluded="weapons")

        assert "weapons" not in result_set.results
        assert len(fake_client.calls) == len(POLICY_CATALOG) - 1

    async def test_violations_follow_verdicts(self, product):
        model = _model(label_responder({WEAPONS.label}))
        result_set = await classify_all(product, model)

        assert [v.category_key for v in result_set.violations] == ["weapons"]
        assert result_set.results["weapons"].reason == "Matched criteria"

    async def test_all_excluded_raises(self, product, fake_model):
        with pytest.raises(ValueError):
            await classify_all(product, fake_model, excluded=set(POLICY_CATALOG))

    async def test_calls_run_concurrently(self, product):
        in_flight = 0
        peak = 0

        class SlowCompletions:
            async def create(self, **kwargs):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return make_completion(False, "ok")

        client = SimpleNamespace(chat=SimpleNamespace(completions=SlowCompletions()))
        await classify_all(product, LanguageModel(name="m", client=client))
        assert peak == len(POLICY_CATALOG)

    async def test_one_failure_fails_product_and_cancels_siblings(self, product):
        cancelled = 0

        class MixedCompletions:
            async def create(self, **kwargs):
                nonlocal cancelled
                if f"<criteria>{WEAPONS.label}</criteria>" in kwargs["messages"][0]["content"]:
                    return make_completion(True, content="broken")
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled += 1
                    raise
                return make_completion(False, "ok")

        client = SimpleNamespace(chat=SimpleNamespace(completions=MixedCompletions()))
        with pytest.raises(GenerationFailure):
            await classify_all(product, LanguageModel(name="m", client=client))
        assert cancelled == len(POLICY_CATALOG) - 1

    async def test_export_shape(self, product):
        model = _model(label_responder({WEAPONS.label}, probability=0.5))
        result_set = await classify_all(product, model, excluded=set(POLICY_CATALOG) - {"weapons"})

        exported = result_set.export()
        assert exported["product"]["permalink"] == product.permalink
        assert exported["results"] == {
            "weapons": {
                "violates_criteria": True,
                "reason": "Matched criteria",
                "confidence": 0.5,
                "model_id": FAKE_MODEL_ID,
            }
        }
