"""Shared fixtures for ShopGuard tests.

No test touches the network: classification runs against FakeOpenAIClient,
summaries against pydantic-ai's TestModel/FunctionModel, and the database
against a temporary SQLite file.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from openai import AsyncOpenAI

from agents.llm import LanguageModel
from config import Config
from database import Database
from models.classification import ClassificationVerdict
from models.product import Product
from observability.logging import clear_context

CREATED_AT = 1_717_171_717
FAKE_MODEL_ID = "gpt-4o-mini-2024-07-18"


def make_completion(
    violates: bool,
    reason: str = "Looks fine",
    probability: float | None = 0.9,
    model: str = FAKE_MODEL_ID,
    content: str | None = None,
) -> SimpleNamespace:
    """Build a chat completion shaped like the OpenAI SDK response.

    The token stream mimics how a JSON body is tokenized, with the boolean
    as its own token. probability=None omits log-probabilities entirely.
    """
    if content is None:
        content = json.dumps({"violates_criteria": violates, "reason": reason})
    logprobs = None
    if probability is not None:
        tokens = [
            SimpleNamespace(token='{"', logprob=-0.0001),
            SimpleNamespace(token="violates_criteria", logprob=-0.0001),
            SimpleNamespace(token='":', logprob=-0.0001),
            SimpleNamespace(token=json.dumps(violates), logprob=math.log(probability)),
            SimpleNamespace(token=',"', logprob=-0.0001),
        ]
        logprobs = SimpleNamespace(content=tokens)
    choice = SimpleNamespace(
        index=0,
        message=SimpleNamespace(role="assistant", content=content),
        logprobs=logprobs,
        finish_reason="stop",
    )
    return SimpleNamespace(choices=[choice], model=model, created=CREATED_AT)


Responder = Callable[[dict[str, Any]], Any]


class FakeCompletions:
    """Stands in for `client.chat.completions`.

    The responder receives the request kwargs and returns a completion or
    raises; every request is recorded in `calls`.
    """

    def __init__(self, responder: Responder):
        self.responder = responder
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return self.responder(kwargs)


class FakeOpenAIClient:
    """Minimal AsyncOpenAI stand-in exposing chat.completions.create."""

    def __init__(self, responder: Responder):
        self.completions = FakeCompletions(responder)
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.completions.calls


def label_responder(violating_labels: set[str], probability: float = 0.95) -> Responder:
    """Respond violates=True when the system prompt names one of the labels."""

    def respond(request: dict[str, Any]) -> SimpleNamespace:
        system = request["messages"][0]["content"]
        violates = any(f"<criteria>{label}</criteria>" in system for label in violating_labels)
        return make_completion(violates, "Matched criteria" if violates else "No match", probability)

    return respond


@pytest.fixture
def product() -> Product:
    return Product(
        name="Tactical Combat Knife - Special Forces Edition",
        permalink="https://shop.example/product/tactical-combat-knife",
        description="Spring-assisted 7-inch blade with concealed carry sheath.",
        short_description="Tactical combat knife",
    )


@pytest.fixture
def water_pistol() -> Product:
    return Product(
        name="Water Pistol - Super Soaker",
        permalink="https://shop.example/product/water-pistol",
        description="Water pistol for playful water fights",
    )


@pytest.fixture
def fake_client() -> FakeOpenAIClient:
    return FakeOpenAIClient(lambda request: make_completion(False, "No match"))


@pytest.fixture
def fake_model(fake_client: FakeOpenAIClient) -> LanguageModel:
    return LanguageModel(name="gpt-4o-mini", client=fake_client)


@pytest.fixture
def summary_model() -> LanguageModel:
    """Real client object for building agents; tests override the model."""
    return LanguageModel(name="gpt-4o-mini", client=AsyncOpenAI(api_key="test-key", max_retries=0))


@pytest.fixture
def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "shopguard.sqlite")
    yield database
    database.close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        openai_api_key="test-key",
        db_path=tmp_path / "shopguard.sqlite",
        log_dir=tmp_path / "log",
        batch_size=2,
    )


def make_verdict(
    product: Product,
    category_key: str = "weapons",
    violates: bool = True,
    reason: str = "Combat knife",
    confidence: float = 0.9,
    model_id: str = FAKE_MODEL_ID,
) -> ClassificationVerdict:
    return ClassificationVerdict(
        category_key=category_key,
        violates=violates,
        reason=reason,
        confidence=confidence,
        model_id=model_id,
        generated_at=datetime.fromtimestamp(CREATED_AT, timezone.utc),
        product=product,
    )


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo setup_logging() handler changes made by a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    clear_context()
