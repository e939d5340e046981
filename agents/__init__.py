"""Language model agents for the ShopGuard compliance scanner.

classify / classify_all:
    Per-category policy classification with log-probability confidence,
    and concurrent fan-out across all active categories of one product.

SummarizerAgent:
    PydanticAI agent that turns a site's recorded verdicts into a
    compliance summary and an overall violation flag.

LanguageModel / build_model:
    Immutable model handles built once from configuration.

Example:
    >>> from agents import build_model, classify_all
    >>> model = build_model("openai:gpt-4o-mini", api_key)
    >>> result_set = await classify_all(product, model)
"""

from agents.classifier import classify, classify_all
from agents.llm import LanguageModel, build_model
from agents.summarizer import SummarizerAgent, summarize

__all__ = [
    "classify",
    "classify_all",
    "LanguageModel",
    "build_model",
    "SummarizerAgent",
    "summarize",
]
