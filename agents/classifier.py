"""Classifier for restricted-business policy violations.

This module checks one product against one policy category with a language
model, and fans a product out across every active category.

Design Philosophy:
    - Deterministic: temperature 0 so unchanged input gives the same answer
    - Strict contract: the response must be exactly {violates_criteria, reason};
      anything else is a GenerationFailure, never a best-effort parse
    - Fail-fast: no client retries and no fallback verdicts; the caller
      decides what a failure means for the run
    - Concurrent: all categories of a product are classified in parallel and
      joined; one failure fails the whole product

Confidence:
    The request asks for token log-probabilities. The first token whose text
    is exactly "true" or "false" (matching the chosen boolean) is looked up
    and exp(logprob) becomes the confidence. Providers that expose no
    log-probabilities yield 0.0. This measures how strongly the model
    committed to the token, not how likely the verdict is to be correct.
"""

import asyncio
import json
import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import openai
from pydantic import ValidationError

from agents.llm import LanguageModel
from errors import GenerationFailure
from models.classification import ClassificationVerdict, CriterionVerdict, ProductResultSet
from models.policy import PolicyCategory
from models.product import Product
from policies import POLICY_CATALOG, active_categories

logger = logging.getLogger(__name__)

# Errors that make every further request pointless for this run
_FATAL_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
    openai.APIConnectionError,
)


def _is_fatal(error: openai.OpenAIError) -> bool:
    # APITimeoutError subclasses APIConnectionError but only affects one request
    if isinstance(error, openai.APITimeoutError):
        return False
    return isinstance(error, _FATAL_ERRORS)


def build_system_prompt(category: PolicyCategory) -> str:
    """System instruction embedding the category label and examples."""
    return (
        "You are checking to see if a product is compliant with the criteria of a merchant. "
        "You will be given a product and a specific criteria. "
        "You will need to check the product against the criteria and return a boolean value. "
        "You will also need to provide a reason for your answer. "
        "If there is not enough information to make a determination, you should return false. "
        "The criteria is: "
        f"<criteria>{category.label}</criteria>"
        "The examples of products in violation of this criteria are: "
        f"<examples>{category.examples}</examples>"
    )


def build_user_message(product: Product) -> str:
    """User message carrying the product as JSON. The permalink is left out."""
    return json.dumps({"product": product.prompt_payload()}, ensure_ascii=False)


# Wire schema for the strict response_format. Mirrors CriterionVerdict; the
# non-empty reason rule is enforced by pydantic on receipt.
_VERDICT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "violates_criteria": {
            "type": "boolean",
            "description": "Whether the product violates the criteria",
        },
        "reason": {
            "type": "string",
            "description": "The reason why the product violates the criteria or why it does not",
        },
    },
    "required": ["violates_criteria", "reason"],
    "additionalProperties": False,
}


def _response_format() -> dict[str, Any]:
    """Strict JSON schema response format for CriterionVerdict."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "criterion_verdict",
            "strict": True,
            "schema": _VERDICT_SCHEMA,
        },
    }


def confidence_from_logprobs(logprobs: Sequence[Any] | None, violates: bool) -> float:
    """Derive confidence from the chosen boolean token's log-probability.

    Args:
        logprobs: Token entries with .token and .logprob (may be None)
        violates: The boolean the model chose

    Returns:
        exp(logprob) clamped to [0, 1], or 0.0 if no matching token
    """
    if not logprobs:
        return 0.0
    target = json.dumps(violates)  # "true" / "false"
    for item in logprobs:
        if item.token == target:
            return min(1.0, max(0.0, math.exp(item.logprob)))
    return 0.0


def _response_time(created: int | None) -> datetime:
    if created:
        return datetime.fromtimestamp(created, timezone.utc)
    return datetime.now(timezone.utc)


async def classify(
    category: PolicyCategory,
    product: Product,
    model: LanguageModel,
) -> ClassificationVerdict:
    """Check one product against one policy category.

    Args:
        category: Policy category (label and examples used verbatim)
        product: Product with HTML already stripped
        model: Language model handle

    Returns:
        ClassificationVerdict for (product, category, model)

    Raises:
        GenerationFailure: If the call fails or the response breaks the
            two-field contract
    """
    try:
        resp = await model.client.chat.completions.create(
            model=model.name,
            messages=[
                {"role": "system", "content": build_system_prompt(category)},
                {"role": "user", "content": build_user_message(product)},
            ],
            temperature=0,  # Greedy sampling, only use the most likely token
            logprobs=True,
            response_format=_response_format(),
        )
    except openai.OpenAIError as e:
        raise GenerationFailure(
            f"Model call failed for category '{category.key}': {type(e).__name__}: {e}",
            fatal=_is_fatal(e),
        ) from e

    if not resp.choices:
        raise GenerationFailure(f"Empty response for category '{category.key}'")

    choice = resp.choices[0]
    content = choice.message.content
    if not content:
        raise GenerationFailure(f"No content in response for category '{category.key}'")

    try:
        result = CriterionVerdict.model_validate_json(content)
    except ValidationError as e:
        raise GenerationFailure(
            f"Response for category '{category.key}' failed validation: {e.error_count()} error(s)"
        ) from e

    token_logprobs = choice.logprobs.content if choice.logprobs else None
    confidence = confidence_from_logprobs(token_logprobs, result.violates_criteria)

    verdict = ClassificationVerdict(
        category_key=category.key,
        violates=result.violates_criteria,
        reason=result.reason,
        confidence=confidence,
        model_id=resp.model or model.name,
        generated_at=_response_time(resp.created),
        product=product,
    )
    logger.debug("Classified: %s... -> %s", product.name[:50], verdict)
    return verdict


async def classify_all(
    product: Product,
    model: LanguageModel,
    excluded: str | Iterable[str] = frozenset(),
    catalog: Mapping[str, PolicyCategory] = POLICY_CATALOG,
) -> ProductResultSet:
    """Check one product against every active policy category concurrently.

    Args:
        product: Product to classify
        model: Language model handle
        excluded: Category keys to skip, or a comma-separated string of them
        catalog: Category catalog (defaults to the full policy catalog)

    Returns:
        ProductResultSet keyed by category key

    Raises:
        ValueError: If no category is left after exclusions
        GenerationFailure: If any single category fails; sibling calls are
            cancelled and nothing partial is returned
    """
    categories = active_categories(excluded, catalog)
    if not categories:
        raise ValueError("No active policy categories to classify against")

    tasks = [asyncio.ensure_future(classify(c, product, model)) for c in categories]
    try:
        verdicts = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        # Let cancelled siblings settle before propagating
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    result_set = ProductResultSet(
        product=product,
        results={verdict.category_key: verdict for verdict in verdicts},
    )
    logger.info(
        "Product classified | product=%s categories=%d violations=%d",
        product.permalink, len(result_set.results), len(result_set.violations),
    )
    return result_set
