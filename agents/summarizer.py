"""Summarizer agent for per-site compliance summaries."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import openai
from pydantic_ai import Agent, PromptedOutput, RunContext
from pydantic_ai.exceptions import AgentRunError, ModelHTTPError

from agents.llm import LanguageModel
from errors import GenerationFailure
from models.summary import SiteSummary, SummaryOutput, ViolationRow

logger = logging.getLogger(__name__)

# Prose task, not a binary decision: reproducibility is not required
SUMMARY_TEMPERATURE = 0.7

SUMMARIZER_PROMPT = """You are a payments compliance analyst reviewing an online store.

You will receive the policy verdicts recorded for the store's products, one per line,
in the form "<category> violates|does not violate: <reason>".

## Output requirements (must conform to the output schema)
- summary: a short paragraph describing which restricted-business policies the store
  appears to violate and why. If the store has no violations, leave it empty or
  state that briefly.
- violation: true if the store should be treated as violating the restricted-business
  policy, false otherwise.

## Constraints
1. Only use the verdicts provided; do not invent products or facts.
2. Use judgment: a single weak or doubtful verdict need not make the whole store violating.
3. If no verdicts are provided, the store has no violations: return violation=false."""


@dataclass
class SummarizerContext:
    """Runtime context passed to the summarizer agent.

    Attributes:
        site_url: Storefront being summarized
        row_count: Number of verdict lines in the prompt
    """

    site_url: str
    row_count: int = 0


def _is_fatal(error: Exception) -> bool:
    """True if the provider is unusable for the rest of the run."""
    if isinstance(error, ModelHTTPError):
        return error.status_code in (401, 403, 404)
    if isinstance(error, openai.APITimeoutError):
        return False
    return isinstance(error, (openai.AuthenticationError, openai.APIConnectionError))


def _create_agent(model: LanguageModel) -> Agent[SummarizerContext, SummaryOutput]:
    """Create the underlying PydanticAI agent for site summarization."""
    # Local servers may not support tool calling
    output_type = PromptedOutput(SummaryOutput) if model.is_local else SummaryOutput

    agent = Agent(
        model.as_pydantic_ai(),
        output_type=output_type,
        deps_type=SummarizerContext,
        system_prompt=SUMMARIZER_PROMPT,
        retries=0,
    )

    @agent.system_prompt
    def site_prompt(ctx: RunContext[SummarizerContext]) -> str:
        return f"Store under review: {ctx.deps.site_url}"

    return agent


def build_user_message(rows: Sequence[ViolationRow]) -> str:
    """Render verdict rows as prompt lines."""
    if not rows:
        return "No policy violations were recorded for this store. It has no violations."
    lines = [f"Recorded verdicts: {len(rows)}", ""]
    lines.extend(row.render() for row in rows)
    return "\n".join(lines)


class SummarizerAgent:
    """Produces a compliance summary and overall flag for one site.

    The model commits to its own site-level violation flag rather than the
    caller deriving it from the rows, so it can discount weak verdicts.
    With no rows at all the flag is always False.

    Example:
        >>> summarizer = SummarizerAgent(model)
        >>> summary = await summarizer.summarize("https://shop.example", rows)
        >>> summary.violation
        True
    """

    def __init__(self, model: LanguageModel):
        """Initialize the summarizer agent.

        Args:
            model: Language model handle for the summary
        """
        self.model = model
        self.agent = _create_agent(model)

    async def summarize(self, site_url: str, rows: Sequence[ViolationRow]) -> SiteSummary:
        """Summarize a site's recorded verdicts.

        Args:
            site_url: Storefront base URL
            rows: Verdict rows for the site (may be empty)

        Returns:
            SiteSummary for the site

        Raises:
            GenerationFailure: If the model call fails or its output does not
                match the {summary, violation} contract
        """
        message = build_user_message(rows)
        try:
            result = await self.agent.run(
                message,
                deps=SummarizerContext(site_url=site_url, row_count=len(rows)),
                model_settings={"temperature": SUMMARY_TEMPERATURE},
            )
        except (AgentRunError, openai.OpenAIError) as e:
            raise GenerationFailure(
                f"Summary failed for {site_url}: {type(e).__name__}: {e}",
                fatal=_is_fatal(e),
            ) from e

        output = result.output
        violation = output.violation
        if not rows and violation:
            logger.warning("Summary flagged a site with no verdicts; overriding | site=%s", site_url)
            violation = False

        usage = result.usage()
        logger.info(
            "Site summarized | site=%s rows=%d violation=%s requests=%d",
            site_url,
            len(rows),
            violation,
            usage.requests,
        )
        return SiteSummary(site_url=site_url, summary=output.summary.strip(), violation=violation)


async def summarize(
    site_url: str,
    model: LanguageModel,
    rows: Sequence[ViolationRow],
) -> SiteSummary:
    """Summarize one site's verdict rows with the given model."""
    return await SummarizerAgent(model).summarize(site_url, rows)
