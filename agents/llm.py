"""Language model handles shared by the classifier and summarizer.

A LanguageModel is built once at startup from a model string and passed
explicitly into every classify/summarize call. It wraps an AsyncOpenAI
client whose automatic retries are disabled: a failed request surfaces
immediately and the next run's skip-if-checked logic picks the product up
again.

Model strings:
    - Hosted OpenAI: 'openai:gpt-4o-mini'
    - Local OpenAI-compatible server: 'openai:{model_name}@http://localhost:1234/v1'
      (LM Studio; an empty model name uses whatever model is loaded)
"""

import logging
from dataclasses import dataclass

from openai import AsyncOpenAI
from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.providers.openai import OpenAIProvider

logger = logging.getLogger(__name__)

_PROVIDER_PREFIX = "openai:"


def parse_model_string(model_str: str) -> tuple[str, str | None]:
    """Split a model string into (model_name, base_url).

    Args:
        model_str: 'openai:name' or 'openai:name@base_url'

    Returns:
        Tuple of model name and base URL (None for the hosted API)

    Raises:
        ValueError: If the provider prefix is not supported
    """
    if ":" in model_str.split("@", 1)[0] and not model_str.startswith(_PROVIDER_PREFIX):
        provider = model_str.split(":", 1)[0]
        raise ValueError(
            f"Unsupported model provider '{provider}' - token log-probabilities "
            "require an OpenAI-compatible endpoint (use 'openai:...')"
        )
    rest = model_str[len(_PROVIDER_PREFIX):] if model_str.startswith(_PROVIDER_PREFIX) else model_str
    if "@" in rest:
        model_name, base_url = rest.split("@", 1)
        return model_name, base_url
    return rest, None


@dataclass(frozen=True)
class LanguageModel:
    """Immutable handle to one model on one OpenAI-compatible endpoint.

    Attributes:
        name: Model name sent with each request
        client: AsyncOpenAI client (max_retries=0)
        base_url: Local server URL, or None for the hosted API
    """

    name: str
    client: AsyncOpenAI
    base_url: str | None = None

    @property
    def is_local(self) -> bool:
        return self.base_url is not None

    @property
    def label(self) -> str:
        """Printable identifier for logs."""
        if self.is_local:
            return f"{self.name or '<loaded>'}@{self.base_url}"
        return self.name

    def as_pydantic_ai(self) -> OpenAIModel:
        """PydanticAI model sharing this handle's client."""
        return OpenAIModel(
            model_name=self.name,
            provider=OpenAIProvider(openai_client=self.client),
        )


def build_model(model_str: str, api_key: str = "", timeout: float = 60.0) -> LanguageModel:
    """Create a LanguageModel from a model string.

    Args:
        model_str: Model string (see module docstring)
        api_key: Provider API key (ignored for local servers)
        timeout: Per-request timeout in seconds

    Returns:
        LanguageModel with retries disabled
    """
    model_name, base_url = parse_model_string(model_str)
    if base_url:
        logger.info("Using local model | model=%s base_url=%s", model_name or "<loaded>", base_url)
        # Local servers don't need authentication - use placeholder
        client = AsyncOpenAI(base_url=base_url, api_key="local-model", max_retries=0, timeout=timeout)
    else:
        client = AsyncOpenAI(api_key=api_key or None, max_retries=0, timeout=timeout)
    return LanguageModel(name=model_name, client=client, base_url=base_url)
