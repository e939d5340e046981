"""Classification models for per-category policy verdicts.

This module defines the structured response contract the language model
must satisfy, and the verdict records built from it.

Contract vs. Verdict:
    CriterionVerdict is exactly what the model returns: a boolean and a
    reason, nothing else. It is validated on receipt; any mismatch is a
    generation failure.

    ClassificationVerdict wraps the contract with everything the model did
    not produce: the category key, the confidence derived from token
    log-probabilities, the provider's model id and timestamp, and an echo of
    the product identity for downstream joins.

Natural Key:
    One live verdict exists per (product permalink, category_key, model_id).
    Re-classification overwrites the stored row in place.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.product import Product


class CriterionVerdict(BaseModel):
    """Structured output contract for one product against one category."""

    model_config = ConfigDict(extra="forbid")

    violates_criteria: bool = Field(description="Whether the product violates the criteria")
    reason: str = Field(
        min_length=1,
        description="The reason why the product violates the criteria or why it does not",
    )


class ClassificationVerdict(BaseModel):
    """Result of classifying one product against one policy category.

    Attributes:
        category_key: Key of the evaluated PolicyCategory
        violates: Model's boolean decision
        reason: Model's justification (never empty)
        confidence: exp(logprob) of the chosen boolean token, 0.0 if the
            provider exposed no log-probability for it. A strength-of-commitment
            proxy, not a calibrated accuracy.
        model_id: Model identifier reported by the provider
        generated_at: Response timestamp reported by the provider (UTC)
        product: Identity echo of the classified product

    Example:
        >>> verdict.category_key
        'weapons'
        >>> str(verdict)
        'Verdict(weapons, VIOLATES, 0.98)'
    """

    category_key: str = Field(description="Evaluated policy category key")
    violates: bool = Field(description="Whether the product violates the category")
    reason: str = Field(min_length=1, description="Model justification")
    confidence: float = Field(ge=0.0, le=1.0, description="Token-level confidence (0-1)")
    model_id: str = Field(description="Provider-reported model identifier")
    generated_at: datetime = Field(description="Provider-reported response time (UTC)")
    product: Product = Field(description="Product identity echo")

    def __str__(self) -> str:
        status = "VIOLATES" if self.violates else "OK"
        return f"Verdict({self.category_key}, {status}, {self.confidence:.2f})"


class ProductResultSet(BaseModel):
    """All category verdicts for one product, keyed by category key."""

    product: Product
    results: dict[str, ClassificationVerdict] = Field(default_factory=dict)

    @property
    def violations(self) -> list[ClassificationVerdict]:
        """Verdicts that flagged a violation."""
        return [v for v in self.results.values() if v.violates]

    def export(self) -> dict:
        """Compact JSON-ready form used by the CLI export file."""
        return {
            "product": self.product.model_dump(mode="json"),
            "results": {
                key: {
                    "violates_criteria": verdict.violates,
                    "reason": verdict.reason,
                    "confidence": round(verdict.confidence, 4),
                    "model_id": verdict.model_id,
                }
                for key, verdict in self.results.items()
            },
        }
