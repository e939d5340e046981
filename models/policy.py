"""Policy category model.

A PolicyCategory is one clause of the payment processor's restricted
businesses policy. Its label and examples are embedded verbatim in the
classifier's system prompt.
"""

from pydantic import BaseModel, ConfigDict, Field


class PolicyCategory(BaseModel):
    """One restricted-business policy clause.

    Attributes:
        key: Unique identifier (e.g. 'weapons', 'non-fiat')
        label: Human-readable policy name
        examples: Free-text list of example violations
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Unique category identifier")
    label: str = Field(description="Human-readable policy name")
    examples: str = Field(description="Illustrative violations, one per line")
