"""Site-level violation rows and compliance summary models."""

from pydantic import BaseModel, Field


class ViolationRow(BaseModel):
    """A stored verdict read back for reporting and summarization."""

    site_url: str = Field(description="Storefront base URL")
    category_key: str = Field(description="Policy category key")
    violates: bool = Field(description="Stored decision")
    reason: str = Field(description="Stored justification")
    confidence: float = Field(default=0.0, description="Stored confidence (0-1)")
    model_id: str = Field(default="", description="Model that produced the verdict")
    product_name: str = Field(default="", description="Product title")
    permalink: str = Field(default="", description="Product URL")

    def render(self) -> str:
        """Single prompt line: '<category> violates|does not violate: <reason>'."""
        verb = "violates" if self.violates else "does not violate"
        return f"{self.category_key} {verb}: {self.reason}"


class SummaryOutput(BaseModel):
    """Structured output contract for the site summarizer."""

    summary: str = Field(description="Natural-language compliance summary of the site")
    violation: bool = Field(description="Whether the site has a restricted-business violation")


class SiteSummary(BaseModel):
    """Stored compliance summary for one site."""

    site_url: str = Field(description="Storefront base URL")
    summary: str = Field(default="", description="Compliance summary text")
    violation: bool = Field(default=False, description="Overall site violation flag")
