"""Product data model for storefront catalog items.

Each Product is one item from a WooCommerce Store API product listing, with
its HTML already stripped by the feed module. Within a site the permalink is
the natural key: two fetches of the same permalink are the same product.
"""

from pydantic import BaseModel, Field


class Product(BaseModel):
    """A product fetched from a storefront.

    Attributes:
        name: Product title
        permalink: Canonical product URL (natural key within a site)
        description: Long description, plain text
        short_description: Short description, plain text (may be empty)

    Example:
        >>> product = Product(
        ...     name="Water Pistol - Super Soaker",
        ...     permalink="https://example.com/water-pistol",
        ...     description="Water pistol for playful water fights",
        ... )
    """

    name: str = Field(description="Product title")
    permalink: str = Field(description="Canonical product URL")
    description: str = Field(default="", description="Long description, HTML stripped")
    short_description: str = Field(default="", description="Short description, HTML stripped")

    def prompt_payload(self) -> dict[str, str]:
        """Fields sent to the language model. The permalink is never sent."""
        return {
            "name": self.name,
            "description": self.description,
            "short_description": self.short_description,
        }

    def __str__(self) -> str:
        return f"Product({self.name[:50]!r}, {self.permalink})"
