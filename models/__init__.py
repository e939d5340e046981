"""Pydantic models for the ShopGuard compliance scanner.

Product:
    Storefront catalog item (name, permalink, descriptions).

PolicyCategory:
    One restricted-business policy clause (key, label, examples).

CriterionVerdict:
    Structured output contract for one classification call.

ClassificationVerdict:
    Verdict plus confidence, model id, timestamp and product echo.

ProductResultSet:
    All category verdicts for one product, keyed by category.

ViolationRow / SiteSummary:
    Stored rows read back for reporting, and the per-site summary.

Example:
    >>> from models import Product, ClassificationVerdict
"""

from models.product import Product
from models.policy import PolicyCategory
from models.classification import ClassificationVerdict, CriterionVerdict, ProductResultSet
from models.summary import SiteSummary, SummaryOutput, ViolationRow

__all__ = [
    "Product",
    "PolicyCategory",
    "CriterionVerdict",
    "ClassificationVerdict",
    "ProductResultSet",
    "ViolationRow",
    "SummaryOutput",
    "SiteSummary",
]
