"""Site scan orchestration.

This module drives a compliance scan for one or more storefronts:

Pipeline Flow:
    1. FETCH: Read the storefront's products from the WooCommerce Store API
    2. STORE: Upsert the site and every product (permalink is the key)
    3. SKIP: Drop products that already have a verdict for every active
       category (unless forced)
    4. CLASSIFY: Fan each product out across all active policy categories,
       a fixed-size batch of products at a time
    5. SAVE: Upsert each verdict by (product, category, model)
    6. SUMMARIZE: Read the site's stored violations back and write a
       site-level summary and violation flag

Failure Handling:
    - A product whose classification fails is logged with its permalink and
      counted; the scan moves on
    - A fatal provider failure (bad credentials, unreachable endpoint) aborts
      the run after the current batch's successful verdicts are saved
    - A storefront that can't be fetched is logged and skipped
    - A failed summary leaves the previously stored summary in place
"""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, TypeVar

from agents.classifier import classify_all
from agents.llm import LanguageModel, build_model
from agents.summarizer import SummarizerAgent
from config import Config
from database import Database
from errors import GenerationFailure, UpstreamFetchFailure
from feeds import fetch_products
from models.classification import ProductResultSet
from models.product import Product
from observability.logging import clear_context, set_run_context, site_context
from observability.tracing import setup_tracing, trace_operation
from policies import active_categories

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SiteRunStats:
    """Statistics from scanning a single site.

    Attributes:
        site_url: Storefront base URL
        fetched: Products returned by the feed
        skipped: Products already checked for every active category
        classified: Products classified in this run
        violations: Violating verdicts produced in this run
        errors: Products (or the fetch/summary) that failed
        summarized: Whether a new summary was stored
        violation: Site-level flag from the new summary (None if not summarized)
        duration: Scan time in seconds
    """

    site_url: str
    fetched: int = 0
    skipped: int = 0
    classified: int = 0
    violations: int = 0
    errors: int = 0
    summarized: bool = False
    violation: bool | None = None
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d["duration"] = round(d["duration"], 2)
        return d


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive chunks of at most `size` items."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    for i in range(0, len(items), size):
        yield items[i:i + size]


def write_export(path: Path, result_sets: Iterable[ProductResultSet]) -> None:
    """Write result sets as JSON keyed by product permalink."""
    payload = {rs.product.permalink: rs.export() for rs in result_sets}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


class Pipeline:
    """Scans storefronts for restricted-business policy violations.

    Owns the database and the two model handles for the lifetime of a run.
    Models and database can be injected, which is how tests run the full
    flow without a network.

    Example:
        >>> pipeline = Pipeline(Config.load())
        >>> try:
        ...     stats = await pipeline.run(["https://shop.example"])
        ... finally:
        ...     pipeline.close()
    """

    def __init__(
        self,
        config: Config,
        classifier_model: LanguageModel | None = None,
        summary_model: LanguageModel | None = None,
        db: Database | None = None,
    ):
        """Initialize pipeline components.

        Args:
            config: Application configuration
            classifier_model: Override for the classification model
            summary_model: Override for the summary model
            db: Override for the database
        """
        self.config = config
        self.db = db or Database(config.db_path)
        self.category_keys = [c.key for c in active_categories(config.excluded_categories)]
        self.classifier_model = classifier_model or build_model(
            config.classifier_model, config.openai_api_key, config.request_timeout
        )
        self.summarizer: SummarizerAgent | None = None
        if config.summary_enabled:
            self.summarizer = SummarizerAgent(
                summary_model
                or build_model(config.summary_model, config.openai_api_key, config.request_timeout)
            )
        self.result_sets: dict[str, ProductResultSet] = {}

        if config.enable_logfire:
            setup_tracing(enabled=True, token=config.logfire_token)

    async def _classify_product(self, product: Product) -> ProductResultSet:
        return await classify_all(product, self.classifier_model, self.config.excluded_categories)

    def _pending_products(self, products: Sequence[Product], site_id: int, force: bool) -> list[tuple[Product, int]]:
        """Upsert products and return those still needing classification."""
        pending = []
        for product in products:
            product_id = self.db.upsert_product(product, site_id, commit=False)
            checked = self.db.is_product_checked(product_id, self.category_keys, self.classifier_model.name)
            if checked and not force:
                logger.debug("Product already checked | permalink=%s", product.permalink)
                continue
            pending.append((product, product_id))
        self.db.commit()
        return pending

    async def _classify_pending(self, pending: Sequence[tuple[Product, int]], stats: SiteRunStats) -> None:
        """Classify pending products batch by batch and save their verdicts.

        Raises:
            GenerationFailure: On a fatal provider failure, after saving the
                batch's successful verdicts
        """
        for batch in batched(pending, self.config.batch_size):
            outcomes = await asyncio.gather(
                *(self._classify_product(product) for product, _ in batch),
                return_exceptions=True,
            )

            fatal: BaseException | None = None
            for (product, product_id), outcome in zip(batch, outcomes):
                if isinstance(outcome, GenerationFailure):
                    stats.errors += 1
                    logger.error(
                        "Product failed | permalink=%s error=%s", product.permalink, outcome
                    )
                    if outcome.fatal and fatal is None:
                        fatal = outcome
                    continue
                if isinstance(outcome, BaseException):
                    fatal = fatal or outcome
                    continue

                for verdict in outcome.results.values():
                    self.db.upsert_verdict(verdict, product_id, commit=False)
                self.result_sets[product.permalink] = outcome
                stats.classified += 1
                stats.violations += len(outcome.violations)

            self.db.commit()
            if fatal is not None:
                raise fatal

    async def _summarize_site(self, site_url: str, stats: SiteRunStats) -> None:
        """Summarize stored violations for the site, keeping the prior summary on failure."""
        if self.summarizer is None:
            return
        rows = self.db.get_violations_for_site(site_url)
        try:
            summary = await self.summarizer.summarize(site_url, rows)
        except GenerationFailure as e:
            if e.fatal:
                raise
            stats.errors += 1
            logger.warning("Summary failed, keeping previous summary | site=%s error=%s", site_url, e)
            return
        self.db.update_site_summary(summary)
        stats.summarized = True
        stats.violation = summary.violation

    async def check_site(self, site_url: str, force: bool = False) -> SiteRunStats:
        """Scan one storefront.

        Args:
            site_url: Storefront base URL
            force: Re-classify products that were already checked

        Returns:
            SiteRunStats for the scan

        Raises:
            GenerationFailure: On a fatal provider failure
            PersistenceFailure: If the database rejects a write
        """
        start = time.time()
        stats = SiteRunStats(site_url=site_url)

        with site_context(site_url), trace_operation("check_site", {"site": site_url}) as span:
            site_id = self.db.upsert_site(site_url)
            try:
                products = await fetch_products(
                    site_url,
                    per_page=self.config.products_per_page,
                    timeout=self.config.fetch_timeout,
                )
            except UpstreamFetchFailure as e:
                stats.errors += 1
                stats.duration = time.time() - start
                logger.error("Fetch failed | site=%s error=%s", site_url, e)
                return stats

            stats.fetched = len(products)
            pending = self._pending_products(products, site_id, force)
            stats.skipped = stats.fetched - len(pending)
            logger.info(
                "Products ready | site=%s fetched=%d pending=%d skipped=%d",
                site_url, stats.fetched, len(pending), stats.skipped,
            )

            await self._classify_pending(pending, stats)
            await self._summarize_site(site_url, stats)

            span.update(stats.to_dict())

        stats.duration = time.time() - start
        logger.info(
            "Site done | site=%s classified=%d violations=%d errors=%d flagged=%s duration=%.1fs",
            site_url, stats.classified, stats.violations, stats.errors, stats.violation, stats.duration,
        )
        return stats

    async def run(
        self,
        site_urls: Sequence[str],
        force: bool = False,
        export_path: Path | None = None,
    ) -> list[SiteRunStats]:
        """Scan every site in order.

        Args:
            site_urls: Storefront base URLs
            force: Re-classify products that were already checked
            export_path: Optional JSON file for this run's result sets

        Returns:
            Stats for every site scanned before the run finished or aborted
        """
        run_id = uuid.uuid4().hex[:8]
        set_run_context(run_id)
        logger.info(
            "Run started | sites=%d categories=%d model=%s",
            len(site_urls), len(self.category_keys), self.classifier_model.label,
        )

        results: list[SiteRunStats] = []
        try:
            for site_url in site_urls:
                results.append(await self.check_site(site_url, force=force))
        finally:
            if export_path is not None:
                write_export(export_path, self.result_sets.values())
                logger.info("Results exported | path=%s products=%d", export_path, len(self.result_sets))
            logger.info(
                "Run done | sites=%d classified=%d errors=%d",
                len(results), sum(s.classified for s in results), sum(s.errors for s in results),
            )
            clear_context()
        return results

    def close(self) -> None:
        """Clean up resources."""
        self.db.close()


async def check_sites(
    config: Config,
    site_urls: Sequence[str],
    force: bool = False,
    export_path: Path | None = None,
) -> list[dict[str, Any]]:
    """Run a scan and return per-site stats dicts."""
    pipeline = Pipeline(config)
    try:
        return [s.to_dict() for s in await pipeline.run(site_urls, force=force, export_path=export_path)]
    finally:
        pipeline.close()
