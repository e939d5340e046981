"""Database operations for the ShopGuard compliance scanner.

This module provides SQLite-based storage for scanned sites, their products,
and per-category classification verdicts. Every write is an upsert keyed by
a natural key, so re-running a scan updates rows in place.

Database Schema:
    sites table:
        - id (INTEGER, PK)
        - url (TEXT, unique index): Storefront base URL
        - summary (TEXT): Latest compliance summary (NULL until summarized)
        - has_violation (INTEGER): 0/1 site-level flag from the summarizer
        - summarized_at (INTEGER): Summary timestamp (Unix epoch)

    products table:
        - id (INTEGER, PK)
        - site_id (INTEGER, FK sites.id)
        - name, description, short_description, permalink (TEXT)
        - created_at (INTEGER): First seen (Unix epoch)
        - UNIQUE(site_id, permalink)

    results table:
        - id (INTEGER, PK)
        - product_id (INTEGER, FK products.id)
        - criteria (TEXT): Policy category key
        - violates_criteria (INTEGER): 0/1 verdict
        - reason (TEXT), confidence (REAL), model_id (TEXT)
        - generated_at (INTEGER): Provider response time (Unix epoch)
        - updated_at (INTEGER): Last write (Unix epoch)
        - UNIQUE(product_id, criteria, model_id)

Features:
    - WAL mode for concurrent read/write access
    - In-place upgrade of databases written by the original Node scanner
    - Batch operations with deferred commits
    - Context manager support for auto-cleanup
"""

import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from errors import PersistenceFailure
from models.classification import ClassificationVerdict
from models.product import Product
from models.summary import SiteSummary, ViolationRow

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise sqlite3 errors as PersistenceFailure."""
    try:
        yield
    except sqlite3.Error as e:
        raise PersistenceFailure(f"{operation} failed: {e}") from e


class Database:
    """SQLite store for sites, products and verdicts.

    Example:
        >>> with Database("db/shopguard.sqlite") as db:
        ...     site_id = db.upsert_site("https://shop.example")
        ...     product_id = db.upsert_product(product, site_id)
        ...     db.upsert_verdict(verdict, product_id)
    """

    TABLES = """
    -- One row per scanned storefront
    CREATE TABLE IF NOT EXISTS sites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT NOT NULL,               -- Storefront base URL
        summary TEXT,                    -- Latest compliance summary
        has_violation INTEGER,           -- 0/1 site-level flag
        summarized_at INTEGER            -- Summary time (Unix epoch)
    );

    -- One row per product permalink within a site
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        site_id INTEGER NOT NULL REFERENCES sites(id),
        name TEXT NOT NULL,
        description TEXT NOT NULL,
        short_description TEXT,
        permalink TEXT NOT NULL,
        created_at INTEGER NOT NULL      -- First seen (Unix epoch)
    );
    """

    # One row per (product, category, model)
    RESULTS_TABLE = """
    CREATE TABLE IF NOT EXISTS results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL REFERENCES products(id),
        criteria TEXT NOT NULL,          -- Policy category key
        violates_criteria INTEGER NOT NULL,
        reason TEXT NOT NULL,
        confidence REAL NOT NULL DEFAULT 0,
        model_id TEXT NOT NULL,
        generated_at INTEGER,            -- Provider response time (Unix epoch)
        updated_at INTEGER NOT NULL      -- Last write (Unix epoch)
    )
    """

    # Created after migrations, once legacy duplicates are gone
    INDEXES = """
    -- Natural keys backing the upserts
    CREATE UNIQUE INDEX IF NOT EXISTS idx_sites_url ON sites(url);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_products_site_permalink ON products(site_id, permalink);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_results_natural_key ON results(product_id, criteria, model_id);

    -- Index for the violation reports
    CREATE INDEX IF NOT EXISTS idx_results_violates ON results(violates_criteria);
    """

    # Site columns missing from databases written by the original scanner
    SITE_COLUMNS = [
        ("summary", "TEXT"),
        ("has_violation", "INTEGER"),
        ("summarized_at", "INTEGER"),
    ]

    # Legacy results kept 'true'/'false' text verdicts and a created_at
    # timestamp string; copy them into the current layout, newest row
    # per (product, category, model) winning
    LEGACY_RESULTS_COPY = """
    INSERT INTO results
    (id, product_id, criteria, violates_criteria, reason, confidence, model_id, generated_at, updated_at)
    SELECT id, product_id, criteria,
           CASE WHEN lower(violates_criteria) IN ('true', '1') THEN 1 ELSE 0 END,
           reason, 0, model_id,
           CAST(strftime('%s', created_at) AS INTEGER),
           COALESCE(CAST(strftime('%s', created_at) AS INTEGER), 0)
    FROM legacy_results
    WHERE id IN (SELECT MAX(id) FROM legacy_results GROUP BY product_id, criteria, model_id)
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        """Open (and create if needed) the database.

        Args:
            path: Path to SQLite database file, or ':memory:'

        Raises:
            PersistenceFailure: If the file cannot be opened or initialized
        """
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        with _translate_errors("Database open"):
            self.conn = sqlite3.connect(str(path))
            self.conn.row_factory = sqlite3.Row  # Enable dict-like row access

            # WAL mode allows concurrent readers during writes
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self._init_schema()
        logger.debug("Database initialized | path=%s", self.path)

    def _init_schema(self) -> None:
        """Create tables, upgrade a legacy layout, then create indexes."""
        self.conn.executescript(self.TABLES)
        self.conn.execute(self.RESULTS_TABLE)
        self._migrate()
        self.conn.executescript(self.INDEXES)
        self.conn.commit()

    def _columns(self, table: str) -> dict[str, str]:
        cursor = self.conn.execute(f"PRAGMA table_info({table})")
        return {row["name"]: row["type"].upper() for row in cursor.fetchall()}

    def _migrate(self) -> None:
        """Upgrade a database created by the original Node scanner (db/db.sqlite)."""
        existing = self._columns("sites")
        for column, column_type in self.SITE_COLUMNS:
            if column not in existing:
                self.conn.execute(f"ALTER TABLE sites ADD COLUMN {column} {column_type}")
                logger.info("Database migrated | table=sites added column=%s", column)

        if self._columns("results").get("violates_criteria") != "TEXT":
            self.conn.commit()
            return

        # Rebuild: TEXT affinity would turn stored 0/1 back into '0'/'1'
        self.conn.commit()
        self.conn.execute("PRAGMA foreign_keys=OFF")
        try:
            self.conn.execute("BEGIN")
            self.conn.execute("ALTER TABLE results RENAME TO legacy_results")
            self.conn.execute(self.RESULTS_TABLE)
            self.conn.execute(self.LEGACY_RESULTS_COPY)
            migrated = self.conn.execute("SELECT COUNT(*) AS n FROM results").fetchone()["n"]
            self.conn.execute("DROP TABLE legacy_results")
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise
        finally:
            self.conn.execute("PRAGMA foreign_keys=ON")
        logger.info("Database migrated | table=results rebuilt rows=%d", migrated)

    # === Sites ===

    def get_site_id(self, url: str) -> int | None:
        """Return the id of a site, or None if it was never scanned."""
        with _translate_errors("Site lookup"):
            row = self.conn.execute("SELECT id FROM sites WHERE url = ?", (url,)).fetchone()
        return row["id"] if row else None

    def upsert_site(self, url: str, commit: bool = True) -> int:
        """Insert a site if missing and return its id."""
        with _translate_errors("Site upsert"):
            self.conn.execute("INSERT INTO sites (url) VALUES (?) ON CONFLICT(url) DO NOTHING", (url,))
            if commit:
                self.conn.commit()
            row = self.conn.execute("SELECT id FROM sites WHERE url = ?", (url,)).fetchone()
        return row["id"]

    def update_site_summary(self, summary: SiteSummary, commit: bool = True) -> None:
        """Store (overwrite) the compliance summary for a site."""
        site_id = self.upsert_site(summary.site_url, commit=False)
        with _translate_errors("Site summary update"):
            self.conn.execute(
                """
                UPDATE sites SET summary = ?, has_violation = ?, summarized_at = ?
                WHERE id = ?
                """,
                (summary.summary, int(summary.violation), int(time.time()), site_id),
            )
            if commit:
                self.conn.commit()
        logger.debug("Site summary saved | site=%s violation=%s", summary.site_url, summary.violation)

    def get_site_summary(self, url: str) -> SiteSummary | None:
        """Return the stored summary for a site, or None if never summarized."""
        with _translate_errors("Site summary lookup"):
            row = self.conn.execute(
                "SELECT url, summary, has_violation FROM sites WHERE url = ? AND summarized_at IS NOT NULL",
                (url,),
            ).fetchone()
        if not row:
            return None
        return SiteSummary(site_url=row["url"], summary=row["summary"] or "", violation=bool(row["has_violation"]))

    def get_site_summaries(self) -> list[SiteSummary]:
        """Return every stored site summary, ordered by URL."""
        with _translate_errors("Site summaries lookup"):
            cursor = self.conn.execute(
                "SELECT url, summary, has_violation FROM sites WHERE summarized_at IS NOT NULL ORDER BY url"
            )
            rows = cursor.fetchall()
        return [
            SiteSummary(site_url=row["url"], summary=row["summary"] or "", violation=bool(row["has_violation"]))
            for row in rows
        ]

    # === Products ===

    def upsert_product(self, product: Product, site_id: int, commit: bool = True) -> int:
        """Insert or refresh a product by (site, permalink) and return its id."""
        with _translate_errors("Product upsert"):
            self.conn.execute(
                """
                INSERT INTO products (site_id, name, description, short_description, permalink, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(site_id, permalink) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    short_description = excluded.short_description
                """,
                (
                    site_id,
                    product.name,
                    product.description,
                    product.short_description,
                    product.permalink,
                    int(time.time()),
                ),
            )
            if commit:
                self.conn.commit()
            row = self.conn.execute(
                "SELECT id FROM products WHERE site_id = ? AND permalink = ?",
                (site_id, product.permalink),
            ).fetchone()
        return row["id"]

    def get_site_products(self, site_id: int) -> list[dict[str, Any]]:
        """Return all stored products for a site."""
        with _translate_errors("Site products lookup"):
            cursor = self.conn.execute("SELECT * FROM products WHERE site_id = ? ORDER BY id", (site_id,))
            return [dict(row) for row in cursor.fetchall()]

    # === Verdicts ===

    def upsert_verdict(self, verdict: ClassificationVerdict, product_id: int, commit: bool = True) -> None:
        """Insert or overwrite the verdict for (product, category, model).

        Last write wins; no history is kept.
        """
        with _translate_errors("Verdict upsert"):
            self.conn.execute(
                """
                INSERT INTO results
                (product_id, criteria, violates_criteria, reason, confidence, model_id, generated_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(product_id, criteria, model_id) DO UPDATE SET
                    violates_criteria = excluded.violates_criteria,
                    reason = excluded.reason,
                    confidence = excluded.confidence,
                    generated_at = excluded.generated_at,
                    updated_at = excluded.updated_at
                """,
                (
                    product_id,
                    verdict.category_key,
                    int(verdict.violates),
                    verdict.reason,
                    verdict.confidence,
                    verdict.model_id,
                    int(verdict.generated_at.timestamp()),
                    int(time.time()),
                ),
            )
            if commit:
                self.conn.commit()
        logger.debug(
            "Verdict saved | product_id=%d criteria=%s violates=%s",
            product_id, verdict.category_key, verdict.violates,
        )

    def get_verdicts_for_product(self, product_id: int, model_id: str | None = None) -> list[dict[str, Any]]:
        """Return stored verdict rows for a product, optionally for one model."""
        query = "SELECT * FROM results WHERE product_id = ?"
        params: list[Any] = [product_id]
        if model_id is not None:
            query += " AND model_id = ?"
            params.append(model_id)
        with _translate_errors("Product verdicts lookup"):
            cursor = self.conn.execute(query + " ORDER BY criteria", params)
            rows = [dict(row) for row in cursor.fetchall()]
        for row in rows:
            row["violates_criteria"] = bool(row["violates_criteria"])
        return rows

    def is_product_checked(
        self, product_id: int, category_keys: Iterable[str], model_name: str | None = None
    ) -> bool:
        """True if the product has a stored verdict for every given category.

        Args:
            product_id: Stored product id
            category_keys: Active category keys for this run
            model_name: Only count verdicts from this model, including the
                dated snapshots providers report (gpt-4o-mini-2024-07-18
                for gpt-4o-mini); None counts any model

        Returns:
            True when nothing is left to classify for this product
        """
        keys = set(category_keys)
        if not keys:
            return True
        placeholders = ",".join("?" * len(keys))
        query = f"SELECT DISTINCT criteria FROM results WHERE product_id = ? AND criteria IN ({placeholders})"
        params: list[Any] = [product_id, *keys]
        if model_name is not None:
            query += " AND (model_id = ? OR model_id GLOB ?)"
            params += [model_name, f"{model_name}-[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9]"]
        with _translate_errors("Checked lookup"):
            cursor = self.conn.execute(query, params)
            found = {row["criteria"] for row in cursor.fetchall()}
        return found == keys

    def _violations(self, where: str = "", params: Iterable[Any] = ()) -> list[ViolationRow]:
        with _translate_errors("Violations lookup"):
            cursor = self.conn.execute(
                f"""
                SELECT s.url, r.criteria, r.violates_criteria, r.reason, r.confidence, r.model_id,
                       p.name, p.permalink
                FROM results AS r
                JOIN products AS p ON p.id = r.product_id
                JOIN sites AS s ON s.id = p.site_id
                WHERE r.violates_criteria = 1 {where}
                ORDER BY s.url, p.permalink, r.criteria
                """,
                list(params),
            )
            rows = cursor.fetchall()
        return [
            ViolationRow(
                site_url=row["url"],
                category_key=row["criteria"],
                violates=bool(row["violates_criteria"]),
                reason=row["reason"],
                confidence=row["confidence"] or 0.0,
                model_id=row["model_id"],
                product_name=row["name"],
                permalink=row["permalink"],
            )
            for row in rows
        ]

    def get_all_violations(self) -> list[ViolationRow]:
        """Return every violating verdict across all sites."""
        return self._violations()

    def get_violations_for_site(self, url: str) -> list[ViolationRow]:
        """Return violating verdicts for one site."""
        return self._violations("AND s.url = ?", (url,))

    # === Housekeeping ===

    def stats(self) -> dict[str, int]:
        """Get database statistics.

        Returns:
            Dictionary with site, product, verdict and violation counts
        """
        with _translate_errors("Stats"):
            sites = self.conn.execute("SELECT COUNT(*) AS n FROM sites").fetchone()["n"]
            products = self.conn.execute("SELECT COUNT(*) AS n FROM products").fetchone()["n"]
            row = self.conn.execute(
                "SELECT COUNT(*) AS total, SUM(violates_criteria) AS violations FROM results"
            ).fetchone()
            flagged = self.conn.execute("SELECT COUNT(*) AS n FROM sites WHERE has_violation = 1").fetchone()["n"]
        return {
            "sites": sites or 0,
            "products": products or 0,
            "verdicts": row["total"] or 0,
            "violations": row["violations"] or 0,
            "flagged_sites": flagged or 0,
        }

    def commit(self) -> None:
        """Commit pending changes."""
        with _translate_errors("Commit"):
            self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
