"""Unit tests for SQLite persistence."""

from __future__ import annotations

import sqlite3

import pytest

from database import Database
from errors import PersistenceFailure
from models.summary import SiteSummary
from conftest import FAKE_MODEL_ID, make_verdict

SITE = "https://shop.example"

# Layout of db/db.sqlite as written by the original Node scanner
LEGACY_SCHEMA = """
CREATE TABLE sites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL
);
CREATE TABLE products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    site_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    short_description TEXT,
    permalink TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (site_id) REFERENCES sites(id)
);
CREATE TABLE results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id INTEGER NOT NULL,
    criteria TEXT NOT NULL,
    violates_criteria TEXT NOT NULL,
    reason TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    model_id TEXT NOT NULL,
    FOREIGN KEY (product_id) REFERENCES products(id)
);
"""


@pytest.fixture
def site_id(db: Database) -> int:
    return db.upsert_site(SITE)


@pytest.mark.unit
class TestSitesAndProducts:
    def test_upsert_site_is_idempotent(self, db):
        first = db.upsert_site(SITE)
        second = db.upsert_site(SITE)
        assert first == second
        assert db.stats()["sites"] == 1

    def test_upsert_product_by_permalink(self, db, site_id, product):
        first = db.upsert_product(product, site_id)
        renamed = product.model_copy(update={"name": "Renamed Knife"})
        second = db.upsert_product(renamed, site_id)

        assert first == second
        rows = db.get_site_products(site_id)
        assert len(rows) == 1
        assert rows[0]["name"] == "Renamed Knife"

    def test_same_permalink_on_two_sites(self, db, product):
        a = db.upsert_product(product, db.upsert_site("https://a.example"))
        b = db.upsert_product(product, db.upsert_site("https://b.example"))
        assert a != b


@pytest.mark.unit
class TestVerdicts:
    def test_upsert_same_key_keeps_one_row_with_second_values(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)

        db.upsert_verdict(make_verdict(product, violates=True, reason="first", confidence=0.9), product_id)
        db.upsert_verdict(make_verdict(product, violates=False, reason="second", confidence=0.4), product_id)

        rows = db.get_verdicts_for_product(product_id)
        assert len(rows) == 1
        assert rows[0]["violates_criteria"] is False
        assert rows[0]["reason"] == "second"
        assert rows[0]["confidence"] == pytest.approx(0.4)

    def test_different_models_coexist(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)

        db.upsert_verdict(make_verdict(product, model_id="model-a"), product_id)
        db.upsert_verdict(make_verdict(product, model_id="model-b"), product_id)

        assert len(db.get_verdicts_for_product(product_id)) == 2
        only_b = db.get_verdicts_for_product(product_id, model_id="model-b")
        assert [r["model_id"] for r in only_b] == ["model-b"]

    def test_violates_stored_as_integer(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)
        db.upsert_verdict(make_verdict(product, violates=True), product_id)

        raw = db.conn.execute("SELECT violates_criteria FROM results").fetchone()[0]
        assert raw == 1

    def test_deferred_commit(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)
        db.upsert_verdict(make_verdict(product), product_id, commit=False)
        assert db.conn.in_transaction
        db.commit()
        assert not db.conn.in_transaction

    def test_is_product_checked(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)
        keys = ["weapons", "adult"]

        assert db.is_product_checked(product_id, keys) is False
        db.upsert_verdict(make_verdict(product, category_key="weapons"), product_id)
        assert db.is_product_checked(product_id, keys) is False
        db.upsert_verdict(make_verdict(product, category_key="adult", violates=False), product_id)
        assert db.is_product_checked(product_id, keys) is True
        assert db.is_product_checked(product_id, keys + ["gambling"]) is False

    def test_is_product_checked_per_model(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)
        db.upsert_verdict(make_verdict(product, model_id="gpt-4o-mini-2024-07-18"), product_id)
        keys = ["weapons"]

        assert db.is_product_checked(product_id, keys, "gpt-4o-mini") is True
        assert db.is_product_checked(product_id, keys, "gpt-4o-mini-2024-07-18") is True
        assert db.is_product_checked(product_id, keys, "gpt-4o") is False
        assert db.is_product_checked(product_id, keys, "qwen2.5-7b") is False


@pytest.mark.unit
class TestViolations:
    def test_violations_join_site_and_product(self, db, site_id, product, water_pistol):
        knife_id = db.upsert_product(product, site_id)
        pistol_id = db.upsert_product(water_pistol, site_id)
        db.upsert_verdict(make_verdict(product, violates=True, reason="Combat knife"), knife_id)
        db.upsert_verdict(make_verdict(water_pistol, violates=False, reason="Toy"), pistol_id)

        rows = db.get_violations_for_site(SITE)

        assert len(rows) == 1
        row = rows[0]
        assert row.site_url == SITE
        assert row.category_key == "weapons"
        assert row.violates is True
        assert row.reason == "Combat knife"
        assert row.product_name == product.name
        assert row.permalink == product.permalink

    def test_violations_scoped_to_site(self, db, product):
        other_id = db.upsert_site("https://other.example")
        product_id = db.upsert_product(product, other_id)
        db.upsert_verdict(make_verdict(product), product_id)

        assert db.get_violations_for_site(SITE) == []
        assert len(db.get_all_violations()) == 1


@pytest.mark.unit
class TestSiteSummaries:
    def test_summary_overwrites(self, db):
        db.update_site_summary(SiteSummary(site_url=SITE, summary="first", violation=True))
        db.update_site_summary(SiteSummary(site_url=SITE, summary="second", violation=False))

        stored = db.get_site_summary(SITE)
        assert stored == SiteSummary(site_url=SITE, summary="second", violation=False)
        assert db.get_site_summaries() == [stored]

    def test_unsummarized_site_has_no_summary(self, db, site_id):
        assert db.get_site_summary(SITE) is None
        assert db.get_site_summaries() == []

    def test_stats(self, db, site_id, product):
        product_id = db.upsert_product(product, site_id)
        db.upsert_verdict(make_verdict(product, category_key="weapons"), product_id)
        db.upsert_verdict(make_verdict(product, category_key="adult", violates=False), product_id)
        db.update_site_summary(SiteSummary(site_url=SITE, summary="x", violation=True))

        assert db.stats() == {
            "sites": 1,
            "products": 1,
            "verdicts": 2,
            "violations": 1,
            "flagged_sites": 1,
        }


@pytest.mark.unit
class TestSchema:
    def test_upgrades_original_scanner_database(self, tmp_path, product):
        path = tmp_path / "db.sqlite"
        conn = sqlite3.connect(path)
        conn.executescript(LEGACY_SCHEMA)
        conn.execute("INSERT INTO sites (url) VALUES (?)", (SITE,))
        conn.execute(
            "INSERT INTO products (site_id, name, description, short_description, permalink) VALUES (1, ?, ?, ?, ?)",
            (product.name, product.description, product.short_description, product.permalink),
        )
        conn.executemany(
            "INSERT INTO results (product_id, criteria, violates_criteria, reason, model_id) VALUES (1, ?, ?, ?, ?)",
            [
                ("weapons", "false", "First pass", FAKE_MODEL_ID),
                ("weapons", "true", "Combat knife", FAKE_MODEL_ID),
                ("adult", "false", "No adult content", FAKE_MODEL_ID),
            ],
        )
        conn.commit()
        conn.close()

        with Database(path) as db:
            assert db.upsert_site(SITE) == 1
            product_id = db.upsert_product(product, 1)
            assert product_id == 1

            verdicts = {v["criteria"]: v for v in db.get_verdicts_for_product(product_id)}
            assert verdicts["weapons"]["violates_criteria"] is True
            assert verdicts["weapons"]["reason"] == "Combat knife"
            assert verdicts["adult"]["violates_criteria"] is False
            assert verdicts["weapons"]["updated_at"] > 0

            rows = db.get_violations_for_site(SITE)
            assert [(r.category_key, r.reason) for r in rows] == [("weapons", "Combat knife")]

            db.upsert_verdict(make_verdict(product, category_key="adult", reason="Adult toys"), product_id)
            assert db.stats()["verdicts"] == 2
            assert db.stats()["violations"] == 2
            tables = {row["name"] for row in db.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}

        assert "legacy_results" not in tables

    def test_upgraded_database_reopens_unchanged(self, tmp_path, product):
        path = tmp_path / "db.sqlite"
        conn = sqlite3.connect(path)
        conn.executescript(LEGACY_SCHEMA)
        conn.close()

        Database(path).close()
        with Database(path) as db:
            site_id = db.upsert_site(SITE)
            db.upsert_verdict(make_verdict(product), db.upsert_product(product, site_id))
            columns = db._columns("results")

        assert columns["violates_criteria"] == "INTEGER"
        assert {"confidence", "generated_at", "updated_at"} <= set(columns)

    def test_sqlite_errors_become_persistence_failures(self, db):
        db.close()
        with pytest.raises(PersistenceFailure):
            db.upsert_site(SITE)
