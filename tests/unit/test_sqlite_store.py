import sqlite3

import pytest

from enrichment.db.sqlite_store import SqliteCompanyStore
from enrichment.errors import PersistenceError
from enrichment.schemas import BusinessInfo, ConsolidatedCompanyRecord, ContactInfo


def _record(**overrides):
    data = dict(
        company_name="Acme Corporation",
        website="https://acme.com",
        description="Rockets",
        contact=ContactInfo(email="info@acme.com", phone="+14155550100"),
        business=BusinessInfo(industry="Aerospace", categories=["Rockets"]),
    )
    data.update(overrides)
    return ConsolidatedCompanyRecord(**data)


@pytest.fixture
def store(tmp_path):
    return SqliteCompanyStore(tmp_path / "data" / "enrichment.db")


def test_ensure_taxonomy_is_idempotent(store):
    first = store.ensure_taxonomy("Aerospace", ["Rockets", "rockets", "", "Launch"])
    second = store.ensure_taxonomy("aerospace", ["Launch"])

    assert first == ([1], [1, 2])
    assert second == ([1], [2])
    assert store.ensure_taxonomy(None, []) == ([], [])


def test_upsert_creates_then_updates(store):
    industry_ids, category_ids = store.ensure_taxonomy("Aerospace", ["Rockets"])
    created = store.upsert_company(_record(), industry_ids=industry_ids, category_ids=category_ids)
    assert created.operation == "create"
    assert created.table == "companies"
    assert created.industry_ids == [1]

    updated = store.upsert_company(_record(description="Reusable rockets"),
                                   industry_ids=industry_ids, category_ids=category_ids)
    assert updated.operation == "update"
    assert updated.record_id == created.record_id

    row = store.get_company(created.record_id)
    assert row["company_name"] == "Acme Corporation"
    assert row["data"]["description"] == "Reusable rockets"

    conn = sqlite3.connect(store.db_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM companies").fetchone()[0] == 1
        assert conn.execute("SELECT COUNT(*) FROM company_industries").fetchone()[0] == 1
        assert conn.execute("SELECT COUNT(*) FROM company_categories").fetchone()[0] == 1
    finally:
        conn.close()


def test_upsert_matches_by_company_name(store):
    first = store.upsert_company(_record())
    second = store.upsert_company(_record(website="https://acme.io", company_name="ACME CORPORATION"))
    assert second.operation == "update"
    assert second.record_id == first.record_id
    assert store.get_company(first.record_id)["website"] == "https://acme.io"
    assert store.get_company(999) is None


def test_unusable_path_raises_persistence_error(tmp_path):
    (tmp_path / "db").mkdir()
    store = SqliteCompanyStore(tmp_path / "db")
    with pytest.raises(PersistenceError):
        store.upsert_company(_record())
