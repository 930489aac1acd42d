from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from enrichment.errors import PersistenceError
from enrichment.schemas import ConsolidatedCompanyRecord, DatabaseResult, utcnow

logger = logging.getLogger(__name__)

DDL_STATEMENTS = [
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
    """
    CREATE TABLE IF NOT EXISTS companies (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      website TEXT NOT NULL,
      company_name TEXT NOT NULL,
      industry TEXT,
      description TEXT,
      email TEXT,
      phone TEXT,
      data TEXT NOT NULL,
      enriched_at TEXT NOT NULL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL
    )
    """.strip(),
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_companies_website ON companies (website)",
    "CREATE INDEX IF NOT EXISTS idx_companies_name ON companies (lower(company_name))",
    """
    CREATE TABLE IF NOT EXISTS industries (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL UNIQUE COLLATE NOCASE
    )
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS categories (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      name TEXT NOT NULL UNIQUE COLLATE NOCASE
    )
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS company_industries (
      company_id INTEGER NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
      industry_id INTEGER NOT NULL REFERENCES industries(id),
      PRIMARY KEY (company_id, industry_id)
    )
    """.strip(),
    """
    CREATE TABLE IF NOT EXISTS company_categories (
      company_id INTEGER NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
      category_id INTEGER NOT NULL REFERENCES categories(id),
      PRIMARY KEY (company_id, category_id)
    )
    """.strip(),
]

INSERT_COMPANY_SQL = (
    """
    INSERT INTO companies (
      website, company_name, industry, description, email, phone, data, enriched_at, created_at, updated_at
    ) VALUES (
      :website, :company_name, :industry, :description, :email, :phone, :data, :now, :now, :now
    )
    """
).strip()

UPDATE_COMPANY_SQL = (
    """
    UPDATE companies SET
      website = :website,
      company_name = :company_name,
      industry = :industry,
      description = :description,
      email = :email,
      phone = :phone,
      data = :data,
      enriched_at = :now,
      updated_at = :now
    WHERE id = :id
    """
).strip()


class PersistenceGateway(Protocol):
    def ensure_taxonomy(self, industry: Optional[str], categories: Sequence[str]) -> Tuple[List[int], List[int]]: ...

    def upsert_company(self, record: ConsolidatedCompanyRecord, *, industry_ids: Sequence[int] = (),
                       category_ids: Sequence[int] = ()) -> DatabaseResult: ...


def ensure_schema(conn: sqlite3.Connection) -> None:
    for stmt in DDL_STATEMENTS:
        conn.execute(stmt)


class SqliteCompanyStore:
    """Company upsert keyed by website, then by case-insensitive company name."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
            ensure_schema(conn)
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open database {self.db_path}: {e}") from e
        return conn

    @staticmethod
    def _ensure_names(conn: sqlite3.Connection, table: str, names: Sequence[str]) -> List[int]:
        ids: List[int] = []
        for name in names:
            clean = (name or "").strip()
            if not clean:
                continue
            conn.execute(f"INSERT OR IGNORE INTO {table} (name) VALUES (?)", (clean,))
            row = conn.execute(f"SELECT id FROM {table} WHERE name = ?", (clean,)).fetchone()
            if row and row[0] not in ids:
                ids.append(row[0])
        return ids

    def ensure_taxonomy(self, industry: Optional[str], categories: Sequence[str]) -> Tuple[List[int], List[int]]:
        conn = self._connect()
        try:
            with conn:
                industry_ids = self._ensure_names(conn, "industries", [industry] if industry else [])
                category_ids = self._ensure_names(conn, "categories", list(categories))
            return industry_ids, category_ids
        except sqlite3.Error as e:
            raise PersistenceError(f"taxonomy write failed: {e}") from e
        finally:
            conn.close()

    def find_company(self, conn: sqlite3.Connection, website: str, company_name: str) -> Optional[int]:
        row = conn.execute("SELECT id FROM companies WHERE website = ?", (website,)).fetchone()
        if row is None and company_name:
            row = conn.execute(
                "SELECT id FROM companies WHERE lower(company_name) = lower(?) ORDER BY id LIMIT 1",
                (company_name,),
            ).fetchone()
        return row[0] if row else None

    def upsert_company(self, record: ConsolidatedCompanyRecord, *, industry_ids: Sequence[int] = (),
                       category_ids: Sequence[int] = ()) -> DatabaseResult:
        params: Dict[str, Any] = {
            "website": record.website,
            "company_name": record.company_name,
            "industry": record.business.industry,
            "description": record.description,
            "email": record.contact.email,
            "phone": record.contact.phone,
            "data": record.model_dump_json(),
            "now": utcnow().isoformat(),
        }
        conn = self._connect()
        try:
            with conn:  # one transaction per record
                existing = self.find_company(conn, record.website, record.company_name)
                if existing is None:
                    cur = conn.execute(INSERT_COMPANY_SQL, params)
                    company_id = int(cur.lastrowid)
                    operation = "create"
                else:
                    conn.execute(UPDATE_COMPANY_SQL, {**params, "id": existing})
                    company_id = existing
                    operation = "update"
                conn.executemany(
                    "INSERT OR IGNORE INTO company_industries (company_id, industry_id) VALUES (?, ?)",
                    [(company_id, i) for i in industry_ids],
                )
                conn.executemany(
                    "INSERT OR IGNORE INTO company_categories (company_id, category_id) VALUES (?, ?)",
                    [(company_id, c) for c in category_ids],
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"company upsert failed for {record.website}: {e}") from e
        finally:
            conn.close()
        logger.info("%s company %s (id=%s)", operation, record.website, company_id)
        return DatabaseResult(success=True, operation=operation, record_id=company_id,
                              industry_ids=list(industry_ids), category_ids=list(category_ids))

    def get_company(self, company_id: int) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT id, website, company_name, industry, email, phone, data FROM companies WHERE id = ?",
                (company_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"company lookup failed: {e}") from e
        finally:
            conn.close()
        if row is None:
            return None
        keys = ("id", "website", "company_name", "industry", "email", "phone", "data")
        out = dict(zip(keys, row))
        out["data"] = json.loads(out["data"])
        return out
