"""
Shared test fixtures.

The engine talks to the remote store only through the RecordStore
protocol, so tests use an in-memory async fake with failure injection
instead of a mocked Supabase client.
"""

import os
import sys
from pathlib import Path

# Settings require Supabase credentials at import time
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("IMPORT_REMOTE_BACKOFF_SECONDS", "0")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from collections import defaultdict
from typing import Any, Optional

from exceptions import RemoteStoreError
from services.mapping_store_service import JsonMappingStore
from tests.factories import CatalogProductFactory


# ===================
# IN-MEMORY RECORD STORE
# ===================

def _project(row: dict, columns: str) -> dict:
    if columns.strip() == "*":
        return dict(row)
    return {name.strip(): row.get(name.strip()) for name in columns.split(",")}


class InMemoryRecordStore:
    """
    RecordStore fake backed by plain dicts.

    Values are compared as strings so integer and string ids match the way
    PostgREST filters do. Every call is logged in `calls` as
    (operation, table).
    """

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        for name, rows in (tables or {}).items():
            self.tables[name] = [dict(r) for r in rows]
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list] = {}
        self._next_id = 1000

    def fail(self, operation: str, table: str, message: str = "connection reset", times: Optional[int] = None):
        """Make operation on table raise RemoteStoreError (times=None: always)."""
        self._failures[(operation, table)] = [message, times]

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        failure = self._failures.get((operation, table))
        if failure is None:
            return
        message, times = failure
        if times is not None:
            if times <= 0:
                return
            failure[1] = times - 1
        raise RemoteStoreError(operation, table, message)

    def count(self, operation: str, table: str) -> int:
        return self.calls.count((operation, table))

    async def select_where_in(
        self,
        table: str,
        column: str,
        values: list,
        columns: str = "*",
        also_in: Optional[dict[str, list]] = None,
    ) -> list[dict]:
        if not values:
            return []
        self._check("select", table)
        filters = {column: {str(v) for v in values}}
        for other, other_values in (also_in or {}).items():
            filters[other] = {str(v) for v in other_values}
        return [
            _project(row, columns)
            for row in self.tables[table]
            if all(str(row.get(c)) in allowed for c, allowed in filters.items())
        ]

    async def select_all(self, table: str, columns: str = "*") -> list[dict]:
        self._check("select", table)
        return [_project(row, columns) for row in self.tables[table]]

    async def insert_many(self, table: str, records: list[dict]) -> list[dict]:
        if not records:
            return []
        self._check("insert", table)
        inserted = []
        for record in records:
            row = dict(record)
            if row.get("id") is None:
                self._next_id += 1
                row["id"] = str(self._next_id)
            self.tables[table].append(row)
            inserted.append(dict(row))
        return inserted

    async def insert_one(self, table: str, record: dict) -> dict:
        inserted = await self.insert_many(table, [record])
        return inserted[0] if inserted else {}

    async def update_where(self, table: str, values: dict, column: str, value: Any) -> list[dict]:
        self._check("update", table)
        updated = []
        for row in self.tables[table]:
            if str(row.get(column)) == str(value):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def update_where_in(self, table: str, values: dict, column: str, keys: list) -> list[dict]:
        if not keys:
            return []
        self._check("update", table)
        allowed = {str(k) for k in keys}
        updated = []
        for row in self.tables[table]:
            if str(row.get(column)) in allowed:
                row.update(values)
                updated.append(dict(row))
        return updated


# ===================
# FIXTURES
# ===================

@pytest.fixture
def catalog_rows() -> list[dict]:
    """Catalog of trackable products (cylinders table)."""
    return [
        CatalogProductFactory.create(product_code="OX-40", description="Oxygen cylinder 40L"),
        CatalogProductFactory.create(product_code="AR-20", description="Argon cylinder 20L"),
        CatalogProductFactory.create(product_code="CO2-10", description="Carbon dioxide 10kg"),
    ]


@pytest.fixture
def record_store(catalog_rows) -> InMemoryRecordStore:
    """
    In-memory store seeded with the catalog.

    Usage:
        def test_something(record_store):
            record_store.tables["customers"].append({...})
            record_store.fail("insert", "invoices")
    """
    return InMemoryRecordStore({"cylinders": catalog_rows})


@pytest.fixture
def mapping_store(tmp_path) -> JsonMappingStore:
    """Mapping store writing to a throwaway file."""
    return JsonMappingStore(str(tmp_path / "mappings.json"))
