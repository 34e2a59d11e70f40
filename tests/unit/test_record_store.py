"""
Unit tests for the Supabase record store adapter.

The Supabase client is a MagicMock; these tests check the query chains
and the retry behaviour around them.
"""

import asyncio
import pytest
from unittest.mock import MagicMock

from services.record_store import RetryPolicy, SELECT_PAGE_SIZE, SupabaseRecordStore
from exceptions import RemoteStoreError


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client."""
    return MagicMock()


@pytest.fixture
def store(mock_supabase):
    """Record store with a mocked client and no backoff delay."""
    return SupabaseRecordStore(client=mock_supabase, retry=RetryPolicy(max_attempts=3, backoff_seconds=0))


# ===================
# RETRY POLICY
# ===================

class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_delay_doubles(self):
        """Backoff doubles on each attempt."""
        policy = RetryPolicy(max_attempts=4, backoff_seconds=0.5)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_succeeds_after_transient_failure(self):
        """A call that fails once and then works returns its value."""
        policy = RetryPolicy(max_attempts=3, backoff_seconds=0)
        outcomes = [ConnectionError("reset"), "ok"]

        def call():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert asyncio.run(policy.run("select", "customers", call)) == "ok"

    def test_gives_up_after_max_attempts(self):
        """Every attempt failing raises RemoteStoreError with the last message."""
        policy = RetryPolicy(max_attempts=2, backoff_seconds=0)
        calls = []

        def call():
            calls.append(1)
            raise ConnectionError("timeout")

        with pytest.raises(RemoteStoreError) as exc_info:
            asyncio.run(policy.run("insert", "invoices", call))

        assert len(calls) == 2
        assert exc_info.value.table == "invoices"
        assert exc_info.value.operation == "insert"
        assert exc_info.value.reason == "timeout"
        assert exc_info.value.status_code == 503


# ===================
# QUERIES
# ===================

class TestSelectWhereIn:
    """Tests for select_where_in."""

    def test_filters_with_in(self, store, mock_supabase):
        """Builds table().select().in_() and returns the rows."""
        query = mock_supabase.table.return_value.select.return_value.in_.return_value
        query.execute.return_value = MagicMock(data=[{"CustomerListID": "C1"}])

        rows = asyncio.run(store.select_where_in("customers", "CustomerListID", ["C1", "C2"], "CustomerListID"))

        mock_supabase.table.assert_called_with("customers")
        mock_supabase.table.return_value.select.assert_called_with("CustomerListID")
        mock_supabase.table.return_value.select.return_value.in_.assert_called_with("CustomerListID", ["C1", "C2"])
        assert rows == [{"CustomerListID": "C1"}]

    def test_extra_in_filters(self, store, mock_supabase):
        """also_in adds one more in_() per column."""
        first = mock_supabase.table.return_value.select.return_value.in_.return_value
        first.in_.return_value.execute.return_value = MagicMock(data=[])

        asyncio.run(store.select_where_in(
            "invoice_line_items", "invoice_id", ["1"], also_in={"product_code": ["OX-40"]}
        ))

        first.in_.assert_called_with("product_code", ["OX-40"])

    def test_empty_values_skip_the_call(self, store, mock_supabase):
        """Nothing to look up means no remote call."""
        assert asyncio.run(store.select_where_in("customers", "CustomerListID", [])) == []
        mock_supabase.table.assert_not_called()


class TestSelectAll:
    """Tests for select_all paging."""

    def test_pages_until_short_page(self, store, mock_supabase):
        """Keeps requesting ranges until a page comes back short."""
        ranged = mock_supabase.table.return_value.select.return_value.range
        full = [{"product_code": f"P{i}"} for i in range(SELECT_PAGE_SIZE)]
        ranged.return_value.execute.side_effect = [
            MagicMock(data=full),
            MagicMock(data=[{"product_code": "LAST"}]),
        ]

        rows = asyncio.run(store.select_all("cylinders", "product_code, description"))

        assert len(rows) == SELECT_PAGE_SIZE + 1
        assert ranged.call_args_list[0].args == (0, SELECT_PAGE_SIZE - 1)
        assert ranged.call_args_list[1].args == (SELECT_PAGE_SIZE, 2 * SELECT_PAGE_SIZE - 1)


class TestWrites:
    """Tests for insert and update calls."""

    def test_insert_many_returns_inserted_rows(self, store, mock_supabase):
        """Inserted rows (with ids) are returned."""
        mock_supabase.table.return_value.insert.return_value.execute.return_value = MagicMock(
            data=[{"id": 7, "details": "INV-1"}]
        )

        rows = asyncio.run(store.insert_many("invoices", [{"details": "INV-1"}]))

        mock_supabase.table.return_value.insert.assert_called_with([{"details": "INV-1"}])
        assert rows == [{"id": 7, "details": "INV-1"}]

    def test_insert_failure_is_retried_then_raised(self, store, mock_supabase):
        """A persistent failure surfaces as RemoteStoreError after 3 attempts."""
        execute = mock_supabase.table.return_value.insert.return_value.execute
        execute.side_effect = Exception("duplicate key value")

        with pytest.raises(RemoteStoreError):
            asyncio.run(store.insert_many("invoices", [{"details": "INV-1"}]))

        assert execute.call_count == 3

    def test_update_where_in(self, store, mock_supabase):
        """update().in_() sets values on every matching key."""
        chain = mock_supabase.table.return_value.update.return_value.in_
        chain.return_value.execute.return_value = MagicMock(data=[{"product_code": "OX-40"}])

        rows = asyncio.run(store.update_where_in(
            "cylinders", {"assigned_customer": "C1"}, "product_code", ["OX-40"]
        ))

        mock_supabase.table.return_value.update.assert_called_with({"assigned_customer": "C1"})
        chain.assert_called_with("product_code", ["OX-40"])
        assert rows == [{"product_code": "OX-40"}]

    def test_update_where(self, store, mock_supabase):
        """update().eq() targets a single key."""
        chain = mock_supabase.table.return_value.update.return_value.eq
        chain.return_value.execute.return_value = MagicMock(data=[])

        asyncio.run(store.update_where("import_history", {"status": "success"}, "id", "42"))

        chain.assert_called_with("id", "42")
