"""
Remote record store adapter.

Async facade over the Supabase client for the handful of bulk operations
the import engine needs. The Supabase client is blocking, so every call runs
in a worker thread and the event loop stays free between chunks.

Each call is wrapped in a bounded retry policy; once attempts are exhausted
a RemoteStoreError is raised and the caller decides what to do with it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol
import structlog

from config import get_supabase_client, settings
from exceptions import RemoteStoreError

logger = structlog.get_logger(__name__)

# PostgREST caps a response at 1000 rows by default
SELECT_PAGE_SIZE = 1000


class RecordStore(Protocol):
    """Operations the engine consumes from the remote store."""

    async def select_where_in(
        self,
        table: str,
        column: str,
        values: list,
        columns: str = "*",
        also_in: Optional[dict[str, list]] = None,
    ) -> list[dict]:
        ...

    async def select_all(self, table: str, columns: str = "*") -> list[dict]:
        ...

    async def insert_many(self, table: str, records: list[dict]) -> list[dict]:
        ...

    async def insert_one(self, table: str, record: dict) -> dict:
        ...

    async def update_where(self, table: str, values: dict, column: str, value: Any) -> list[dict]:
        ...

    async def update_where_in(self, table: str, values: dict, column: str, keys: list) -> list[dict]:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for one remote call.

    Waits backoff_seconds, then twice that, and so on between attempts.
    """
    max_attempts: int = 3
    backoff_seconds: float = 0.5

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.import_remote_max_attempts,
            backoff_seconds=settings.import_remote_backoff_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))

    async def run(self, operation: str, table: str, call: Callable[[], Any]) -> Any:
        """
        Run a blocking call in a thread, retrying on failure.

        Raises:
            RemoteStoreError: After the last attempt fails
        """
        attempt = 1
        while True:
            try:
                return await asyncio.to_thread(call)
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "remote_call_failed",
                        operation=operation,
                        table=table,
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    raise RemoteStoreError(operation, table, str(e)) from e

                delay = self.delay_for(attempt)
                logger.warning(
                    "remote_call_retrying",
                    operation=operation,
                    table=table,
                    attempt=attempt,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)
                attempt += 1


class SupabaseRecordStore:
    """RecordStore backed by the Supabase PostgREST client."""

    def __init__(self, client=None, retry: Optional[RetryPolicy] = None):
        self.db = client if client is not None else get_supabase_client()
        self.retry = retry or RetryPolicy.from_settings()

    async def select_where_in(
        self,
        table: str,
        column: str,
        values: list,
        columns: str = "*",
        also_in: Optional[dict[str, list]] = None,
    ) -> list[dict]:
        """Rows whose column is in values (and every also_in column is in its list)."""
        if not values:
            return []

        def call():
            query = self.db.table(table).select(columns).in_(column, values)
            for other, other_values in (also_in or {}).items():
                query = query.in_(other, other_values)
            return query.execute().data or []

        return await self.retry.run("select", table, call)

    async def select_all(self, table: str, columns: str = "*") -> list[dict]:
        """Every row of a table, fetched page by page."""
        rows: list[dict] = []
        start = 0
        while True:
            def call(start=start):
                return (
                    self.db.table(table)
                    .select(columns)
                    .range(start, start + SELECT_PAGE_SIZE - 1)
                    .execute()
                    .data
                    or []
                )

            page = await self.retry.run("select", table, call)
            rows.extend(page)
            if len(page) < SELECT_PAGE_SIZE:
                return rows
            start += SELECT_PAGE_SIZE

    async def insert_many(self, table: str, records: list[dict]) -> list[dict]:
        """Insert records in one call; returns them with their assigned ids."""
        if not records:
            return []

        def call():
            return self.db.table(table).insert(records).execute().data or []

        inserted = await self.retry.run("insert", table, call)
        logger.debug("records_inserted", table=table, count=len(inserted))
        return inserted

    async def insert_one(self, table: str, record: dict) -> dict:
        inserted = await self.insert_many(table, [record])
        return inserted[0] if inserted else {}

    async def update_where(self, table: str, values: dict, column: str, value: Any) -> list[dict]:
        """Set values on rows where column equals value."""
        def call():
            return self.db.table(table).update(values).eq(column, value).execute().data or []

        return await self.retry.run("update", table, call)

    async def update_where_in(self, table: str, values: dict, column: str, keys: list) -> list[dict]:
        """Set the same values on every row whose column is in keys."""
        if not keys:
            return []

        def call():
            return self.db.table(table).update(values).in_(column, keys).execute().data or []

        return await self.retry.run("update", table, call)
