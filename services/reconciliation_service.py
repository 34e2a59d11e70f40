"""
Reconciliation engine.

For one chunk of canonical rows, works out which customers, billing
documents and line items already exist in the remote store, creates only
the missing ones, and links each line item to its document and catalog
product. Every step is a bulk call scoped to the chunk's keys, never one
round-trip per row.

Remote failures are chunk-scoped: they are recorded on the ChunkResult and
the remaining steps carry on with whatever did succeed.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Optional
import structlog

from config import settings
from exceptions import RemoteStoreError
from models.imports import CanonicalRow, CatalogProduct, ImportType
from models.import_run import (
    ChunkError,
    ChunkResult,
    RowOutcome,
    SkippedItem,
    SkipReason,
)
from services.product_matcher_service import ProductMatch, ProductMatcher
from services.record_store import RecordStore
from services.row_validator import is_number, normalize_date

logger = structlog.get_logger(__name__)

# ===================
# REMOTE SCHEMA
# ===================
CUSTOMERS_TABLE = "customers"
CUSTOMER_KEY = "CustomerListID"
DOCUMENTS_TABLE = "invoices"
DOCUMENT_KEY = "details"
LINE_ITEMS_TABLE = "invoice_line_items"
CATALOG_TABLE = "cylinders"


def _unique(values) -> list[str]:
    """Distinct non-empty values, first-seen order."""
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)


def _pages(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def parse_quantity(value: str) -> int:
    """Whole-unit quantity for storage; blank or non-numeric is 0."""
    if not value or not is_number(value):
        return 0
    number = float(value)
    return int(number) if math.isfinite(number) else 0


def parse_decimal(value: str) -> Optional[float]:
    if not value or not is_number(value):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


@dataclass
class _Candidate:
    """A row whose document and product both resolved."""
    index: int
    row: CanonicalRow
    document_id: str
    match: ProductMatch

    @property
    def key(self) -> tuple[str, str]:
        return (self.document_id, self.match.product.product_code)


@dataclass
class PreviewCheck:
    """Dry-run statuses for every row plus a summary."""
    statuses: list[dict] = field(default_factory=list)
    customers_created: int = 0
    customers_existing: int = 0
    documents_created: int = 0
    documents_existing: int = 0
    line_items_created: int = 0
    line_items_skipped: int = 0

    def summary(self) -> dict:
        return {
            "customers_created": self.customers_created,
            "customers_existing": self.customers_existing,
            "documents_created": self.documents_created,
            "documents_existing": self.documents_existing,
            "line_items_created": self.line_items_created,
            "line_items_skipped": self.line_items_skipped,
        }


class ReconciliationEngine:
    """
    Chunk reconciler for one import run.

    The catalog is fetched once, on the first chunk, and reused for the
    rest of the run.
    """

    def __init__(
        self,
        store: RecordStore,
        import_type: ImportType = ImportType.INVOICES,
        similarity_threshold: Optional[float] = None,
        lookup_page_size: Optional[int] = None,
    ):
        self.store = store
        self.import_type = import_type
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else settings.import_similarity_threshold
        )
        self.lookup_page_size = lookup_page_size or settings.import_line_item_lookup_page_size
        self._matcher: Optional[ProductMatcher] = None

    # ===================
    # CATALOG
    # ===================

    async def load_catalog(self) -> ProductMatcher:
        """Fetch (once) and index the product catalog."""
        if self._matcher is None:
            rows = await self.store.select_all(CATALOG_TABLE, "product_code, description")
            catalog = [
                CatalogProduct(
                    product_code=row["product_code"],
                    description=row.get("description"),
                )
                for row in rows
                if row.get("product_code")
            ]
            self._matcher = ProductMatcher(catalog, self.similarity_threshold)
            logger.info("catalog_loaded", products=len(catalog))
        return self._matcher

    # ===================
    # CHUNK RECONCILIATION
    # ===================

    async def reconcile_chunk(self, rows: list[CanonicalRow], start_index: int = 0) -> ChunkResult:
        """
        Reconcile one chunk.

        Args:
            rows: Canonical rows of the chunk
            start_index: Position of rows[0] in the whole run

        Returns:
            ChunkResult with counts, skips, errors and one outcome per row
        """
        result = ChunkResult(start_index=start_index, row_count=len(rows))
        if not rows:
            return result

        await self._reconcile_customers(rows, result)
        document_ids = await self._reconcile_documents(rows, result)

        try:
            matcher = await self.load_catalog()
        except RemoteStoreError as e:
            result.errors.append(ChunkError(type="catalog", message=e.reason))
            for i in range(len(rows)):
                result.outcomes[start_index + i] = RowOutcome.FAILED
            return result

        candidates = self._resolve_products(rows, document_ids, matcher, result)
        if not candidates:
            self._log_chunk(result)
            return result

        existing_pairs = await self._existing_line_items(candidates, result)
        if existing_pairs is None:
            # Without the lookup there is no way to rule out duplicates
            for candidate in candidates:
                result.outcomes[candidate.index] = RowOutcome.FAILED
            self._log_chunk(result)
            return result

        to_insert = self._drop_duplicates(candidates, existing_pairs, result)
        await self._insert_line_items(to_insert, result)

        if self.import_type == ImportType.SALES_RECEIPTS and result.line_items_created:
            await self._assign_assets(to_insert, result)

        self._log_chunk(result)
        return result

    async def _reconcile_customers(self, rows: list[CanonicalRow], result: ChunkResult) -> None:
        """Step 1: create customers whose identifier is not in the store yet."""
        customer_ids = _unique(row.customer_id for row in rows)
        if not customer_ids:
            return

        try:
            existing_rows = await self.store.select_where_in(
                CUSTOMERS_TABLE, CUSTOMER_KEY, customer_ids, columns=CUSTOMER_KEY
            )
        except RemoteStoreError as e:
            result.errors.append(ChunkError(type="customer", message=e.reason))
            return

        existing = {str(row[CUSTOMER_KEY]) for row in existing_rows}
        result.customers_existing += sum(1 for cid in customer_ids if cid in existing)

        names: dict[str, str] = {}
        for row in rows:
            if row.customer_id and row.customer_id not in names:
                names[row.customer_id] = row.customer_name
        new_customers = [
            {CUSTOMER_KEY: cid, "name": names[cid]}
            for cid in customer_ids
            if cid not in existing
        ]
        if not new_customers:
            return

        try:
            await self.store.insert_many(CUSTOMERS_TABLE, new_customers)
        except RemoteStoreError as e:
            # Documents still go ahead; they may fail on their own if the
            # customer reference is enforced
            result.errors.append(ChunkError(type="customer", message=e.reason))
            return

        result.customers_created += len(new_customers)
        logger.debug("customers_inserted", count=len(new_customers))

    async def _reconcile_documents(self, rows: list[CanonicalRow], result: ChunkResult) -> dict[str, str]:
        """
        Steps 2-3: create missing documents and resolve every number to an id.

        Returns:
            Document number -> internal id, for pre-existing and new documents
        """
        numbers = _unique(row.document_number for row in rows)
        if not numbers:
            return {}

        try:
            existing_rows = await self.store.select_where_in(
                DOCUMENTS_TABLE, DOCUMENT_KEY, numbers, columns=f"id, {DOCUMENT_KEY}"
            )
        except RemoteStoreError as e:
            result.errors.append(ChunkError(type="invoice", message=e.reason))
            return {}

        resolved = {str(row[DOCUMENT_KEY]): str(row["id"]) for row in existing_rows}
        result.documents_existing += sum(1 for number in numbers if number in resolved)

        first_row: dict[str, CanonicalRow] = {}
        for row in rows:
            if row.document_number and row.document_number not in first_row:
                first_row[row.document_number] = row
        new_documents = [
            {
                "customer_id": first_row[number].customer_id,
                "invoice_date": normalize_date(first_row[number].date),
                DOCUMENT_KEY: number,
            }
            for number in numbers
            if number not in resolved
        ]
        if not new_documents:
            return resolved

        try:
            inserted = await self.store.insert_many(DOCUMENTS_TABLE, new_documents)
        except RemoteStoreError as e:
            result.errors.append(ChunkError(type="invoice", message=e.reason))
            return resolved

        for row in inserted:
            resolved[str(row[DOCUMENT_KEY])] = str(row["id"])
        result.documents_created += len(inserted)
        logger.debug("documents_inserted", count=len(inserted))
        return resolved

    def _resolve_products(
        self,
        rows: list[CanonicalRow],
        document_ids: dict[str, str],
        matcher: ProductMatcher,
        result: ChunkResult,
    ) -> list[_Candidate]:
        """Step 4: rows with a resolved document and a recognized product."""
        candidates = []
        for offset, row in enumerate(rows):
            index = result.start_index + offset
            document_id = document_ids.get(row.document_number)
            if not document_id:
                result.outcomes[index] = RowOutcome.FAILED
                continue

            match = matcher.resolve(row.product_code, row.description)
            if match is None:
                result.outcomes[index] = RowOutcome.NOT_A_PRODUCT
                result.skipped.append(SkippedItem.from_row(index, row, SkipReason.NOT_A_PRODUCT))
                continue

            candidates.append(_Candidate(index, row, document_id, match))
        return candidates

    async def _existing_line_items(
        self,
        candidates: list[_Candidate],
        result: ChunkResult,
    ) -> Optional[set[tuple[str, str]]]:
        """
        Step 5: which (document id, product code) pairs already exist.

        Returns None when the lookup failed.
        """
        pairs = list(dict.fromkeys(c.key for c in candidates))
        existing: set[tuple[str, str]] = set()
        wanted = set(pairs)

        for page in _pages(pairs, self.lookup_page_size):
            document_ids = _unique(doc_id for doc_id, _ in page)
            codes = _unique(code for _, code in page)
            try:
                found = await self.store.select_where_in(
                    LINE_ITEMS_TABLE,
                    "invoice_id",
                    document_ids,
                    columns="invoice_id, product_code",
                    also_in={"product_code": codes},
                )
            except RemoteStoreError as e:
                result.errors.append(ChunkError(type="line_item", message=e.reason))
                return None

            for row in found:
                key = (str(row["invoice_id"]), str(row["product_code"]))
                # The two IN filters return a cross product; keep real pairs only
                if key in wanted:
                    existing.add(key)

        return existing

    def _drop_duplicates(
        self,
        candidates: list[_Candidate],
        existing_pairs: set[tuple[str, str]],
        result: ChunkResult,
    ) -> list[_Candidate]:
        """Step 6: at most one line item per (document, product)."""
        taken = set(existing_pairs)
        keep = []
        for candidate in candidates:
            if candidate.key in taken:
                result.outcomes[candidate.index] = RowOutcome.DUPLICATE
                result.skipped.append(
                    SkippedItem.from_row(candidate.index, candidate.row, SkipReason.DUPLICATE)
                )
                continue
            taken.add(candidate.key)
            keep.append(candidate)
        return keep

    async def _insert_line_items(self, candidates: list[_Candidate], result: ChunkResult) -> None:
        """Step 7: one bulk insert for everything left."""
        if not candidates:
            return

        records = []
        for candidate in candidates:
            row = candidate.row
            fuzzy_info = candidate.match.fuzzy_info
            records.append({
                "invoice_id": candidate.document_id,
                "product_code": candidate.match.product.product_code,
                "qty_out": parse_quantity(row.qty_out),
                "qty_in": parse_quantity(row.qty_in),
                "description": row.description or None,
                "rate": parse_decimal(row.rate),
                "amount": parse_decimal(row.amount),
                "serial_number": row.serial_number or None,
                "match_type": candidate.match.strategy.value,
                "fuzzy_info": json.dumps(fuzzy_info) if fuzzy_info else None,
            })

        try:
            await self.store.insert_many(LINE_ITEMS_TABLE, records)
        except RemoteStoreError as e:
            result.errors.append(ChunkError(type="line_item", message=e.reason))
            for candidate in candidates:
                result.outcomes[candidate.index] = RowOutcome.FAILED
            return

        result.line_items_created += len(records)
        for candidate in candidates:
            result.outcomes[candidate.index] = RowOutcome.CREATED

    async def _assign_assets(self, created: list[_Candidate], result: ChunkResult) -> None:
        """
        Sales receipts only: hand each created product to the receipt's
        customer and track per-customer balances (out minus in).
        """
        by_customer: dict[str, list[str]] = {}
        for candidate in created:
            customer_id = candidate.row.customer_id
            code = candidate.match.product.product_code
            if not customer_id:
                continue
            by_customer.setdefault(customer_id, [])
            if code not in by_customer[customer_id]:
                by_customer[customer_id].append(code)

            key = (customer_id, code)
            balance = parse_quantity(candidate.row.qty_out) - parse_quantity(candidate.row.qty_in)
            result.asset_balances[key] = result.asset_balances.get(key, 0) + balance

        # A product listed under several customers ends with the last one
        owner: dict[str, str] = {}
        for customer_id, codes in by_customer.items():
            for code in codes:
                owner[code] = customer_id
        grouped: dict[str, list[str]] = {}
        for code, customer_id in owner.items():
            grouped.setdefault(customer_id, []).append(code)

        for customer_id, codes in grouped.items():
            try:
                await self.store.update_where_in(
                    CATALOG_TABLE, {"assigned_customer": customer_id}, "product_code", codes
                )
            except RemoteStoreError as e:
                result.errors.append(ChunkError(type="asset_assignment", message=e.reason))

    def _log_chunk(self, result: ChunkResult) -> None:
        logger.info(
            "chunk_reconciled",
            start=result.start_index,
            rows=result.row_count,
            customers_created=result.customers_created,
            documents_created=result.documents_created,
            line_items_created=result.line_items_created,
            skipped=len(result.skipped),
            errors=len(result.errors)
        )

    # ===================
    # DRY RUN
    # ===================

    async def preview_statuses(self, rows: list[CanonicalRow]) -> PreviewCheck:
        """
        Read-only pass telling, per row, what an import would do.

        Uses the same bulk lookups as a real run. Remote errors propagate;
        nothing is written.

        Raises:
            RemoteStoreError: If a lookup fails
        """
        check = PreviewCheck()
        if not rows:
            return check

        customer_ids = _unique(row.customer_id for row in rows)
        existing_customers: set[str] = set()
        for page in _pages(customer_ids, self.lookup_page_size):
            found = await self.store.select_where_in(
                CUSTOMERS_TABLE, CUSTOMER_KEY, page, columns=CUSTOMER_KEY
            )
            existing_customers.update(str(r[CUSTOMER_KEY]) for r in found)

        numbers = _unique(row.document_number for row in rows)
        document_ids: dict[str, str] = {}
        for page in _pages(numbers, self.lookup_page_size):
            found = await self.store.select_where_in(
                DOCUMENTS_TABLE, DOCUMENT_KEY, page, columns=f"id, {DOCUMENT_KEY}"
            )
            document_ids.update({str(r[DOCUMENT_KEY]): str(r["id"]) for r in found})

        matcher = await self.load_catalog()

        # Pairs on documents that already exist; new documents cannot have any
        candidates = []
        for offset, row in enumerate(rows):
            document_id = document_ids.get(row.document_number)
            match = matcher.resolve(row.product_code, row.description)
            if document_id and match is not None:
                candidates.append(_Candidate(offset, row, document_id, match))
        probe = ChunkResult(start_index=0, row_count=len(rows))
        existing_pairs = await self._existing_line_items(candidates, probe) if candidates else set()
        if existing_pairs is None:
            raise RemoteStoreError("select", LINE_ITEMS_TABLE, probe.errors[-1].message)

        check.customers_existing = sum(1 for cid in customer_ids if cid in existing_customers)
        check.customers_created = len(customer_ids) - check.customers_existing
        check.documents_existing = sum(1 for n in numbers if n in document_ids)
        check.documents_created = len(numbers) - check.documents_existing

        taken: set[tuple[str, str]] = set()
        for row in rows:
            match = matcher.resolve(row.product_code, row.description)
            document_id = document_ids.get(row.document_number)
            if match is None:
                line_status = f"Skipped ({SkipReason.NOT_A_PRODUCT.value})"
            else:
                code = match.product.product_code
                key = (document_id, code) if document_id else ("new:" + row.document_number, code)
                if key in existing_pairs or key in taken:
                    line_status = f"Skipped ({SkipReason.DUPLICATE.value})"
                else:
                    taken.add(key)
                    line_status = "New"

            if line_status == "New":
                check.line_items_created += 1
            else:
                check.line_items_skipped += 1

            check.statuses.append({
                "customer_status": "Existing" if row.customer_id in existing_customers else "New",
                "document_status": "Existing" if document_id else "New",
                "line_item_status": line_status,
            })

        logger.info("preview_checked", rows=len(rows), **check.summary())
        return check
