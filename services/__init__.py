"""
Business logic services.

Each service handles one stage of the import pipeline.
"""

from services.record_store import RecordStore, RetryPolicy, SupabaseRecordStore
from services.mapping_store_service import JsonMappingStore, MappingStore, column_signature
from services.column_mapper_service import ColumnMapper, auto_map, check_mapping
from services.row_projector import project_rows
from services.row_validator import validate_rows, is_valid_date, is_number, normalize_date
from services.product_matcher_service import ProductMatcher, ProductMatch, similarity
from services.reconciliation_service import ReconciliationEngine, PreviewCheck
from services.batch_scheduler import BatchScheduler, SchedulerState
from services.import_ledger_service import ImportLedgerService
from services.import_task import ImportTask, ImportRunResult
from services.import_service import ImportService, ImportSession, get_import_service

__all__ = [
    "RecordStore",
    "RetryPolicy",
    "SupabaseRecordStore",
    "JsonMappingStore",
    "MappingStore",
    "column_signature",
    "ColumnMapper",
    "auto_map",
    "check_mapping",
    "project_rows",
    "validate_rows",
    "is_valid_date",
    "is_number",
    "normalize_date",
    "ProductMatcher",
    "ProductMatch",
    "similarity",
    "ReconciliationEngine",
    "PreviewCheck",
    "BatchScheduler",
    "SchedulerState",
    "ImportLedgerService",
    "ImportTask",
    "ImportRunResult",
    "ImportService",
    "ImportSession",
    "get_import_service",
]
