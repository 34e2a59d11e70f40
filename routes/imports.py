"""
Import API routes.

Upload an invoice or sales receipt export, adjust its column mapping,
dry-run it, then run the import in the background and poll its progress.
"""

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import JSONResponse, Response
from typing import Optional
import structlog

from models.import_api import (
    FieldMappingEntry,
    ImportPreviewResponse,
    ImportResumeRequest,
    ImportStartRequest,
    ImportStatusResponse,
    MappingUpdateRequest,
    PreviewCheckResponse,
)
from models.imports import ImportType
from services.import_service import ImportSession, get_import_service
from services.import_task import ImportTask
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def _preview_response(session: ImportSession) -> ImportPreviewResponse:
    issues = session.validate()
    return ImportPreviewResponse(
        file_name=session.file_name,
        row_count=len(session.rows),
        columns=session.columns,
        mapping=[
            FieldMappingEntry.from_spec(spec, session.mapping.get(spec.key))
            for spec in session.mapper.fields
        ],
        mapping_from_saved=session.mapper.from_saved,
        preview_rows=session.preview(),
        # Cap the payload; issue_count has the real total
        issues=[issue.to_dict() for issue in issues[:500]],
        issue_count=len(issues),
    )


def _status_response(task: ImportTask) -> ImportStatusResponse:
    data = task.status()
    if task.result is not None:
        data["errors"] = [e.to_dict() for e in task.result.errors]
        data["skipped_items"] = [s.to_dict() for s in task.result.skipped]
        data["outcome_counts"] = task.result.outcome_counts()
    return ImportStatusResponse(**data)


# ===================
# FILE & MAPPING ROUTES
# ===================

@router.post("/{import_type}/preview", response_model=ImportPreviewResponse)
async def preview_import(import_type: ImportType, file: UploadFile = File(...)):
    """
    Load an export file and infer its column mapping.

    A mapping saved for the same header list is reused as-is.

    Returns:
        ImportPreviewResponse with mapping, first rows and validation issues
    """
    try:
        contents = await file.read()
        session = get_import_service().load_file(import_type, contents, file.filename or "upload")
        return _preview_response(session)

    except Exception as e:
        return handle_error(e)


@router.put("/{import_type}/mapping", response_model=ImportPreviewResponse)
async def update_mapping(import_type: ImportType, data: MappingUpdateRequest):
    """Change which column feeds which field; the new mapping is saved."""
    try:
        session = get_import_service().update_mapping(import_type, data.changes)
        return _preview_response(session)

    except Exception as e:
        return handle_error(e)


@router.delete("/{import_type}/mapping", response_model=ImportPreviewResponse)
async def reset_mapping(import_type: ImportType):
    """Forget the saved mapping for the loaded file's header list."""
    try:
        session = get_import_service().reset_mapping(import_type)
        return _preview_response(session)

    except Exception as e:
        return handle_error(e)


# ===================
# RUN ROUTES
# ===================

@router.post("/{import_type}/check", response_model=PreviewCheckResponse)
async def check_import(import_type: ImportType):
    """
    Dry run: what an import would create or skip, row by row.

    Nothing is written.
    """
    try:
        check = await get_import_service().check_preview(import_type)
        return PreviewCheckResponse(statuses=check.statuses, summary=check.summary())

    except Exception as e:
        return handle_error(e)


@router.post("/{import_type}/start", response_model=ImportStatusResponse, status_code=202)
async def start_import(import_type: ImportType, data: Optional[ImportStartRequest] = None):
    """
    Launch a background import of the loaded file.

    Refused with 409 while the surface already has a run, and with 422 when
    the mapping is incomplete or rows fail validation (unless
    exclude_invalid is set).
    """
    try:
        options = data or ImportStartRequest()
        task = await get_import_service().start_import(
            import_type,
            exclude_invalid=options.exclude_invalid,
            required_only=options.required_only,
            chunk_size=options.chunk_size,
        )
        return _status_response(task)

    except Exception as e:
        return handle_error(e)


@router.get("/{import_type}/status", response_model=ImportStatusResponse)
async def import_status(import_type: ImportType):
    """Progress of the running import, or the result of the last one."""
    try:
        return _status_response(get_import_service().get_task(import_type))

    except Exception as e:
        return handle_error(e)


@router.post("/{import_type}/cancel", response_model=ImportStatusResponse)
async def cancel_import(import_type: ImportType):
    """Stop the run after the chunk in flight."""
    try:
        task = get_import_service().get_task(import_type)
        task.cancel()
        return _status_response(task)

    except Exception as e:
        return handle_error(e)


@router.post("/{import_type}/resume", response_model=ImportStatusResponse)
async def resume_import(import_type: ImportType, data: Optional[ImportResumeRequest] = None):
    """Continue (or abort) a run paused on an error."""
    try:
        options = data or ImportResumeRequest()
        task = get_import_service().get_task(import_type)
        if options.abort:
            task.abort()
        else:
            task.resume(options.target_index)
        return _status_response(task)

    except Exception as e:
        return handle_error(e)


@router.get("/{import_type}/skipped.csv")
async def export_skipped(import_type: ImportType):
    """Every row of the last run that was not created, as CSV."""
    try:
        csv_text = get_import_service().skipped_rows_csv(import_type)
        return Response(
            content=csv_text,
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="{import_type.value}_skipped.csv"'
            }
        )

    except Exception as e:
        return handle_error(e)
