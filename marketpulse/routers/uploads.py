"""
Uploads router - CSV import of marketplace order exports.
"""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from marketpulse.auth.dependencies import get_auth_session, require_writer
from marketpulse.auth.session import AuthSession
from marketpulse.config import get_settings
from marketpulse.errors import ImportValidationError
from marketpulse.models.enums import DuplicateOption
from marketpulse.services.import_service import CSVImportService
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


async def _read_upload(file: UploadFile) -> bytes:
    filename = file.filename or ""
    if filename and not filename.lower().endswith(".csv"):
        raise ImportValidationError(f"Expected a .csv file, got '{filename}'")
    content = await file.read()
    if not content:
        raise ImportValidationError("Uploaded file is empty")
    return content


def _service() -> CSVImportService:
    return CSVImportService(get_storage(), max_rows=get_settings().upload_max_rows)


@router.post("/csv")
async def upload_csv(
    file: UploadFile = File(...),
    duplicate_option: DuplicateOption = Form(DuplicateOption.SKIP),
    session: AuthSession = Depends(require_writer),
):
    """
    Import a CSV export.

    Invalid rows are reported and skipped. Orders already stored are skipped
    or overwritten according to ``duplicate_option``.
    """
    content = await _read_upload(file)
    logger.info(
        "csv_upload_received",
        filename=file.filename,
        size_bytes=len(content),
        user_id=session.user_id,
    )
    result = _service().import_csv(
        content,
        filename=file.filename or "upload.csv",
        session=session,
        duplicate_option=duplicate_option,
    )
    return {"success": True, "data": result}


@router.post("/csv/validate")
async def validate_csv(
    file: UploadFile = File(...),
    duplicate_option: DuplicateOption = Form(DuplicateOption.SKIP),
    session: AuthSession = Depends(require_writer),
):
    """Dry run: what an import of this file would do."""
    content = await _read_upload(file)
    result = _service().validate_csv(content, duplicate_option=duplicate_option)
    return {"success": True, "data": result}


@router.get("/batches")
async def list_batches(
    limit: int = Query(20, ge=1, le=100),
    session: AuthSession = Depends(get_auth_session),
):
    """Most recent upload batches first."""
    return {"success": True, "data": get_storage().list_upload_batches(limit=limit)}
