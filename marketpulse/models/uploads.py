"""
CSV upload models: row validation issues, import results, and upload batches.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from marketpulse.models.enums import DuplicateOption, UploadStatus


class ValidationIssue(BaseModel):
    """A problem found in one field of one CSV row (rows are 1-based, header excluded)."""

    row: int = Field(ge=1)
    field: str
    message: str
    value: Optional[Any] = None


class DuplicateInfo(BaseModel):
    """A row whose order number was already seen."""

    row: int = Field(ge=1)
    order_number: str
    source: str = Field(description="'file' for in-file repeats, 'database' for stored orders")
    duplicate_of: Optional[int] = Field(
        default=None, description="Earlier row number for in-file repeats"
    )


class UploadBatch(BaseModel):
    """
    Record of one CSV upload.

    Attributes:
        id: Batch identifier
        filename: Uploaded file name
        status: processing -> completed | partial | failed
        total_rows: Data rows in the file
        processed_rows: Rows inserted or overwritten
        duplicate_rows: Rows skipped as duplicates
        failed_rows: Rows rejected by validation
        uploaded_by: User id of the uploader
        processing_time_seconds: Wall time spent importing
        error_log: Validation issues, capped
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    filename: str
    status: UploadStatus = UploadStatus.PROCESSING
    total_rows: int = 0
    processed_rows: int = 0
    duplicate_rows: int = 0
    failed_rows: int = 0
    duplicate_option: DuplicateOption = DuplicateOption.SKIP
    uploaded_at: datetime
    uploaded_by: Optional[str] = None
    processing_time_seconds: Optional[float] = None
    error_log: list[ValidationIssue] = Field(default_factory=list)


class ImportResult(BaseModel):
    """Outcome of a CSV import or a validation dry run."""

    batch_id: Optional[str] = None
    dry_run: bool = False
    status: UploadStatus
    total_rows: int
    valid_rows: int
    processed_rows: int = 0
    inserted_rows: int = 0
    overwritten_rows: int = 0
    duplicate_rows: int = 0
    failed_rows: int = 0
    errors: list[ValidationIssue] = Field(default_factory=list)
    duplicates: list[DuplicateInfo] = Field(default_factory=list)
