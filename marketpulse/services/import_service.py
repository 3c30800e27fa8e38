"""
CSV Import Service - marketplace order exports into sales transactions.

Reads the file with pandas, validates every row, detects duplicate order
numbers (inside the file and against storage), writes the valid rows, and
records an UploadBatch describing the outcome.

Row numbers in validation issues are file line numbers: the header is
line 1, so the first data row is line 2.
"""

import io
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import pandas as pd
import structlog

from marketpulse.auth.session import AuthSession
from marketpulse.engine.coercion import parse_money, parse_quantity, parse_timestamp
from marketpulse.engine.periods import to_naive_utc, utcnow
from marketpulse.errors import ImportValidationError
from marketpulse.models.enums import STATUS_LABELS, DeliveryStatus, DuplicateOption, UploadStatus
from marketpulse.models.transactions import TransactionRecord
from marketpulse.models.uploads import DuplicateInfo, ImportResult, UploadBatch, ValidationIssue
from marketpulse.storage.base import StorageBackend, StorageError

REQUIRED_COLUMNS = (
    "order_number",
    "product_name",
    "quantity",
    "selling_price",
    "cost_price",
    "delivery_status",
    "order_created_at",
    "platform_id",
    "store_id",
)
OPTIONAL_COLUMNS = (
    "pic_name",
    "sku_reference",
    "manual_order_number",
    "expedition",
    "tracking_number",
)
COLUMN_ALIASES = {
    "pic": "pic_name",
    "product_sku": "sku_reference",
    "occurred_at": "order_created_at",
}
MAX_LOGGED_ISSUES = 100
HEADER_LINES = 1


@dataclass
class ValidatedFile:
    """Rows that passed validation, keyed by file line, plus everything that did not."""

    total_rows: int
    records: list[tuple[int, TransactionRecord]] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)
    failed_lines: set[int] = field(default_factory=set)


def _normalize_column(name: Any) -> str:
    key = "_".join(str(name).strip().lower().replace("-", " ").split())
    return COLUMN_ALIASES.get(key, key)


def _text(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _parse_order_date(value: str):
    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed
    result = pd.to_datetime(value, errors="coerce", dayfirst=True)
    if pd.isna(result):
        return None
    return to_naive_utc(result.to_pydatetime())


class CSVImportService:
    """
    Validates and imports marketplace CSV exports.

    Attributes:
        storage: Storage backend receiving transactions and batches
        max_rows: Upper bound on data rows per file
    """

    def __init__(self, storage: StorageBackend, max_rows: int = 20000):
        self.storage = storage
        self.max_rows = max_rows
        self.logger = structlog.get_logger()

    # =========================================================================
    # Parsing and validation
    # =========================================================================

    def read_csv(self, content: bytes) -> pd.DataFrame:
        """
        Parse CSV bytes into a string-typed DataFrame with normalized headers.

        Raises:
            ImportValidationError: If the file is empty, unparseable, too
                large, or missing required columns
        """
        if not content or not content.strip():
            raise ImportValidationError("Uploaded file is empty")

        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")

        try:
            df = pd.read_csv(
                io.StringIO(text),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
            raise ImportValidationError(f"Could not parse CSV: {e}") from e

        df.columns = [_normalize_column(c) for c in df.columns]

        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ImportValidationError(
                f"Missing required columns: {', '.join(missing)}",
                details={
                    "missing_columns": missing,
                    "required_columns": list(REQUIRED_COLUMNS),
                    "optional_columns": list(OPTIONAL_COLUMNS),
                },
            )

        if len(df) == 0:
            raise ImportValidationError("File contains no data rows")

        if len(df) > self.max_rows:
            raise ImportValidationError(
                f"File has {len(df)} rows; the limit is {self.max_rows}",
                details={"rows": len(df), "max_rows": self.max_rows},
            )

        return df

    def validate_frame(
        self,
        df: pd.DataFrame,
        session: Optional[AuthSession] = None,
        batch_id: Optional[str] = None,
    ) -> ValidatedFile:
        """Validate each row and build TransactionRecords for the valid ones."""
        result = ValidatedFile(total_rows=len(df))

        for position, raw in enumerate(df.to_dict(orient="records")):
            line = position + HEADER_LINES + 1
            row_issues: list[ValidationIssue] = []

            def issue(field_name: str, message: str, value: Any = None) -> None:
                row_issues.append(
                    ValidationIssue(row=line, field=field_name, message=message, value=value)
                )

            order_number = _text(raw.get("order_number"))
            if not order_number:
                issue("order_number", "Order number is required")

            product_name = _text(raw.get("product_name"))
            if not product_name:
                issue("product_name", "Product name is required")

            platform_id = _text(raw.get("platform_id"))
            if not platform_id:
                issue("platform_id", "Platform is required")

            store_id = _text(raw.get("store_id"))
            if not store_id:
                issue("store_id", "Store is required")

            raw_quantity = _text(raw.get("quantity"))
            quantity, bad = parse_quantity(raw_quantity)
            if bad:
                issue("quantity", "Quantity must be a whole number", raw_quantity)
            elif quantity < 1:
                issue("quantity", "Quantity must be at least 1", raw_quantity)

            prices = {}
            for price_field in ("selling_price", "cost_price"):
                raw_price = _text(raw.get(price_field))
                amount, bad = parse_money(raw_price)
                if bad:
                    issue(price_field, "Price must be numeric", raw_price)
                elif amount < 0:
                    issue(price_field, "Price cannot be negative", raw_price)
                prices[price_field] = amount

            raw_status = _text(raw.get("delivery_status"))
            status = DeliveryStatus.from_label(raw_status)
            if status is None:
                issue(
                    "delivery_status",
                    f"Unknown delivery status; expected one of: {', '.join(STATUS_LABELS.values())}",
                    raw_status,
                )

            raw_date = _text(raw.get("order_created_at"))
            occurred_at = _parse_order_date(raw_date) if raw_date else None
            if occurred_at is None:
                issue("order_created_at", "Order date is missing or not a valid date", raw_date)

            if row_issues:
                result.issues.extend(row_issues)
                result.failed_lines.add(line)
                continue

            result.records.append(
                (
                    line,
                    TransactionRecord(
                        order_number=order_number,
                        manual_order_number=_optional_text(raw.get("manual_order_number")),
                        pic_name=_optional_text(raw.get("pic_name")),
                        platform_id=platform_id,
                        store_id=store_id,
                        product_sku=_optional_text(raw.get("sku_reference")),
                        product_name=product_name,
                        quantity=quantity,
                        cost_price=prices["cost_price"],
                        selling_price=prices["selling_price"],
                        profit=prices["selling_price"] - prices["cost_price"],
                        delivery_status=status,
                        expedition=_optional_text(raw.get("expedition")),
                        tracking_number=_optional_text(raw.get("tracking_number")),
                        occurred_at=occurred_at,
                        upload_batch_id=batch_id,
                        created_by=session.user_id if session is not None else None,
                    ),
                )
            )

        return result

    def find_duplicates(
        self, records: list[tuple[int, TransactionRecord]]
    ) -> tuple[list[DuplicateInfo], dict[int, str], set[int]]:
        """
        Detect repeated orders.

        Returns:
            (duplicate report, line -> stored transaction id for database
             duplicates, lines repeating an earlier line of the same file)
        """
        duplicates: list[DuplicateInfo] = []
        in_file: set[int] = set()
        first_seen: dict[tuple[str, str], int] = {}

        for line, record in records:
            key = (record.order_number, record.platform_id)
            if key in first_seen:
                in_file.add(line)
                duplicates.append(
                    DuplicateInfo(
                        row=line,
                        order_number=record.order_number,
                        source="file",
                        duplicate_of=first_seen[key],
                    )
                )
            else:
                first_seen[key] = line

        existing = self.storage.find_existing_orders([r.order_number for _, r in records])
        stored: dict[int, str] = {}
        for line, record in records:
            if line in in_file:
                continue
            txn_id = existing.get((record.order_number, record.platform_id))
            if txn_id is not None:
                stored[line] = txn_id
                duplicates.append(
                    DuplicateInfo(row=line, order_number=record.order_number, source="database")
                )

        duplicates.sort(key=lambda d: d.row)
        return duplicates, stored, in_file

    @staticmethod
    def _status(processed: int, failed: int) -> UploadStatus:
        if failed and not processed:
            return UploadStatus.FAILED
        if failed:
            return UploadStatus.PARTIAL
        return UploadStatus.COMPLETED

    # =========================================================================
    # Operations
    # =========================================================================

    def validate_csv(
        self,
        content: bytes,
        duplicate_option: DuplicateOption = DuplicateOption.SKIP,
    ) -> ImportResult:
        """Dry run: report what an import would do without writing anything."""
        df = self.read_csv(content)
        validated = self.validate_frame(df)
        duplicates, stored, in_file = self.find_duplicates(validated.records)

        if duplicate_option == DuplicateOption.OVERWRITE:
            skipped = len(in_file)
            overwritten = len(stored)
        else:
            skipped = len(in_file) + len(stored)
            overwritten = 0
        processable = len(validated.records) - skipped
        failed = len(validated.failed_lines)

        self.logger.info(
            "csv_validated",
            total_rows=validated.total_rows,
            valid_rows=len(validated.records),
            failed_rows=failed,
            duplicates=len(duplicates),
        )
        return ImportResult(
            dry_run=True,
            status=self._status(processable, failed),
            total_rows=validated.total_rows,
            valid_rows=len(validated.records),
            processed_rows=processable,
            inserted_rows=processable - overwritten,
            overwritten_rows=overwritten,
            duplicate_rows=skipped,
            failed_rows=failed,
            errors=validated.issues,
            duplicates=duplicates,
        )

    def import_csv(
        self,
        content: bytes,
        filename: str,
        session: AuthSession,
        duplicate_option: DuplicateOption = DuplicateOption.SKIP,
    ) -> ImportResult:
        """
        Import a CSV file and record the upload batch.

        In-file repeats of an order are always skipped. Orders already in
        storage are skipped or overwritten according to ``duplicate_option``.

        Raises:
            ImportValidationError: If the file cannot be imported at all
            StorageError: If writing fails (no row is written and the batch
                is marked failed)
        """
        started = time.perf_counter()
        batch = UploadBatch(
            filename=filename,
            uploaded_at=utcnow(),
            uploaded_by=session.user_id,
            duplicate_option=duplicate_option,
        )
        self.storage.write_upload_batch(batch)
        self.logger.info(
            "csv_import_started",
            batch_id=batch.id,
            filename=filename,
            user_id=session.user_id,
            duplicate_option=duplicate_option.value,
        )

        try:
            df = self.read_csv(content)
            validated = self.validate_frame(df, session=session, batch_id=batch.id)
            duplicates, stored, in_file = self.find_duplicates(validated.records)

            to_insert: list[TransactionRecord] = []
            overwrites: dict[str, dict] = {}
            skipped = len(in_file)
            for line, record in validated.records:
                if line in in_file:
                    continue
                existing_id = stored.get(line)
                if existing_id is None:
                    to_insert.append(record)
                elif duplicate_option == DuplicateOption.OVERWRITE:
                    overwrites[existing_id] = record.model_dump(
                        exclude={"id", "created_at", "updated_at", "created_by"}
                    )
                else:
                    skipped += 1

            inserted_ids, overwritten = self.storage.upsert_transactions(to_insert, overwrites)
            inserted = len(inserted_ids)

        except (ImportValidationError, StorageError) as e:
            batch.status = UploadStatus.FAILED
            batch.processing_time_seconds = round(time.perf_counter() - started, 3)
            batch.error_log = [ValidationIssue(row=1, field="file", message=str(e))]
            self.storage.write_upload_batch(batch)
            self.logger.warning("csv_import_failed", batch_id=batch.id, error=str(e))
            raise

        processed = inserted + overwritten
        failed = len(validated.failed_lines)
        batch.status = self._status(processed, failed)
        batch.total_rows = validated.total_rows
        batch.processed_rows = processed
        batch.duplicate_rows = skipped
        batch.failed_rows = failed
        batch.processing_time_seconds = round(time.perf_counter() - started, 3)
        batch.error_log = validated.issues[:MAX_LOGGED_ISSUES]
        self.storage.write_upload_batch(batch)

        self.logger.info(
            "csv_import_completed",
            batch_id=batch.id,
            status=batch.status.value,
            total_rows=batch.total_rows,
            inserted=inserted,
            overwritten=overwritten,
            duplicates=skipped,
            failed=failed,
            seconds=batch.processing_time_seconds,
        )
        return ImportResult(
            batch_id=batch.id,
            status=batch.status,
            total_rows=validated.total_rows,
            valid_rows=len(validated.records),
            processed_rows=processed,
            inserted_rows=inserted,
            overwritten_rows=overwritten,
            duplicate_rows=skipped,
            failed_rows=failed,
            errors=validated.issues,
            duplicates=duplicates,
        )
