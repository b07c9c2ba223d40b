"""
Import pipeline: preview and commit of uploaded bank exports.

commit() state machine per job:

    processing -> completed    all rows consumed (row errors are data)
    processing -> failed       the pipeline itself raised (asset missing,
                               unreadable file, ...); the error is stored
                               and re-raised

Rows are processed sequentially in source order. Each persisted row is its
own write unit (transaction insert + balance delta), so a rejected row never
rolls back its neighbours.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import sqlite3

from fintrack.core.assets import AssetService
from fintrack.core.config import ImportSettings
from fintrack.core.exceptions import FintrackError, MalformedSourceError, ValidationError
from fintrack.core.models import ImportHistory, ImportRowError, ImportStatus, TransactionType
from fintrack.core.security import check_organization, require_user_context
from fintrack.core.transaction_service import TransactionService
from fintrack.parsers.column_mapping import ColumnMapping, suggest_column_mapping
from fintrack.parsers.row_mapper import RowRejection, jsonable_row, map_row
from fintrack.parsers.tabular import detect_file_type, open_tabular_source
from fintrack.services.imports.history import ImportHistoryStore

logger = logging.getLogger(__name__)

DEFAULT_INCOME_CATEGORY = "Other Income"
DEFAULT_EXPENSE_CATEGORY = "Other"

# Transactions returned with one import's details
IMPORT_DETAIL_TRANSACTIONS = 100


@dataclass
class UploadedFile:
    """An uploaded file as received at the boundary."""

    file_name: str
    content: bytes
    mimetype: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path], mimetype: str = None) -> "UploadedFile":
        path = Path(path)
        return cls(file_name=path.name, content=path.read_bytes(), mimetype=mimetype)


@dataclass
class ImportOptions:
    """Caller-confirmed settings for one import commit."""

    asset_id: int
    column_mapping: ColumnMapping
    date_format: Optional[str] = None
    skip_duplicates: Optional[bool] = None
    sheet_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportOptions":
        """Build options from a request body (assetId, columnMapping, ...)."""
        if data.get("assetId") in (None, ""):
            raise ValidationError("assetId is required", field="assetId")
        mapping = data.get("columnMapping") or {}
        if not isinstance(mapping, ColumnMapping):
            mapping = ColumnMapping.from_dict(mapping)
        try:
            asset_id = int(data["assetId"])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid assetId: {data['assetId']!r}", field="assetId")
        return cls(
            asset_id=asset_id,
            column_mapping=mapping,
            date_format=data.get("dateFormat") or None,
            skip_duplicates=data.get("skipDuplicates"),
            sheet_name=data.get("sheetName") or None,
        )


@dataclass
class ImportResult:
    """Outcome of one import commit."""

    import_id: int
    total_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    skipped_rows: int = 0
    errors: List[ImportRowError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "importId": self.import_id,
            "totalRows": self.total_rows,
            "successfulRows": self.successful_rows,
            "failedRows": self.failed_rows,
            "skippedRows": self.skipped_rows,
            "errors": [e.to_dict() for e in self.errors],
        }


class ImportService:
    """
    Preview and commit imports of CSV and Excel bank exports.

    Usage:
        service = ImportService(conn)
        upload = UploadedFile("jan.csv", content)

        preview = service.preview(upload)
        result = service.commit(
            upload,
            user_id="user-1",
            organization_id="org-1",
            options=ImportOptions(asset_id=1, column_mapping=ColumnMapping(**preview["suggestedMapping"])),
        )
        print(f"{result.successful_rows}/{result.total_rows} imported")
    """

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        settings: ImportSettings = None,
        transaction_service: TransactionService = None,
        asset_service: AssetService = None,
    ):
        """
        Initialize import service.

        Args:
            db_connection: SQLite database connection
            settings: Import settings (preview size, upload limit, defaults)
            transaction_service: Writer for imported transactions
            asset_service: Asset lookup and authorization
        """
        self.conn = db_connection
        self.settings = settings or ImportSettings()
        self.transactions = transaction_service or TransactionService(db_connection)
        self.assets = asset_service or AssetService(db_connection, self.transactions.reconciler)
        self.history = ImportHistoryStore(
            db_connection,
            write_retries=self.transactions.write_retries,
            retry_delay=self.transactions.retry_delay,
        )

    def _check_upload(self, upload: UploadedFile) -> str:
        """Reject uploads the boundary does not accept; return 'csv' or 'excel'."""
        if upload.size > self.settings.max_upload_bytes:
            raise MalformedSourceError(
                f"File {upload.file_name} is {upload.size} bytes; "
                f"limit is {self.settings.max_upload_bytes} bytes"
            )
        return detect_file_type(upload.file_name, upload.mimetype)

    def _open(self, upload: UploadedFile):
        return open_tabular_source(
            upload.file_name,
            upload.content,
            mimetype=upload.mimetype,
            encoding=self.settings.source_encoding,
        )

    def preview(self, upload: UploadedFile, sheet_name: str = None) -> Dict[str, Any]:
        """
        Show headers, sample rows and a suggested mapping without writing anything.

        Returns:
            {fileName, fileType, headers, preview, sheets?, suggestedMapping}

        Raises:
            MalformedSourceError: If the file cannot be read as a table
        """
        file_type = self._check_upload(upload)
        source = self._open(upload)

        headers = source.detect_headers(sheet_name)
        rows = source.preview(self.settings.preview_limit, sheet_name)

        response = {
            "fileName": upload.file_name,
            "fileType": file_type,
            "headers": headers,
            "preview": [jsonable_row(row) for row in rows],
            "suggestedMapping": suggest_column_mapping(headers).to_dict(),
        }
        if file_type == "excel":
            response["sheets"] = source.list_sections()
        return response

    @require_user_context
    def commit(
        self,
        upload: UploadedFile,
        user_id: str,
        organization_id: str,
        options: ImportOptions,
    ) -> ImportResult:
        """
        Import every row of an upload into one asset.

        Args:
            upload: The uploaded file
            user_id: Acting user
            organization_id: Caller's organization
            options: Asset, confirmed column mapping and import switches

        Returns:
            ImportResult with per-row errors

        Raises:
            MalformedSourceError: Unsupported, oversized or unreadable file
            ValidationError: Incomplete column mapping
            AssetNotFoundError, ForbiddenError: Target asset not usable
        """
        file_type = self._check_upload(upload)
        mapping = options.column_mapping
        mapping.validate()
        skip_duplicates = (
            self.settings.skip_duplicates if options.skip_duplicates is None else bool(options.skip_duplicates)
        )

        import_id = self.history.create(
            file_type=file_type,
            file_name=upload.file_name,
            user_id=user_id,
            organization_id=organization_id,
            asset_id=options.asset_id,
            mapping=mapping.to_dict(),
        )
        result = ImportResult(import_id=import_id)

        try:
            asset = self.assets.get(options.asset_id, organization_id)
            source = self._open(upload)
            mapping.validate(source.detect_headers(options.sheet_name))

            for index, raw in enumerate(source.rows(options.sheet_name), start=1):
                result.total_rows += 1
                outcome = map_row(raw, mapping, options.date_format)

                if isinstance(outcome, RowRejection):
                    logger.debug(f"Import {import_id} row {index} rejected: {outcome.reason}")
                    result.failed_rows += 1
                    result.errors.append(ImportRowError(index, outcome.reason, jsonable_row(outcome.raw)))
                    continue

                if skip_duplicates and self.transactions.find_duplicate(
                    asset.id, outcome.date, outcome.amount, outcome.description
                ):
                    result.skipped_rows += 1
                    continue

                category = outcome.category or (
                    DEFAULT_INCOME_CATEGORY if outcome.type is TransactionType.INCOME else DEFAULT_EXPENSE_CATEGORY
                )
                try:
                    self.transactions.create(
                        user_id=user_id,
                        organization_id=organization_id,
                        asset_id=asset.id,
                        txn_type=outcome.type,
                        amount=outcome.amount,
                        category=category,
                        txn_date=outcome.date,
                        currency=outcome.currency or asset.currency,
                        description=outcome.description,
                        import_history_id=import_id,
                        metadata={"imported": True, "originalRow": jsonable_row(outcome.raw)},
                        source="import",
                    )
                except ValidationError as e:
                    result.failed_rows += 1
                    result.errors.append(ImportRowError(index, e.message, jsonable_row(outcome.raw)))
                    continue

                result.successful_rows += 1

            self.history.finalize(
                import_id,
                ImportStatus.COMPLETED,
                total_rows=result.total_rows,
                successful_rows=result.successful_rows,
                failed_rows=result.failed_rows,
                skipped_rows=result.skipped_rows,
                errors=result.errors,
            )

        except Exception as e:
            logger.exception(f"Import {import_id} failed: {e}")
            self._mark_failed(import_id, result, e)
            raise

        return result

    def _mark_failed(self, import_id: int, result: ImportResult, error: Exception) -> None:
        """Finalize a job as failed; a failure here is logged so the original error propagates."""
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        try:
            self.history.finalize(
                import_id,
                ImportStatus.FAILED,
                total_rows=result.total_rows,
                successful_rows=result.successful_rows,
                failed_rows=result.failed_rows,
                skipped_rows=result.skipped_rows,
                errors=[ImportRowError(row=None, error=message)],
            )
        except FintrackError:
            logger.exception(f"Could not mark import {import_id} as failed")

    def list_history(self, organization_id: str, user_id: str = None, limit: int = 10) -> List[ImportHistory]:
        """Recent import jobs of an organization, newest first."""
        return self.history.list(organization_id, user_id=user_id, limit=limit)

    def get_import(self, import_id: int, organization_id: str) -> Dict[str, Any]:
        """
        One import job with up to 100 of its transactions.

        Raises:
            ImportNotFoundError: If the job does not exist
            ForbiddenError: If it belongs to another organization
        """
        history = self.history.get(import_id)
        check_organization(history.organization_id, organization_id, what=f"import {import_id}")

        details = history.to_dict()
        details["transactionCount"] = self.history.transaction_count(import_id)
        details["transactions"] = [
            t.to_dict() for t in self.history.transactions(import_id, IMPORT_DETAIL_TRANSACTIONS)
        ]
        return details
