"""Bank statement import service.

Sequences parsing, normalisation, duplicate detection, categorisation and
linking for one uploaded file and manages the import file's lifecycle:
an import file is created in PROCESSING and ends COMPLETED or FAILED,
never stuck in between.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Union

from bankimport.config import ImportSettings
from bankimport.database.base import Database
from bankimport.domain.categorisation import CategoryAssignment, CategoryRuleEngine
from bankimport.domain.duplicates import DuplicateCheck, DuplicateDetectionResult, detect_duplicates
from bankimport.domain.entities import (
    DuplicatePolicy,
    DuplicateStatus,
    ImportFile,
    ImportPage,
    ImportStatus,
    LinkType,
    NewTransaction,
    RecurrencePattern,
    TransactionSource,
)
from bankimport.domain.errors import (
    FormatNotImplementedError,
    ImportFailedError,
    NotFoundError,
    ValidationError,
    account_not_found,
    record_not_found,
)
from bankimport.domain.linking import AutoLinker
from bankimport.domain.normalisation import NormalisedTransaction, normalise_rows, row_fingerprint
from bankimport.domain.parsing import (
    ParseOptions,
    ParsedFile,
    RowError,
    decode_content,
    detect_format,
    parse_file,
)
from bankimport.domain.recurring import RecurringDetectionResult, RecurringDetectionService

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
EXPLICIT_LINK_TYPES = (LinkType.INCOME, LinkType.EXPENSE)


@dataclass(frozen=True)
class ImportRequest:
    """One statement upload.

    Attributes:
        user_id: Owner of the import
        filename: Uploaded file name; its extension declares the format
        content: File bytes (or already decoded text)
        account_id: Account the statement belongs to
        duplicate_policy: REJECT, MARK_DUPLICATE or SKIP (string or enum)
        options: CSV parse options
        update_balance: Set the account balance from the closing balance
        auto_link: Link transactions to income and expense records
        explicit_links: Row number to (INCOME or EXPENSE, record id) links
            chosen by the caller; they are applied first and never replaced
        detect_recurring: Run recurring detection after the import
    """

    user_id: int
    filename: str
    content: Union[bytes, str, None]
    account_id: Optional[int] = None
    duplicate_policy: Union[DuplicatePolicy, str, None] = DuplicatePolicy.REJECT
    options: Optional[ParseOptions] = None
    update_balance: bool = False
    auto_link: bool = False
    explicit_links: dict[int, tuple[LinkType, int]] = field(default_factory=dict)
    detect_recurring: bool = True


@dataclass
class ImportResult:
    file_id: int
    status: ImportStatus
    total_rows: int = 0
    imported_count: int = 0
    duplicate_count: int = 0
    possible_duplicate_count: int = 0
    error_count: int = 0
    categorised_count: int = 0
    uncategorised_count: int = 0
    linked_to_recurring: int = 0
    auto_linked_count: int = 0
    explicit_linked_count: int = 0
    closing_balance: Optional[Decimal] = None
    detected_bank: Optional[str] = None
    errors: list[RowError] = field(default_factory=list)
    transaction_ids: list[int] = field(default_factory=list)
    recurring: Optional[RecurringDetectionResult] = None


def apply_duplicate_policy(
    detection: DuplicateDetectionResult, policy: DuplicatePolicy
) -> list[DuplicateCheck]:
    """Select which checked transactions are persisted under a policy.

    REJECT keeps only unique transactions, SKIP also keeps possible
    duplicates, MARK_DUPLICATE keeps everything.
    """
    if policy == DuplicatePolicy.MARK_DUPLICATE:
        return list(detection.checks)
    if policy == DuplicatePolicy.SKIP:
        return [c for c in detection.checks if c.status != DuplicateStatus.DUPLICATE]
    return [c for c in detection.checks if c.status == DuplicateStatus.UNIQUE]


def content_hash(content: str) -> str:
    """SHA-256 of the decoded file text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _anomaly_flags(check: DuplicateCheck) -> tuple[str, ...]:
    if check.status == DuplicateStatus.DUPLICATE:
        return ("duplicate",)
    if check.status == DuplicateStatus.POSSIBLE_DUPLICATE:
        return ("possible_duplicate",)
    return ()


class BankImportService:
    """Service for importing bank statement files."""

    def __init__(self, db: Database, settings: Optional[ImportSettings] = None):
        """Initialize bank import service.

        Args:
            db: Database instance
            settings: Pipeline thresholds
        """
        self.db = db
        self.settings = settings or ImportSettings()
        self.recurring_service = RecurringDetectionService(db, self.settings)

    def _validate(self, request: ImportRequest):
        if not request.filename or request.content is None:
            raise ValidationError("No file provided")
        if len(request.content) == 0:
            raise ValidationError("Uploaded file is empty")

        fmt = detect_format(request.filename)
        policy = DuplicatePolicy.parse(request.duplicate_policy)

        if request.account_id is not None:
            account = self.db.get_account(request.account_id)
            if account is None or account.user_id != request.user_id:
                raise NotFoundError(account_not_found(request.account_id))

        for row_number, (link_type, record_id) in request.explicit_links.items():
            try:
                link_type = LinkType(link_type)
            except ValueError:
                raise ValidationError(f"Row {row_number}: unknown link type '{link_type}'")
            if link_type not in EXPLICIT_LINK_TYPES:
                raise ValidationError(
                    f"Row {row_number}: links must target an income or expense record"
                )
            if link_type == LinkType.INCOME:
                record = self.db.get_income_record(record_id)
            else:
                record = self.db.get_expense_record(record_id)
            if record is None or record.user_id != request.user_id:
                raise NotFoundError(record_not_found(link_type.value, record_id))

        return fmt, policy

    def import_file(self, request: ImportRequest) -> ImportResult:
        """Import one statement file.

        Args:
            request: Upload and its options

        Returns:
            ImportResult with counts and the first row errors

        Raises:
            ValidationError: If the request is invalid (nothing is stored)
            NotFoundError: If the account or a linked record does not exist
            ConflictError: If the same content was already imported and the
                policy is not MARK_DUPLICATE
            FormatNotImplementedError: For OFX and QIF files
            ImportFailedError: If a stage fails after the import file exists
        """
        fmt, policy = self._validate(request)

        raw_bytes = request.content if isinstance(request.content, bytes) else request.content.encode("utf-8")
        text = decode_content(request.content)
        digest = content_hash(text)

        import_file = self.db.start_import(
            user_id=request.user_id,
            filename=request.filename,
            format=fmt,
            file_size=len(raw_bytes),
            content_hash=digest,
            duplicate_policy=policy,
            account_id=request.account_id,
            date_format=request.options.date_format if request.options else None,
            allow_reimport=policy == DuplicatePolicy.MARK_DUPLICATE,
            processing_timeout=timedelta(minutes=self.settings.processing_timeout_minutes),
        )
        logger.info(
            "Import %s started: %s (%s, %d bytes, policy %s)",
            import_file.id,
            request.filename,
            fmt.value,
            len(raw_bytes),
            policy.value,
        )

        try:
            result = self._process(import_file, request, text, policy)
        except FormatNotImplementedError as e:
            logger.warning("Import %s rejected: %s", import_file.id, e)
            self.db.fail_import(import_file.id, str(e))
            raise
        except Exception as e:
            logger.exception("Import %s failed", import_file.id)
            self.db.fail_import(import_file.id, str(e))
            raise ImportFailedError(import_file.id, str(e)) from e

        if request.detect_recurring:
            self._run_recurring(request.user_id, result)

        return result

    def _process(
        self, import_file: ImportFile, request: ImportRequest, text: str, policy: DuplicatePolicy
    ) -> ImportResult:
        parsed = parse_file(text, import_file.format, request.options)

        # Raw rows are committed on their own and stay as the audit trail
        self.db.add_raw_rows(
            import_file.id, [(row, row_fingerprint(row, row.row_number)) for row in parsed.rows]
        )

        normalised = normalise_rows(parsed.rows, import_file.id, request.account_id)
        errors = self._collect_errors(parsed, normalised.errors)

        history = self.db.list_transaction_summaries(request.user_id)
        detection = detect_duplicates(normalised.transactions, history, self.settings)
        kept = apply_duplicate_policy(detection, policy)
        logger.debug(
            "Import %s: %d normalised, %d unique, %d duplicate, %d possible, %d kept",
            import_file.id,
            normalised.normalised,
            detection.unique_count,
            detection.duplicate_count,
            detection.possible_count,
            len(kept),
        )

        engine = CategoryRuleEngine(self.db.list_active_rules(request.user_id))
        assignments = [engine.categorise(check.transaction) for check in kept]

        links, auto_linked, explicit_linked = self._resolve_links(request, kept, assignments)

        new_transactions = [
            self._to_new_transaction(request, import_file, check, assignment, links.get(check.transaction.row_number))
            for check, assignment in zip(kept, assignments)
        ]
        transaction_ids = self.db.add_transactions(new_transactions)

        self.db.complete_import(
            import_file.id,
            total_rows=parsed.total_rows,
            imported_count=len(transaction_ids),
            duplicate_count=detection.duplicate_count,
            error_count=len(errors),
        )
        self.db.mark_raw_rows_processed(import_file.id)

        if request.update_balance and request.account_id is not None and parsed.closing_balance is not None:
            self.db.update_account_balance(request.account_id, parsed.closing_balance)

        categorised = sum(1 for a in assignments if a.is_categorised)
        logger.info(
            "Import %s completed: %d of %d rows imported, %d duplicates, %d errors",
            import_file.id,
            len(transaction_ids),
            parsed.total_rows,
            detection.duplicate_count,
            len(errors),
        )

        return ImportResult(
            file_id=import_file.id,
            status=ImportStatus.COMPLETED,
            total_rows=parsed.total_rows,
            imported_count=len(transaction_ids),
            duplicate_count=detection.duplicate_count,
            possible_duplicate_count=detection.possible_count,
            error_count=len(errors),
            categorised_count=categorised,
            uncategorised_count=len(assignments) - categorised,
            auto_linked_count=auto_linked,
            explicit_linked_count=explicit_linked,
            closing_balance=parsed.closing_balance,
            detected_bank=parsed.detected_bank,
            errors=errors[: self.settings.max_reported_errors],
            transaction_ids=transaction_ids,
        )

    def _collect_errors(self, parsed: ParsedFile, normalisation_errors) -> list[RowError]:
        """Parse errors plus normalisation errors for rows not already reported."""
        errors = list(parsed.errors)
        reported = {e.row_number for e in errors}
        for error in normalisation_errors:
            if error.row_number not in reported:
                errors.append(RowError(error.row_number, error.field, error.message, error.raw_value))
        return sorted(errors, key=lambda e: e.row_number)

    def _resolve_links(
        self,
        request: ImportRequest,
        kept: list[DuplicateCheck],
        assignments: list[CategoryAssignment],
    ) -> tuple[dict[int, tuple[LinkType, int]], int, int]:
        """Pick at most one link per row: explicit, then rule, then auto."""
        links: dict[int, tuple[LinkType, int]] = {}
        explicit_linked = 0
        auto_linked = 0
        linker = None
        periods: dict[tuple[str, Optional[int]], RecurrencePattern] = {}
        if request.auto_link:
            linker = AutoLinker(
                self.db.list_income_records(request.user_id),
                self.db.list_expense_records(request.user_id),
                self.settings,
            )
            for entry in self.db.list_recurring(request.user_id, active=True):
                periods[(entry.merchant_standardised.lower(), entry.account_id)] = entry.pattern

        for check, assignment in zip(kept, assignments):
            txn: NormalisedTransaction = check.transaction
            explicit = request.explicit_links.get(txn.row_number)
            if explicit is not None:
                links[txn.row_number] = (LinkType(explicit[0]), explicit[1])
                explicit_linked += 1
                continue
            if assignment.link_type is not None:
                links[txn.row_number] = (assignment.link_type, assignment.link_id)
                continue
            if linker is None or not check.is_unique:
                continue
            period = periods.get((txn.merchant_standardised.lower(), txn.account_id))
            match = linker.match(txn, period)
            if match is not None:
                links[txn.row_number] = (match.link_type, match.record_id)
                auto_linked += 1

        return links, auto_linked, explicit_linked

    def _to_new_transaction(
        self,
        request: ImportRequest,
        import_file: ImportFile,
        check: DuplicateCheck,
        assignment: CategoryAssignment,
        link: Optional[tuple[LinkType, int]],
    ) -> NewTransaction:
        txn = check.transaction
        flagged = policy_flags_duplicate(import_file.duplicate_policy, check)
        return NewTransaction(
            user_id=request.user_id,
            account_id=request.account_id,
            date=txn.date,
            amount=txn.amount,
            direction=txn.direction,
            description=txn.description,
            raw_description=txn.raw_description,
            merchant_raw=txn.merchant_raw,
            merchant_standardised=txn.merchant_standardised,
            fingerprint=txn.fingerprint,
            category_level1=assignment.category_level1,
            category_level2=assignment.category_level2,
            subcategory=assignment.subcategory,
            category_type=assignment.category_type,
            confidence_score=assignment.confidence,
            source=TransactionSource.CSV,
            merchant_category_code=txn.mcc,
            reference=txn.reference,
            balance=txn.balance,
            matched_rule_id=assignment.matched_rule_id,
            is_duplicate=flagged,
            duplicate_status=check.status,
            anomaly_flags=_anomaly_flags(check),
            import_batch_id=import_file.id,
            link_type=link[0] if link else None,
            link_id=link[1] if link else None,
        )

    def _run_recurring(self, user_id: int, result: ImportResult) -> None:
        """Run recurring detection after a completed import.

        The import is already committed, so a detection failure is logged
        and leaves the import COMPLETED.
        """
        try:
            recurring = self.recurring_service.run(user_id)
        except Exception:
            logger.exception("Recurring detection after import %s failed", result.file_id)
            return
        result.recurring = recurring
        imported = set(result.transaction_ids)
        result.linked_to_recurring = sum(1 for txn_id in recurring.recurring_transactions if txn_id in imported)

    def get_import(self, user_id: int, file_id: int) -> ImportFile:
        """Get one import file of a user.

        Raises:
            NotFoundError: If the file does not exist for this user
        """
        import_file = self.db.get_import_file(file_id)
        if import_file is None or import_file.user_id != user_id:
            raise NotFoundError(f"Import {file_id} not found")
        return import_file

    def list_imports(self, user_id: int, page: int = 1, page_size: int = 20) -> ImportPage:
        """List a user's imports, newest first.

        Args:
            user_id: Owner of the imports
            page: 1-based page number
            page_size: Items per page, 1 to 100

        Returns:
            ImportPage with the items of the page and the total count

        Raises:
            ValidationError: If page or page_size is out of range
        """
        if page < 1:
            raise ValidationError("Page must be 1 or greater")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
        items = self.db.list_import_files(user_id, offset=(page - 1) * page_size, limit=page_size)
        total = self.db.count_import_files(user_id)
        return ImportPage(items=items, total=total, page=page, page_size=page_size)


def policy_flags_duplicate(policy: DuplicatePolicy, check: DuplicateCheck) -> bool:
    """Whether a kept transaction is stored with ``is_duplicate`` set.

    Under MARK_DUPLICATE every non-unique transaction is flagged; under SKIP
    only exact duplicates would be, and those are dropped.
    """
    if check.status == DuplicateStatus.UNIQUE:
        return False
    if policy == DuplicatePolicy.MARK_DUPLICATE:
        return True
    return check.status == DuplicateStatus.DUPLICATE
