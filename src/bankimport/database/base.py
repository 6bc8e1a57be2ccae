"""Abstract database interface."""

from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

# Import entities directly to avoid circular import through domain/__init__.py
from bankimport.domain.entities import (
    Account,
    CategoryRule,
    DuplicatePolicy,
    ExistingTransaction,
    ExpenseRecord,
    Frequency,
    ImportFile,
    ImportFormat,
    IncomeRecord,
    NewTransaction,
    RawTransactionRow,
    RecurrencePattern,
    RecurringPayment,
    UnifiedTransaction,
)

if TYPE_CHECKING:
    from bankimport.domain.parsing import RawRow


class Database(ABC):
    """Abstract database interface for bankimport.

    Every read and write is scoped by user id; the pipeline keeps no state
    between calls.
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Account operations
    @abstractmethod
    def create_account(
        self, user_id: int, name: str, bank_name: str, current_balance: Optional[Decimal] = None
    ) -> int:
        """Create a new account. Returns account ID."""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        """Get account by ID."""
        pass

    @abstractmethod
    def list_accounts(self, user_id: int) -> list[Account]:
        """List a user's accounts."""
        pass

    @abstractmethod
    def update_account_balance(self, account_id: int, balance: Decimal) -> None:
        """Set an account's current balance."""
        pass

    # Import file operations
    @abstractmethod
    def start_import(
        self,
        user_id: int,
        filename: str,
        format: ImportFormat,
        file_size: int,
        content_hash: str,
        duplicate_policy: DuplicatePolicy,
        account_id: Optional[int] = None,
        date_format: Optional[str] = None,
        allow_reimport: bool = False,
        processing_timeout: Optional[timedelta] = None,
    ) -> ImportFile:
        """Create an import file in PROCESSING, atomically per (user, hash).

        In one transaction: refuse with ConflictError when a COMPLETED import
        of the same content with imported rows exists (unless
        ``allow_reimport``) or when another attempt has been PROCESSING for
        less than ``processing_timeout``. Then delete stale FAILED, abandoned
        PROCESSING or empty attempts for the hash and create the new record.
        """
        pass

    @abstractmethod
    def get_import_file(self, file_id: int) -> Optional[ImportFile]:
        """Get import file by ID."""
        pass

    @abstractmethod
    def complete_import(
        self, file_id: int, total_rows: int, imported_count: int, duplicate_count: int, error_count: int
    ) -> None:
        """Transition a PROCESSING import to COMPLETED with its counts."""
        pass

    @abstractmethod
    def fail_import(self, file_id: int, message: str) -> None:
        """Transition a PROCESSING import to FAILED with an error message."""
        pass

    @abstractmethod
    def list_import_files(self, user_id: int, offset: int = 0, limit: int = 20) -> list[ImportFile]:
        """List a user's import files, newest first."""
        pass

    @abstractmethod
    def count_import_files(self, user_id: int) -> int:
        """Count a user's import files."""
        pass

    # Raw row operations
    @abstractmethod
    def add_raw_rows(self, import_file_id: int, rows: list[tuple["RawRow", str]]) -> int:
        """Store parsed rows with their row hashes. Returns count written."""
        pass

    @abstractmethod
    def list_raw_rows(self, import_file_id: int) -> list[RawTransactionRow]:
        """List stored rows of an import, by row number."""
        pass

    @abstractmethod
    def mark_raw_rows_processed(self, import_file_id: int) -> None:
        """Set the processed flag on all rows of an import."""
        pass

    # Transaction operations
    @abstractmethod
    def add_transactions(self, transactions: list[NewTransaction]) -> list[int]:
        """Insert transactions in one unit of work. Returns IDs in input order."""
        pass

    @abstractmethod
    def list_transaction_summaries(self, user_id: int) -> list[ExistingTransaction]:
        """Fingerprint, amount and description of every stored transaction."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        account_id: Optional[int] = None,
        import_batch_id: Optional[int] = None,
    ) -> list[UnifiedTransaction]:
        """List transactions with optional filters, by date then id."""
        pass

    @abstractmethod
    def flag_recurring(self, transaction_ids: list[int], pattern: RecurrencePattern) -> None:
        """Mark transactions as recurring with the given pattern."""
        pass

    # Category rule operations
    @abstractmethod
    def create_rule(self, rule: CategoryRule) -> int:
        """Create a category rule. Returns rule ID."""
        pass

    @abstractmethod
    def list_rules(self, user_id: int) -> list[CategoryRule]:
        """List user and global rules, priority descending then id."""
        pass

    @abstractmethod
    def list_active_rules(self, user_id: int) -> list[CategoryRule]:
        """List active user and global rules, priority descending then id."""
        pass

    @abstractmethod
    def set_rule_active(self, rule_id: int, active: bool) -> None:
        """Enable or disable a rule."""
        pass

    # Recurring registry operations
    @abstractmethod
    def list_recurring(self, user_id: int, active: Optional[bool] = None) -> list[RecurringPayment]:
        """List a user's recurring payments, optionally filtered by active flag."""
        pass

    @abstractmethod
    def upsert_recurring(
        self, user_id: int, merchant_standardised: str, account_id: Optional[int], values: dict[str, Any]
    ) -> int:
        """Create or update the entry for (user, merchant, account). Returns ID."""
        pass

    @abstractmethod
    def deactivate_recurring(self, recurring_ids: list[int]) -> None:
        """Deactivate registry entries (they are never deleted)."""
        pass

    # Income and expense records
    @abstractmethod
    def create_income_record(
        self,
        user_id: int,
        name: str,
        income_type: str,
        amount: Decimal,
        frequency: Frequency,
        net_amount: Optional[Decimal] = None,
    ) -> int:
        """Create an income record. Returns record ID."""
        pass

    @abstractmethod
    def get_income_record(self, record_id: int) -> Optional[IncomeRecord]:
        """Get income record by ID."""
        pass

    @abstractmethod
    def list_income_records(self, user_id: int) -> list[IncomeRecord]:
        """List a user's income records."""
        pass

    @abstractmethod
    def create_expense_record(
        self,
        user_id: int,
        name: str,
        category: str,
        amount: Decimal,
        frequency: Frequency,
        vendor_name: Optional[str] = None,
    ) -> int:
        """Create an expense record. Returns record ID."""
        pass

    @abstractmethod
    def get_expense_record(self, record_id: int) -> Optional[ExpenseRecord]:
        """Get expense record by ID."""
        pass

    @abstractmethod
    def list_expense_records(self, user_id: int) -> list[ExpenseRecord]:
        """List a user's expense records."""
        pass
