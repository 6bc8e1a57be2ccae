"""Domain model entities for bankimport.

These are pure data classes representing business concepts, independent of
database schema. The pipeline stages exchange these objects; only the
database layer knows how they are stored.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from bankimport.domain.errors import ValidationError


class ImportFormat(str, Enum):
    CSV = "CSV"
    OFX = "OFX"
    QIF = "QIF"


class ImportStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DuplicatePolicy(str, Enum):
    """How detected duplicates are handled during an import.

    REJECT drops duplicates and possible duplicates, SKIP drops only exact
    duplicates, MARK_DUPLICATE imports everything and flags duplicates.
    """

    REJECT = "REJECT"
    MARK_DUPLICATE = "MARK_DUPLICATE"
    SKIP = "SKIP"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DuplicatePolicy":
        """Parse a user supplied policy name, defaulting to REJECT."""
        if value is None or value == "":
            return cls.REJECT
        if isinstance(value, cls):
            return value
        try:
            return cls(value.strip().upper())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValidationError(
                f"Invalid duplicate policy '{value}'. Must be one of: {valid}"
            )


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"


class DuplicateStatus(str, Enum):
    UNIQUE = "UNIQUE"
    DUPLICATE = "DUPLICATE"
    POSSIBLE_DUPLICATE = "POSSIBLE_DUPLICATE"


class RuleType(str, Enum):
    MERCHANT = "MERCHANT"
    KEYWORD = "KEYWORD"
    MCC = "MCC"
    BPAY = "BPAY"
    AMOUNT_RANGE = "AMOUNT_RANGE"


class RecurrencePattern(str, Enum):
    WEEKLY = "WEEKLY"
    FORTNIGHTLY = "FORTNIGHTLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"


# Income and expense records use the same closed set of periods.
Frequency = RecurrencePattern


class TransactionSource(str, Enum):
    MANUAL = "MANUAL"
    CSV = "CSV"
    BANK = "BANK"
    OFX = "OFX"


class LinkType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    PROPERTY = "PROPERTY"
    LOAN = "LOAN"
    INVESTMENT_ACCOUNT = "INVESTMENT_ACCOUNT"


class CategoryType(str, Enum):
    INCOME = "INCOME"
    TRANSFER = "TRANSFER"
    PROPERTY_EXPENSE = "PROPERTY_EXPENSE"
    INVESTMENT_EXPENSE = "INVESTMENT_EXPENSE"
    PERSONAL_EXPENSE = "PERSONAL_EXPENSE"
    UNKNOWN = "UNKNOWN"


UNCATEGORISED = "OTHER"


@dataclass(frozen=True)
class Account:
    """Bank account domain entity."""

    id: int
    user_id: int
    name: str
    bank_name: str
    current_balance: Optional[Decimal]
    created_at: datetime


@dataclass(frozen=True)
class ImportFile:
    """One uploaded statement file and its processing state."""

    id: int
    user_id: int
    filename: str
    format: ImportFormat
    file_size: int
    content_hash: str
    status: ImportStatus
    duplicate_policy: DuplicatePolicy
    total_rows: int
    imported_count: int
    duplicate_count: int
    error_count: int
    account_id: Optional[int]
    date_format: Optional[str]
    error_message: Optional[str]
    uploaded_at: datetime
    processed_at: Optional[datetime]


@dataclass(frozen=True)
class RawTransactionRow:
    """Audit record of one parsed row, as stored."""

    id: int
    import_file_id: int
    row_number: int
    raw_data: dict[str, str]
    date: Optional[date]
    description: Optional[str]
    amount: Optional[Decimal]
    direction: Optional[Direction]
    balance: Optional[Decimal]
    reference: Optional[str]
    row_hash: str
    is_processed: bool


@dataclass(frozen=True)
class UnifiedTransaction:
    """Canonical persisted transaction."""

    id: int
    user_id: int
    account_id: Optional[int]
    date: date
    amount: Decimal
    direction: Direction
    description: str
    raw_description: str
    merchant_raw: Optional[str]
    merchant_standardised: Optional[str]
    fingerprint: str
    category_level1: str
    category_level2: Optional[str]
    subcategory: Optional[str]
    category_type: CategoryType
    confidence_score: float
    source: TransactionSource
    created_at: datetime
    merchant_category_code: Optional[str] = None
    reference: Optional[str] = None
    balance: Optional[Decimal] = None
    matched_rule_id: Optional[int] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    is_duplicate: bool = False
    duplicate_status: DuplicateStatus = DuplicateStatus.UNIQUE
    anomaly_flags: tuple[str, ...] = ()
    import_batch_id: Optional[int] = None
    link_type: Optional[LinkType] = None
    link_id: Optional[int] = None
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ExistingTransaction:
    """Slice of a stored transaction used for duplicate detection."""

    id: int
    fingerprint: str
    date: date
    amount: Decimal
    direction: Direction
    description: str
    merchant_standardised: Optional[str] = None


@dataclass(frozen=True)
class CategoryRule:
    """Pattern based category assignment. A rule without user is global."""

    id: Optional[int]
    user_id: Optional[int]
    rule_type: RuleType
    pattern: str
    category_level1: str
    category_level2: Optional[str] = None
    subcategory: Optional[str] = None
    is_regex: bool = False
    case_sensitive: bool = False
    link_property_id: Optional[int] = None
    link_loan_id: Optional[int] = None
    link_expense_id: Optional[int] = None
    priority: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class RecurringPayment:
    """Registry entry for a detected periodic payment."""

    id: int
    user_id: int
    merchant_standardised: str
    account_id: Optional[int]
    pattern: RecurrencePattern
    expected_amount: Decimal
    amount_variance: float
    last_occurrence: date
    next_expected: Optional[date]
    occurrence_count: int
    confidence: float = 0.0
    price_increase_alert: bool = False
    last_price_change: Optional[Decimal] = None
    last_price_change_date: Optional[date] = None
    is_active: bool = True
    is_paused: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class IncomeRecord:
    """User declared income stream."""

    id: int
    user_id: int
    name: str
    income_type: str
    amount: Decimal
    frequency: Frequency
    net_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class ExpenseRecord:
    """User declared expense."""

    id: int
    user_id: int
    name: str
    category: str
    amount: Decimal
    frequency: Frequency
    vendor_name: Optional[str] = None


@dataclass(frozen=True)
class ImportPage:
    """One page of the import history, newest first."""

    items: list[ImportFile]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class NewTransaction:
    """Transaction ready to be inserted, before it has an id."""

    user_id: int
    account_id: Optional[int]
    date: date
    amount: Decimal
    direction: Direction
    description: str
    raw_description: str
    merchant_raw: Optional[str]
    merchant_standardised: Optional[str]
    fingerprint: str
    category_level1: str
    category_level2: Optional[str]
    subcategory: Optional[str]
    category_type: CategoryType
    confidence_score: float
    source: TransactionSource = TransactionSource.CSV
    merchant_category_code: Optional[str] = None
    reference: Optional[str] = None
    balance: Optional[Decimal] = None
    matched_rule_id: Optional[int] = None
    is_duplicate: bool = False
    duplicate_status: DuplicateStatus = DuplicateStatus.UNIQUE
    anomaly_flags: tuple[str, ...] = field(default_factory=tuple)
    import_batch_id: Optional[int] = None
    link_type: Optional[LinkType] = None
    link_id: Optional[int] = None
