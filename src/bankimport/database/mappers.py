"""Mapper functions to convert between domain models and SQLAlchemy models.

Enum values are stored as plain strings; the mappers turn them back into
domain enums so nothing above the database layer sees raw column values.
"""

from bankimport.domain import entities as domain
from bankimport.database.models import (
    Account as ORMAccount,
    CategoryRule as ORMCategoryRule,
    ExpenseRecord as ORMExpenseRecord,
    ImportFile as ORMImportFile,
    IncomeRecord as ORMIncomeRecord,
    RawTransactionRow as ORMRawTransactionRow,
    RecurringPayment as ORMRecurringPayment,
    UnifiedTransaction as ORMUnifiedTransaction,
)


def _optional_enum(enum_cls, value):
    return enum_cls(value) if value is not None else None


def account_to_domain(orm_account: ORMAccount) -> domain.Account:
    """Convert SQLAlchemy Account model to domain Account entity."""
    return domain.Account(
        id=orm_account.id,
        user_id=orm_account.user_id,
        name=orm_account.name,
        bank_name=orm_account.bank_name,
        current_balance=orm_account.current_balance,
        created_at=orm_account.created_at,
    )


def import_file_to_domain(orm_file: ORMImportFile) -> domain.ImportFile:
    """Convert SQLAlchemy ImportFile model to domain ImportFile entity."""
    return domain.ImportFile(
        id=orm_file.id,
        user_id=orm_file.user_id,
        filename=orm_file.filename,
        format=domain.ImportFormat(orm_file.format),
        file_size=orm_file.file_size,
        content_hash=orm_file.content_hash,
        status=domain.ImportStatus(orm_file.status),
        duplicate_policy=domain.DuplicatePolicy(orm_file.duplicate_policy),
        total_rows=orm_file.total_rows,
        imported_count=orm_file.imported_count,
        duplicate_count=orm_file.duplicate_count,
        error_count=orm_file.error_count,
        account_id=orm_file.account_id,
        date_format=orm_file.date_format,
        error_message=orm_file.error_message,
        uploaded_at=orm_file.uploaded_at,
        processed_at=orm_file.processed_at,
    )


def raw_row_to_domain(orm_row: ORMRawTransactionRow) -> domain.RawTransactionRow:
    """Convert SQLAlchemy RawTransactionRow model to domain entity."""
    return domain.RawTransactionRow(
        id=orm_row.id,
        import_file_id=orm_row.import_file_id,
        row_number=orm_row.row_number,
        raw_data=dict(orm_row.raw_data or {}),
        date=orm_row.date,
        description=orm_row.description,
        amount=orm_row.amount,
        direction=_optional_enum(domain.Direction, orm_row.direction),
        balance=orm_row.balance,
        reference=orm_row.reference,
        row_hash=orm_row.row_hash,
        is_processed=orm_row.is_processed,
    )


def transaction_to_domain(orm_txn: ORMUnifiedTransaction) -> domain.UnifiedTransaction:
    """Convert SQLAlchemy UnifiedTransaction model to domain entity."""
    return domain.UnifiedTransaction(
        id=orm_txn.id,
        user_id=orm_txn.user_id,
        account_id=orm_txn.account_id,
        date=orm_txn.date,
        amount=orm_txn.amount,
        direction=domain.Direction(orm_txn.direction),
        description=orm_txn.description,
        raw_description=orm_txn.raw_description,
        merchant_raw=orm_txn.merchant_raw,
        merchant_standardised=orm_txn.merchant_standardised,
        fingerprint=orm_txn.fingerprint,
        category_level1=orm_txn.category_level1,
        category_level2=orm_txn.category_level2,
        subcategory=orm_txn.subcategory,
        category_type=domain.CategoryType(orm_txn.category_type),
        confidence_score=orm_txn.confidence_score,
        source=domain.TransactionSource(orm_txn.source),
        created_at=orm_txn.created_at,
        merchant_category_code=orm_txn.merchant_category_code,
        reference=orm_txn.reference,
        balance=orm_txn.balance,
        matched_rule_id=orm_txn.matched_rule_id,
        is_recurring=orm_txn.is_recurring,
        recurrence_pattern=_optional_enum(domain.RecurrencePattern, orm_txn.recurrence_pattern),
        is_duplicate=orm_txn.is_duplicate,
        duplicate_status=domain.DuplicateStatus(orm_txn.duplicate_status),
        anomaly_flags=tuple(orm_txn.anomaly_flags or ()),
        import_batch_id=orm_txn.import_batch_id,
        link_type=_optional_enum(domain.LinkType, orm_txn.link_type),
        link_id=orm_txn.link_id,
        processed_at=orm_txn.processed_at,
    )


def transaction_to_summary(orm_txn: ORMUnifiedTransaction) -> domain.ExistingTransaction:
    """Convert a stored transaction to the slice used for duplicate detection."""
    return domain.ExistingTransaction(
        id=orm_txn.id,
        fingerprint=orm_txn.fingerprint,
        date=orm_txn.date,
        amount=orm_txn.amount,
        direction=domain.Direction(orm_txn.direction),
        description=orm_txn.raw_description,
        merchant_standardised=orm_txn.merchant_standardised,
    )


def new_transaction_to_orm(txn: domain.NewTransaction) -> ORMUnifiedTransaction:
    """Build an ORM row from a transaction ready for insert."""
    return ORMUnifiedTransaction(
        user_id=txn.user_id,
        account_id=txn.account_id,
        date=txn.date,
        amount=txn.amount,
        direction=txn.direction.value,
        description=txn.description,
        raw_description=txn.raw_description,
        merchant_raw=txn.merchant_raw,
        merchant_standardised=txn.merchant_standardised,
        merchant_category_code=txn.merchant_category_code,
        reference=txn.reference,
        balance=txn.balance,
        fingerprint=txn.fingerprint,
        category_level1=txn.category_level1,
        category_level2=txn.category_level2,
        subcategory=txn.subcategory,
        category_type=txn.category_type.value,
        confidence_score=txn.confidence_score,
        matched_rule_id=txn.matched_rule_id,
        is_duplicate=txn.is_duplicate,
        duplicate_status=txn.duplicate_status.value,
        anomaly_flags=list(txn.anomaly_flags),
        source=txn.source.value,
        import_batch_id=txn.import_batch_id,
        link_type=txn.link_type.value if txn.link_type else None,
        link_id=txn.link_id,
    )


def rule_to_domain(orm_rule: ORMCategoryRule) -> domain.CategoryRule:
    """Convert SQLAlchemy CategoryRule model to domain entity."""
    return domain.CategoryRule(
        id=orm_rule.id,
        user_id=orm_rule.user_id,
        rule_type=domain.RuleType(orm_rule.rule_type),
        pattern=orm_rule.pattern,
        category_level1=orm_rule.category_level1,
        category_level2=orm_rule.category_level2,
        subcategory=orm_rule.subcategory,
        is_regex=orm_rule.is_regex,
        case_sensitive=orm_rule.case_sensitive,
        link_property_id=orm_rule.link_property_id,
        link_loan_id=orm_rule.link_loan_id,
        link_expense_id=orm_rule.link_expense_id,
        priority=orm_rule.priority,
        is_active=orm_rule.is_active,
    )


def recurring_to_domain(orm_payment: ORMRecurringPayment) -> domain.RecurringPayment:
    """Convert SQLAlchemy RecurringPayment model to domain entity."""
    return domain.RecurringPayment(
        id=orm_payment.id,
        user_id=orm_payment.user_id,
        merchant_standardised=orm_payment.merchant_standardised,
        account_id=orm_payment.account_id,
        pattern=domain.RecurrencePattern(orm_payment.pattern),
        expected_amount=orm_payment.expected_amount,
        amount_variance=orm_payment.amount_variance,
        last_occurrence=orm_payment.last_occurrence,
        next_expected=orm_payment.next_expected,
        occurrence_count=orm_payment.occurrence_count,
        confidence=orm_payment.confidence,
        price_increase_alert=orm_payment.price_increase_alert,
        last_price_change=orm_payment.last_price_change,
        last_price_change_date=orm_payment.last_price_change_date,
        is_active=orm_payment.is_active,
        is_paused=orm_payment.is_paused,
        created_at=orm_payment.created_at,
        updated_at=orm_payment.updated_at,
    )


def income_to_domain(orm_record: ORMIncomeRecord) -> domain.IncomeRecord:
    return domain.IncomeRecord(
        id=orm_record.id,
        user_id=orm_record.user_id,
        name=orm_record.name,
        income_type=orm_record.income_type,
        amount=orm_record.amount,
        frequency=domain.Frequency(orm_record.frequency),
        net_amount=orm_record.net_amount,
    )


def expense_to_domain(orm_record: ORMExpenseRecord) -> domain.ExpenseRecord:
    return domain.ExpenseRecord(
        id=orm_record.id,
        user_id=orm_record.user_id,
        name=orm_record.name,
        category=orm_record.category,
        amount=orm_record.amount,
        frequency=domain.Frequency(orm_record.frequency),
        vendor_name=orm_record.vendor_name,
    )
