"""SQLAlchemy models for bankimport database."""

from datetime import datetime, UTC
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Date,
    Float,
    Index,
    Numeric,
    Boolean,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session

Base = declarative_base()


class Account(Base):
    """Bank account model."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    bank_name = Column(String, nullable=False)
    current_balance = Column(Numeric(14, 2), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_account_user_name"),)

    # Relationships
    transactions = relationship("UnifiedTransaction", back_populates="account")


class ImportFile(Base):
    """Uploaded statement file model."""

    __tablename__ = "import_files"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False)
    filename = Column(String, nullable=False)
    format = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    content_hash = Column(String(64), nullable=False)
    status = Column(String, nullable=False)
    duplicate_policy = Column(String, nullable=False)
    total_rows = Column(Integer, default=0, nullable=False)
    imported_count = Column(Integer, default=0, nullable=False)
    duplicate_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    date_format = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    uploaded_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
    processed_at = Column(DateTime, nullable=True)

    # One in-flight import per (user, content); a concurrent second upload
    # of the same file fails on insert. Ids of purged attempts are never
    # handed out again.
    __table_args__ = (
        Index("ix_import_files_user_hash", "user_id", "content_hash"),
        Index(
            "uq_import_files_processing",
            "user_id",
            "content_hash",
            unique=True,
            sqlite_where=text("status = 'PROCESSING'"),
            postgresql_where=text("status = 'PROCESSING'"),
        ),
        {"sqlite_autoincrement": True},
    )

    # Relationships
    raw_rows = relationship(
        "RawTransactionRow", back_populates="import_file", cascade="all, delete-orphan"
    )


class RawTransactionRow(Base):
    """Parsed row audit model."""

    __tablename__ = "raw_transaction_rows"

    id = Column(Integer, primary_key=True)
    import_file_id = Column(Integer, ForeignKey("import_files.id"), nullable=False, index=True)
    row_number = Column(Integer, nullable=False)
    raw_data = Column(JSON, nullable=False)
    date = Column(Date, nullable=True)
    description = Column(String, nullable=True)
    amount = Column(Numeric(14, 2), nullable=True)
    direction = Column(String, nullable=True)
    balance = Column(Numeric(14, 2), nullable=True)
    reference = Column(String, nullable=True)
    row_hash = Column(String, nullable=False)
    is_processed = Column(Boolean, default=False, nullable=False)

    __table_args__ = (UniqueConstraint("import_file_id", "row_number", name="uq_raw_row_number"),)

    # Relationships
    import_file = relationship("ImportFile", back_populates="raw_rows")


class UnifiedTransaction(Base):
    """Canonical transaction model."""

    __tablename__ = "unified_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    date = Column(Date, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    direction = Column(String, nullable=False)
    description = Column(String, nullable=False)
    raw_description = Column(String, nullable=False)
    merchant_raw = Column(String, nullable=True)
    merchant_standardised = Column(String, nullable=True)
    merchant_category_code = Column(String, nullable=True)
    reference = Column(String, nullable=True)
    balance = Column(Numeric(14, 2), nullable=True)
    fingerprint = Column(String, nullable=False)
    category_level1 = Column(String, nullable=False)
    category_level2 = Column(String, nullable=True)
    subcategory = Column(String, nullable=True)
    category_type = Column(String, nullable=False)
    confidence_score = Column(Float, default=0.0, nullable=False)
    matched_rule_id = Column(Integer, ForeignKey("category_rules.id"), nullable=True)
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurrence_pattern = Column(String, nullable=True)
    is_duplicate = Column(Boolean, default=False, nullable=False)
    duplicate_status = Column(String, nullable=False)
    anomaly_flags = Column(JSON, default=list, nullable=False)
    source = Column(String, nullable=False)
    import_batch_id = Column(Integer, ForeignKey("import_files.id"), nullable=True)
    link_type = Column(String, nullable=True)
    link_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_unified_user_fingerprint", "user_id", "fingerprint"),
        Index("ix_unified_user_date", "user_id", "date"),
    )

    # Relationships
    account = relationship("Account", back_populates="transactions")


class CategoryRule(Base):
    """Category rule model. A NULL user_id marks a global rule."""

    __tablename__ = "category_rules"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=True, index=True)
    rule_type = Column(String, nullable=False)
    pattern = Column(String, nullable=False)
    is_regex = Column(Boolean, default=False, nullable=False)
    case_sensitive = Column(Boolean, default=False, nullable=False)
    category_level1 = Column(String, nullable=False)
    category_level2 = Column(String, nullable=True)
    subcategory = Column(String, nullable=True)
    link_property_id = Column(Integer, nullable=True)
    link_loan_id = Column(Integer, nullable=True)
    link_expense_id = Column(Integer, nullable=True)
    priority = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)


class RecurringPayment(Base):
    """Recurring payment registry model."""

    __tablename__ = "recurring_payments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False)
    merchant_standardised = Column(String, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    pattern = Column(String, nullable=False)
    expected_amount = Column(Numeric(14, 2), nullable=False)
    amount_variance = Column(Float, default=0.0, nullable=False)
    last_occurrence = Column(Date, nullable=False)
    next_expected = Column(Date, nullable=True)
    occurrence_count = Column(Integer, default=0, nullable=False)
    confidence = Column(Float, default=0.0, nullable=False)
    price_increase_alert = Column(Boolean, default=False, nullable=False)
    last_price_change = Column(Numeric(14, 2), nullable=True)
    last_price_change_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_paused = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "merchant_standardised", "account_id", name="uq_recurring_user_merchant_account"
        ),
    )


class IncomeRecord(Base):
    """Declared income model."""

    __tablename__ = "income_records"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    income_type = Column(String, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    net_amount = Column(Numeric(14, 2), nullable=True)
    frequency = Column(String, nullable=False)


class ExpenseRecord(Base):
    """Declared expense model."""

    __tablename__ = "expense_records"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    vendor_name = Column(String, nullable=True)
    category = Column(String, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    frequency = Column(String, nullable=False)


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
