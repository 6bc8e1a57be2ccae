"""Shared pytest fixtures for bankimport tests."""

import tempfile
import os
from datetime import date
from decimal import Decimal
from pathlib import Path
import pytest

from bankimport.config import ImportSettings
from bankimport.database.factories import create_sqlite_database
from bankimport.domain.account import AccountService
from bankimport.domain.bank_import import BankImportService, ImportRequest
from bankimport.domain.entities import Direction
from bankimport.domain.normalisation import NormalisedTransaction, fingerprint, standardise_merchant
from bankimport.domain.records import RecordService
from bankimport.domain.recurring import RecurringDetectionService
from bankimport.domain.rules import RuleService

USER_ID = 1
OTHER_USER_ID = 2


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    # Create database
    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def settings():
    """Default pipeline settings."""
    return ImportSettings()


@pytest.fixture
def account_service(temp_db):
    """Create an AccountService with a temporary database."""
    return AccountService(temp_db)


@pytest.fixture
def rule_service(temp_db):
    """Create a RuleService with a temporary database."""
    return RuleService(temp_db)


@pytest.fixture
def record_service(temp_db):
    """Create a RecordService with a temporary database."""
    return RecordService(temp_db)


@pytest.fixture
def import_service(temp_db, settings):
    """Create a BankImportService with a temporary database."""
    return BankImportService(temp_db, settings)


@pytest.fixture
def recurring_service(temp_db, settings):
    """Create a RecurringDetectionService with a temporary database."""
    return RecurringDetectionService(temp_db, settings)


@pytest.fixture
def sample_account(account_service):
    """Create a sample account for testing."""
    account_id = account_service.create_account(USER_ID, name="Everyday", bank_name="Test Bank")
    return account_service.get_account(USER_ID, account_id)


@pytest.fixture
def make_request(sample_account):
    """Build an ImportRequest for CSV text, defaulting to the sample account."""

    def _make(content, filename="statement.csv", **kwargs):
        kwargs.setdefault("account_id", sample_account.id)
        kwargs.setdefault("detect_recurring", False)
        return ImportRequest(user_id=USER_ID, filename=filename, content=content, **kwargs)

    return _make


@pytest.fixture
def make_transaction():
    """Build a NormalisedTransaction the way the normaliser would."""

    def _make(row_number, txn_date, amount, description, direction=Direction.OUT, **kwargs):
        amount = Decimal(amount)
        return NormalisedTransaction(
            row_number=row_number,
            date=txn_date,
            amount=amount,
            direction=direction,
            description=description,
            raw_description=description,
            merchant_raw=description,
            merchant_standardised=kwargs.pop("merchant_standardised", standardise_merchant(description)),
            fingerprint=fingerprint(txn_date, amount, description),
            **kwargs,
        )

    return _make


@pytest.fixture
def monthly_csv():
    """Build CSV text with one outgoing payment per month."""

    def _build(description, amounts, start=date(2024, 1, 15)):
        lines = ["Date,Description,Amount"]
        for i, amount in enumerate(amounts):
            month = start.month - 1 + i
            txn_date = date(start.year + month // 12, month % 12 + 1, start.day)
            lines.append(f"{txn_date.isoformat()},{description},-{amount}")
        return "\n".join(lines) + "\n"

    return _build


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()


@pytest.fixture
def fixtures_dir():
    """Return the path to the test fixtures directory."""
    return Path(__file__).parent / "fixtures"
