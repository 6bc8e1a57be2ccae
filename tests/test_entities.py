"""Tests for domain entities."""

import pytest
from dataclasses import FrozenInstanceError
from datetime import datetime, date, UTC
from decimal import Decimal

from bankimport.domain.entities import (
    Account,
    DuplicatePolicy,
    ImportPage,
    RecurringPayment,
    RecurrencePattern,
)
from bankimport.domain.errors import ValidationError


class TestAccount:
    """Tests for Account entity."""

    def test_account_immutability(self):
        """Test that Account entities are immutable."""
        account = Account(
            id=1,
            user_id=1,
            name="Everyday",
            bank_name="Test Bank",
            current_balance=None,
            created_at=datetime.now(UTC),
        )
        with pytest.raises(FrozenInstanceError):
            account.name = "New Name"

    def test_account_equality(self):
        """Test Account entity equality."""
        created_at = datetime.now(UTC)
        account1 = Account(id=1, user_id=1, name="A", bank_name="B", current_balance=None, created_at=created_at)
        account2 = Account(id=1, user_id=1, name="A", bank_name="B", current_balance=None, created_at=created_at)
        account3 = Account(id=2, user_id=1, name="A", bank_name="B", current_balance=None, created_at=created_at)

        assert account1 == account2
        assert account1 != account3


class TestDuplicatePolicy:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, DuplicatePolicy.REJECT),
            ("", DuplicatePolicy.REJECT),
            ("skip", DuplicatePolicy.SKIP),
            (" MARK_DUPLICATE ", DuplicatePolicy.MARK_DUPLICATE),
            (DuplicatePolicy.SKIP, DuplicatePolicy.SKIP),
        ],
    )
    def test_parse(self, value, expected):
        assert DuplicatePolicy.parse(value) == expected

    def test_parse_invalid(self):
        with pytest.raises(ValidationError, match="Must be one of"):
            DuplicatePolicy.parse("OVERWRITE")


class TestImportPage:
    def test_pages(self):
        assert ImportPage(items=[], total=0, page=1, page_size=20).pages == 0
        assert ImportPage(items=[], total=20, page=1, page_size=20).pages == 1
        assert ImportPage(items=[], total=21, page=1, page_size=20).pages == 2


def test_recurring_payment_defaults():
    payment = RecurringPayment(
        id=1,
        user_id=1,
        merchant_standardised="NETFLIX",
        account_id=None,
        pattern=RecurrencePattern.MONTHLY,
        expected_amount=Decimal("15.99"),
        amount_variance=0.0,
        last_occurrence=date(2024, 6, 15),
        next_expected=date(2024, 7, 15),
        occurrence_count=6,
    )

    assert payment.is_active
    assert not payment.is_paused
    assert not payment.price_increase_alert
