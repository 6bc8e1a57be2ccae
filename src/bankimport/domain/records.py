"""Income and expense record service.

These records are declared by the user and are what auto-linking matches
imported transactions against.
"""

from decimal import Decimal
from typing import Optional

from bankimport.database.base import Database
from bankimport.domain.entities import ExpenseRecord, Frequency, IncomeRecord
from bankimport.domain.errors import ValidationError


def _parse_frequency(value: Frequency | str) -> Frequency:
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).upper())
    except ValueError:
        valid = ", ".join(f.value for f in Frequency)
        raise ValidationError(f"Invalid frequency '{value}'. Must be one of: {valid}")


def _validate(name: str, amount: Decimal) -> None:
    if not name or not name.strip():
        raise ValidationError("Name cannot be empty")
    if amount <= 0:
        raise ValidationError("Amount must be positive")


class RecordService:
    """Service for managing income and expense records."""

    def __init__(self, db: Database):
        """Initialize record service.

        Args:
            db: Database instance
        """
        self.db = db

    def add_income(
        self,
        user_id: int,
        name: str,
        income_type: str,
        amount: Decimal,
        frequency: Frequency | str,
        net_amount: Optional[Decimal] = None,
    ) -> int:
        """Declare an income stream.

        Returns:
            Income record ID

        Raises:
            ValidationError: If the name, amount or frequency is invalid
        """
        _validate(name, amount)
        if net_amount is not None and net_amount <= 0:
            raise ValidationError("Net amount must be positive")
        return self.db.create_income_record(
            user_id=user_id,
            name=name,
            income_type=income_type,
            amount=amount,
            frequency=_parse_frequency(frequency),
            net_amount=net_amount,
        )

    def add_expense(
        self,
        user_id: int,
        name: str,
        category: str,
        amount: Decimal,
        frequency: Frequency | str,
        vendor_name: Optional[str] = None,
    ) -> int:
        """Declare a recurring expense.

        Returns:
            Expense record ID

        Raises:
            ValidationError: If the name, amount or frequency is invalid
        """
        _validate(name, amount)
        return self.db.create_expense_record(
            user_id=user_id,
            name=name,
            category=category,
            amount=amount,
            frequency=_parse_frequency(frequency),
            vendor_name=vendor_name,
        )

    def list_income(self, user_id: int) -> list[IncomeRecord]:
        return self.db.list_income_records(user_id)

    def list_expenses(self, user_id: int) -> list[ExpenseRecord]:
        return self.db.list_expense_records(user_id)
