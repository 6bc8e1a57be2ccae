"""Account domain service."""

from decimal import Decimal
from typing import Optional

from bankimport.database.base import Database
from bankimport.domain.entities import Account as AccountEntity
from bankimport.domain.errors import NotFoundError, ValidationError, account_not_found


class AccountService:
    """Service for managing a user's bank accounts."""

    def __init__(self, db: Database):
        """Initialize account service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_account(self, user_id: int, name: str, bank_name: str,
                       current_balance: Optional[Decimal] = None) -> int:
        """Create a new account.

        Args:
            user_id: Owner of the account
            name: Account name
            bank_name: Bank name
            current_balance: Optional opening balance

        Returns:
            Account ID

        Raises:
            ValidationError: If the name is empty or already used by this user
        """
        if not name or not name.strip():
            raise ValidationError("Account name cannot be empty")
        for acc in self.db.list_accounts(user_id):
            if acc.name == name:
                raise ValidationError(f"Account with name '{name}' already exists")

        return self.db.create_account(
            user_id=user_id, name=name, bank_name=bank_name, current_balance=current_balance
        )

    def get_account(self, user_id: int, account_id: int) -> Optional[AccountEntity]:
        """Get an account of this user by ID.

        Returns:
            Account entity or None if not found (or owned by someone else)
        """
        account = self.db.get_account(account_id)
        if account is None or account.user_id != user_id:
            return None
        return account

    def list_accounts(self, user_id: int) -> list[AccountEntity]:
        """List all accounts of a user, ordered by name."""
        return self.db.list_accounts(user_id)

    def update_balance(self, user_id: int, account_id: int, balance: Decimal) -> None:
        """Set an account's current balance.

        Raises:
            NotFoundError: If the account does not exist for this user
        """
        if self.get_account(user_id, account_id) is None:
            raise NotFoundError(account_not_found(account_id))
        self.db.update_account_balance(account_id, balance)
