"""Utility for resolving account names to IDs."""

from bankimport.domain.account import AccountService
from bankimport.domain.errors import NotFoundError, account_not_found


def resolve_account(account_service: AccountService, user_id: int, account: str | int) -> int:
    """Resolve account name or ID to account ID.

    Args:
        account_service: AccountService instance
        user_id: Owner of the account
        account: Account name (str) or ID (int or string representation of int)

    Returns:
        Account ID

    Raises:
        NotFoundError: If the user has no such account
    """
    # If it's already an integer, use it as ID
    if isinstance(account, int):
        if account_service.get_account(user_id, account) is None:
            raise NotFoundError(account_not_found(account))
        return account

    # Numeric strings are treated as IDs first
    if account.strip().isdigit():
        account_id = int(account)
        if account_service.get_account(user_id, account_id) is not None:
            return account_id

    for acc in account_service.list_accounts(user_id):
        if acc.name == account:
            return acc.id

    raise NotFoundError(f"Account '{account}' not found")
