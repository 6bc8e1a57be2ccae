"""Account management commands."""

import click
from bankimport.cli.account_resolution import resolve_account_or_exit
from bankimport.cli.error_handling import handle_domain_error
from bankimport.domain.account import AccountService
from bankimport.utils.amount_parser import parse_amount


@click.group()
def account_group():
    """Manage accounts."""
    pass


@account_group.command("create")
@click.argument("name", metavar="ACCOUNT_NAME")
@click.option("--bank", help="Bank name (defaults to account name if not provided)")
@click.option("--balance", help="Current balance (e.g., 1234.56)")
@click.pass_context
def create_account(ctx, name: str, bank: str | None, balance: str | None):
    """Create a new account.

    If --bank is not provided, the bank name will be set to the account name.

    Examples:
        bankimport account create "Everyday" --bank "Commonwealth Bank"
        bankimport account create "Savings" --bank "ING" --balance 2500.00
    """
    db = ctx.obj["db"]
    service = AccountService(db)

    # If bank not provided, use account name as bank name
    bank_name = bank if bank is not None else name

    try:
        current_balance = parse_amount(balance) if balance is not None else None
        account_id = service.create_account(
            ctx.obj["user_id"], name=name, bank_name=bank_name, current_balance=current_balance
        )
        click.echo(f"Created account '{name}' (ID: {account_id})")
    except ValueError as e:
        handle_domain_error(ctx, e)


@account_group.command("list")
@click.pass_context
def list_accounts(ctx):
    """List all accounts."""
    db = ctx.obj["db"]
    service = AccountService(db)

    accounts = service.list_accounts(ctx.obj["user_id"])
    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\nAccounts:")
    click.echo("-" * 72)
    for acc in accounts:
        balance = f"{acc.current_balance:.2f}" if acc.current_balance is not None else "-"
        click.echo(f"ID: {acc.id:3d} | {acc.name:20s} | Bank: {acc.bank_name:20s} | Balance: {balance}")


@account_group.command("set-balance")
@click.argument("account", metavar="ACCOUNT")
@click.argument("balance")
@click.pass_context
def set_balance(ctx, account: str, balance: str):
    """Set the current balance of an account (name or ID)."""
    db = ctx.obj["db"]
    service = AccountService(db)
    account_id = resolve_account_or_exit(ctx, service, account)

    try:
        amount = parse_amount(balance)
        service.update_balance(ctx.obj["user_id"], account_id, amount)
    except ValueError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Balance of account {account_id} set to {amount:.2f}")


def register_commands(cli):
    """Register account commands with main CLI."""
    cli.add_command(account_group, name="account")
