"""Income and expense record commands."""

import click
from bankimport.cli.error_handling import handle_domain_error
from bankimport.domain.entities import Frequency
from bankimport.domain.records import RecordService
from bankimport.utils.amount_parser import parse_amount

FREQUENCIES = [f.value for f in Frequency]


@click.group()
def record_group():
    """Manage declared income and expense records."""
    pass


@record_group.command("add-income")
@click.argument("name")
@click.option("--amount", required=True, help="Gross amount per period")
@click.option("--net-amount", help="Net amount per period (preferred for matching)")
@click.option("--type", "income_type", default="Salary", show_default=True, help="Income type")
@click.option(
    "--frequency",
    type=click.Choice(FREQUENCIES, case_sensitive=False),
    default="MONTHLY",
    show_default=True,
)
@click.pass_context
def add_income(ctx, name: str, amount: str, net_amount: str | None, income_type: str, frequency: str):
    """Declare an income stream.

    Examples:
        bankimport record add-income "ACME Payroll" --amount 3200 --net-amount 2500 --frequency MONTHLY
    """
    db = ctx.obj["db"]
    service = RecordService(db)
    try:
        record_id = service.add_income(
            ctx.obj["user_id"],
            name=name,
            income_type=income_type,
            amount=parse_amount(amount),
            frequency=frequency,
            net_amount=parse_amount(net_amount) if net_amount else None,
        )
        click.echo(f"Created income record {record_id}")
    except ValueError as e:
        handle_domain_error(ctx, e)


@record_group.command("add-expense")
@click.argument("name")
@click.option("--amount", required=True, help="Amount per period")
@click.option("--category", default="General", show_default=True, help="Expense category")
@click.option("--vendor", help="Vendor name as it appears on statements")
@click.option(
    "--frequency",
    type=click.Choice(FREQUENCIES, case_sensitive=False),
    default="MONTHLY",
    show_default=True,
)
@click.pass_context
def add_expense(ctx, name: str, amount: str, category: str, vendor: str | None, frequency: str):
    """Declare a recurring expense.

    Examples:
        bankimport record add-expense "Netflix" --amount 15.99 --vendor NETFLIX --category Entertainment
    """
    db = ctx.obj["db"]
    service = RecordService(db)
    try:
        record_id = service.add_expense(
            ctx.obj["user_id"],
            name=name,
            category=category,
            amount=parse_amount(amount),
            frequency=frequency,
            vendor_name=vendor,
        )
        click.echo(f"Created expense record {record_id}")
    except ValueError as e:
        handle_domain_error(ctx, e)


@record_group.command("list")
@click.pass_context
def list_records(ctx):
    """List income and expense records."""
    db = ctx.obj["db"]
    service = RecordService(db)
    user_id = ctx.obj["user_id"]

    incomes = service.list_income(user_id)
    expenses = service.list_expenses(user_id)
    if not incomes and not expenses:
        click.echo("No records found.")
        return

    if incomes:
        click.echo("\nIncome:")
        for r in incomes:
            net = f" (net {r.net_amount:.2f})" if r.net_amount is not None else ""
            click.echo(f"ID: {r.id:3d} | {r.name:25s} | {r.amount:10.2f}{net} {r.frequency.value}")
    if expenses:
        click.echo("\nExpenses:")
        for r in expenses:
            vendor = f" [{r.vendor_name}]" if r.vendor_name else ""
            click.echo(f"ID: {r.id:3d} | {r.name:25s} | {r.amount:10.2f} {r.frequency.value}{vendor}")


def register_commands(cli):
    """Register record commands with main CLI."""
    cli.add_command(record_group, name="record")
