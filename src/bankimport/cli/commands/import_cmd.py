"""Statement import commands."""

from pathlib import Path

import click
from bankimport.cli.account_resolution import resolve_account_or_exit
from bankimport.cli.error_handling import handle_domain_error
from bankimport.config import load_settings
from bankimport.domain.account import AccountService
from bankimport.domain.bank_import import BankImportService, ImportRequest
from bankimport.domain.entities import DuplicatePolicy, LinkType
from bankimport.domain.errors import ValidationError
from bankimport.domain.parsing import (
    ColumnMapping,
    ParseOptions,
    decode_content,
    detect_format,
    parse_file,
)


def _parse_columns(values: tuple[str, ...]) -> ColumnMapping:
    mapping = {}
    for value in values:
        field_name, sep, header = value.partition("=")
        if not sep or not header.strip():
            raise ValidationError(f"Invalid column mapping '{value}'. Use FIELD=HEADER")
        mapping[field_name.strip().lower()] = header.strip()
    return ColumnMapping.from_dict(mapping)


def _parse_links(values: tuple[str, ...]) -> dict[int, tuple[LinkType, int]]:
    links = {}
    for value in values:
        row, sep, target = value.partition("=")
        kind, colon, record_id = target.partition(":")
        if not sep or not colon or not row.strip().isdigit() or not record_id.strip().isdigit():
            raise ValidationError(f"Invalid link '{value}'. Use ROW=income:ID or ROW=expense:ID")
        try:
            link_type = LinkType(kind.strip().upper())
        except ValueError:
            raise ValidationError(f"Invalid link type '{kind}'. Use income or expense")
        links[int(row)] = (link_type, int(record_id))
    return links


def _build_options(
    columns: tuple[str, ...],
    date_format: str | None,
    delimiter: str | None,
    no_header: bool,
    skip_rows: int,
) -> ParseOptions:
    if delimiter == "\\t":
        delimiter = "\t"
    return ParseOptions(
        columns=_parse_columns(columns),
        date_format=date_format,
        delimiter=delimiter,
        has_header=not no_header,
        skip_rows=skip_rows,
    )


def _parse_option_flags(f):
    """Options shared by commands that read a statement file."""
    f = click.option("--skip-rows", type=int, default=0, help="Leading lines to ignore before the header")(f)
    f = click.option("--no-header", is_flag=True, help="The file has no header row")(f)
    f = click.option("--delimiter", help="Field delimiter (detected when omitted)")(f)
    f = click.option("--date-format", help="Date format, e.g. DD/MM/YYYY or YYYY-MM-DD")(f)
    f = click.option(
        "--column",
        "columns",
        multiple=True,
        metavar="FIELD=HEADER",
        help="Map a field (date, description, amount, credit, debit, direction, balance, "
        "reference, mcc) to a header name, or a column number without a header",
    )(f)
    return f


@click.command("import")
@click.argument("statement_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--account", help="Account name or ID the statement belongs to")
@click.option(
    "--policy",
    type=click.Choice([p.value for p in DuplicatePolicy], case_sensitive=False),
    default=DuplicatePolicy.REJECT.value,
    show_default=True,
    help="What to do with transactions that were already imported",
)
@_parse_option_flags
@click.option("--update-balance", is_flag=True, help="Set the account balance from the statement")
@click.option("--auto-link", is_flag=True, help="Link transactions to matching income and expense records")
@click.option(
    "--link",
    "links",
    multiple=True,
    metavar="ROW=TYPE:ID",
    help="Link a file row to a record, e.g. 5=expense:2",
)
@click.option("--no-recurring", is_flag=True, help="Skip recurring payment detection")
@click.pass_context
def import_statement(
    ctx,
    statement_file: str,
    account: str | None,
    policy: str,
    columns: tuple[str, ...],
    date_format: str | None,
    delimiter: str | None,
    no_header: bool,
    skip_rows: int,
    update_balance: bool,
    auto_link: bool,
    links: tuple[str, ...],
    no_recurring: bool,
):
    """Import transactions from a bank statement file.

    Examples:
        bankimport import statement.csv --account Everyday
        bankimport import export.csv --account 1 --policy SKIP --update-balance
        bankimport import raw.csv --no-header --column date=1 --column description=3 --column amount=2
    """
    db = ctx.obj["db"]
    user_id = ctx.obj["user_id"]

    account_id = None
    if account is not None:
        account_id = resolve_account_or_exit(ctx, AccountService(db), account)

    try:
        settings = load_settings()
        service = BankImportService(db, settings)
        request = ImportRequest(
            user_id=user_id,
            filename=Path(statement_file).name,
            content=Path(statement_file).read_bytes(),
            account_id=account_id,
            duplicate_policy=policy,
            options=_build_options(columns, date_format, delimiter, no_header, skip_rows),
            update_balance=update_balance,
            auto_link=auto_link,
            explicit_links=_parse_links(links),
            detect_recurring=not no_recurring,
        )
        result = service.import_file(request)
    except ValueError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"\nImport {result.file_id} complete:")
    if result.detected_bank:
        click.echo(f"  Bank layout: {result.detected_bank}")
    click.echo(f"  Rows: {result.total_rows}")
    click.echo(f"  Imported: {result.imported_count} transactions")
    click.echo(f"  Duplicates: {result.duplicate_count}")
    if result.possible_duplicate_count:
        click.echo(f"  Possible duplicates: {result.possible_duplicate_count}")
    click.echo(f"  Categorised: {result.categorised_count} ({result.uncategorised_count} uncategorised)")
    if result.auto_linked_count or result.explicit_linked_count:
        click.echo(f"  Linked: {result.explicit_linked_count} explicit, {result.auto_linked_count} automatic")
    if result.linked_to_recurring:
        click.echo(f"  Recurring: {result.linked_to_recurring}")
    if update_balance and result.closing_balance is not None:
        click.echo(f"  Closing balance: {result.closing_balance:.2f}")
    if result.error_count:
        click.echo(f"  Errors: {result.error_count}")
        for error in result.errors:
            click.echo(f"    Row {error.row_number}: {error.message}", err=True)


@click.command("inspect")
@click.argument("statement_file", type=click.Path(exists=True, dir_okay=False))
@_parse_option_flags
@click.option("--rows", "show_rows", type=int, default=5, show_default=True, help="Rows to preview")
@click.pass_context
def inspect_statement(
    ctx,
    statement_file: str,
    columns: tuple[str, ...],
    date_format: str | None,
    delimiter: str | None,
    no_header: bool,
    skip_rows: int,
    show_rows: int,
):
    """Show how a statement file would be parsed, without importing it."""
    try:
        fmt = detect_format(Path(statement_file).name)
        options = _build_options(columns, date_format, delimiter, no_header, skip_rows)
        parsed = parse_file(decode_content(Path(statement_file).read_bytes()), fmt, options)
    except ValueError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"Bank layout: {parsed.detected_bank or 'unknown'}")
    click.echo(f"Date format: {parsed.date_format}")
    if parsed.headers:
        click.echo(f"Headers: {', '.join(parsed.headers)}")
    for field_name, header in parsed.columns.as_dict().items():
        click.echo(f"  {field_name:12s} <- {header}")
    click.echo(f"Rows: {parsed.total_rows} ({len(parsed.errors)} with errors)")

    for row in parsed.rows[:show_rows]:
        amount = f"{row.amount:.2f}" if row.amount is not None else "-"
        direction = f" {row.direction.value}" if row.direction else ""
        click.echo(f"  {row.row_number:4d} | {row.date or '-'} | {amount:>10s}{direction} | {row.description or ''}")
    for error in parsed.errors[:show_rows]:
        click.echo(f"  Row {error.row_number}: {error.message}", err=True)


@click.command("imports")
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=20, show_default=True)
@click.pass_context
def list_imports(ctx, page: int, page_size: int):
    """List previous imports, newest first."""
    db = ctx.obj["db"]
    service = BankImportService(db)

    try:
        result = service.list_imports(ctx.obj["user_id"], page=page, page_size=page_size)
    except ValueError as e:
        handle_domain_error(ctx, e)
        return

    if not result.items:
        click.echo("No imports found.")
        return

    click.echo(f"\nImports (page {result.page} of {result.pages}, {result.total} total):")
    click.echo("-" * 80)
    for item in result.items:
        line = (
            f"ID: {item.id:3d} | {item.uploaded_at:%Y-%m-%d %H:%M} | {item.filename:25s} | {item.status.value:10s} | "
            f"{item.imported_count}/{item.total_rows} imported, {item.duplicate_count} dup, {item.error_count} err"
        )
        click.echo(line)
        if item.error_message:
            click.echo(f"      {item.error_message}")


def register_commands(cli):
    """Register import commands with main CLI."""
    cli.add_command(import_statement)
    cli.add_command(inspect_statement)
    cli.add_command(list_imports)
