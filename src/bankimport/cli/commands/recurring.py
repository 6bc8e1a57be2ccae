"""Recurring payment commands."""

import click
from bankimport.cli.error_handling import handle_domain_error
from bankimport.config import load_settings
from bankimport.domain.recurring import RecurringDetectionService


@click.group()
def recurring_group():
    """Detect and list recurring payments."""
    pass


@recurring_group.command("detect")
@click.option("--as-of", type=click.DateTime(formats=["%Y-%m-%d"]), help="End of the history window (YYYY-MM-DD)")
@click.pass_context
def detect(ctx, as_of):
    """Re-run recurring detection over stored transactions."""
    db = ctx.obj["db"]

    try:
        service = RecurringDetectionService(db, load_settings())
        result = service.run(ctx.obj["user_id"], as_of=as_of.date() if as_of else None)
    except ValueError as e:
        handle_domain_error(ctx, e)
        return

    click.echo(f"New: {len(result.detected)}")
    for candidate in result.detected:
        click.echo(
            f"  {candidate.merchant_standardised} {candidate.pattern.value} "
            f"{candidate.expected_amount:.2f} (confidence {candidate.confidence:.2f})"
        )
    click.echo(f"Updated: {len(result.updated)}")
    for update in result.updated:
        changed = ", ".join(update.changed_fields)
        click.echo(f"  {update.candidate.merchant_standardised}: {changed}")
    click.echo(f"Deactivated: {len(result.deactivated)}")
    for entry in result.deactivated:
        click.echo(f"  {entry.merchant_standardised}")
    click.echo(f"Transactions flagged: {result.flagged_count}")


@recurring_group.command("list")
@click.option("--active/--inactive", default=None, help="Only show active or inactive payments")
@click.pass_context
def list_recurring(ctx, active):
    """List recurring payments."""
    db = ctx.obj["db"]
    service = RecurringDetectionService(db)

    payments = service.list_recurring(ctx.obj["user_id"], active=active)
    if not payments:
        click.echo("No recurring payments found.")
        return

    click.echo("\nRecurring payments:")
    click.echo("-" * 80)
    for p in payments:
        status = "active" if p.is_active else "inactive"
        alert = " PRICE INCREASE" if p.price_increase_alert else ""
        next_expected = p.next_expected.isoformat() if p.next_expected else "-"
        click.echo(
            f"ID: {p.id:3d} | {p.merchant_standardised:20s} | {p.pattern.value:11s} | "
            f"{p.expected_amount:10.2f} | next {next_expected} | {status}{alert}"
        )


def register_commands(cli):
    """Register recurring commands with main CLI."""
    cli.add_command(recurring_group, name="recurring")
