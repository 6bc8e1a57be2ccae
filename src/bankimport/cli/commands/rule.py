"""Category rule commands."""

import click
from bankimport.cli.error_handling import handle_domain_error
from bankimport.domain.entities import RuleType
from bankimport.domain.rules import RuleService


@click.group()
def rule_group():
    """Manage category rules."""
    pass


@rule_group.command("add")
@click.option(
    "--type",
    "rule_type",
    required=True,
    type=click.Choice([t.value for t in RuleType], case_sensitive=False),
    help="What the pattern is matched against",
)
@click.option("--pattern", required=True, help="Text, regex, MCC list, biller code or MIN-MAX range")
@click.option("--category", required=True, help="Category, optionally 'Level1 > Level2 > Subcategory'")
@click.option("--priority", type=int, default=0, show_default=True, help="Higher priorities are tried first")
@click.option("--regex", "is_regex", is_flag=True, help="Treat the pattern as a regular expression")
@click.option("--case-sensitive", is_flag=True, help="Match case exactly")
@click.option("--global", "is_global", is_flag=True, help="Create a rule that applies to every user")
@click.option("--link-expense", type=int, help="Expense record to link matching transactions to")
@click.option("--link-property", type=int, help="Property to link matching transactions to")
@click.option("--link-loan", type=int, help="Loan to link matching transactions to")
@click.pass_context
def add_rule(
    ctx,
    rule_type: str,
    pattern: str,
    category: str,
    priority: int,
    is_regex: bool,
    case_sensitive: bool,
    is_global: bool,
    link_expense: int | None,
    link_property: int | None,
    link_loan: int | None,
):
    """Add a category rule.

    Examples:
        bankimport rule add --type MERCHANT --pattern NETFLIX --category "Entertainment > Streaming"
        bankimport rule add --type KEYWORD --pattern "^ACME" --regex --category Income --priority 10
        bankimport rule add --type AMOUNT_RANGE --pattern 1000- --category "Large Purchase"
    """
    db = ctx.obj["db"]
    service = RuleService(db)

    levels = [part.strip() for part in category.split(">")]
    levels += [None] * (3 - len(levels))

    try:
        rule_id = service.create_rule(
            user_id=None if is_global else ctx.obj["user_id"],
            rule_type=rule_type,
            pattern=pattern,
            category_level1=levels[0],
            category_level2=levels[1],
            subcategory=levels[2],
            is_regex=is_regex,
            case_sensitive=case_sensitive,
            priority=priority,
            link_property_id=link_property,
            link_loan_id=link_loan,
            link_expense_id=link_expense,
        )
        click.echo(f"Created rule {rule_id}")
    except ValueError as e:
        handle_domain_error(ctx, e)


@rule_group.command("list")
@click.pass_context
def list_rules(ctx):
    """List rules in the order they are evaluated."""
    db = ctx.obj["db"]
    service = RuleService(db)

    rules = service.list_rules(ctx.obj["user_id"])
    if not rules:
        click.echo("No rules found.")
        return

    click.echo("\nRules (evaluated top to bottom):")
    click.echo("-" * 80)
    for rule in rules:
        category = " > ".join(p for p in (rule.category_level1, rule.category_level2, rule.subcategory) if p)
        scope = "global" if rule.user_id is None else "user"
        flags = []
        if rule.is_regex:
            flags.append("regex")
        if rule.case_sensitive:
            flags.append("case")
        if not rule.is_active:
            flags.append("inactive")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(
            f"ID: {rule.id:3d} | P{rule.priority:<4d} | {rule.rule_type.value:12s} | "
            f"{rule.pattern!r} -> {category} ({scope}){suffix}"
        )


@rule_group.command("disable")
@click.argument("rule_id", type=int)
@click.pass_context
def disable_rule(ctx, rule_id: int):
    """Stop applying a rule to new imports."""
    _set_active(ctx, rule_id, False)


@rule_group.command("enable")
@click.argument("rule_id", type=int)
@click.pass_context
def enable_rule(ctx, rule_id: int):
    """Apply a disabled rule again."""
    _set_active(ctx, rule_id, True)


def _set_active(ctx, rule_id: int, active: bool):
    service = RuleService(ctx.obj["db"])
    try:
        service.set_active(ctx.obj["user_id"], rule_id, active)
    except ValueError as e:
        handle_domain_error(ctx, e)
        return
    click.echo(f"Rule {rule_id} {'enabled' if active else 'disabled'}")


def register_commands(cli):
    """Register rule commands with main CLI."""
    cli.add_command(rule_group, name="rule")
