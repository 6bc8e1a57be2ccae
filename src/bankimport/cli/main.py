"""Main CLI entry point."""

import logging

import click
from bankimport.database.factories import create_sqlite_database

# Import and register all commands at module level
from bankimport.cli.commands import (
    account,
    import_cmd,
    record,
    recurring,
    rule,
)


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides BANKIMPORT_DB_PATH environment variable)",
    envvar="BANKIMPORT_DB_PATH",
)
@click.option(
    "--user",
    "user_id",
    type=int,
    default=1,
    show_default=True,
    envvar="BANKIMPORT_USER_ID",
    help="User whose data the command works on",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    envvar="BANKIMPORT_LOG_LEVEL",
    help="Logging verbosity",
)
@click.pass_context
def cli(ctx, db_path: str | None, user_id: int, log_level: str):
    """Bankimport - Bank statement import pipeline.

    Import CSV statement exports from different banks, skip data that was
    already imported, categorise transactions and detect recurring payments.
    """
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj["user_id"] = user_id

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db
        ctx.call_on_close(db.disconnect)


# Register all commands
account.register_commands(cli)
rule.register_commands(cli)
record.register_commands(cli)
import_cmd.register_commands(cli)
recurring.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
