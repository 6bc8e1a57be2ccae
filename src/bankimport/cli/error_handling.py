"""CLI error handling helpers."""

import click

from bankimport.domain.errors import ConflictError, DomainError


def handle_domain_error(ctx: click.Context, error: DomainError | ValueError) -> None:
    """Render a domain error and exit with failure."""
    click.echo(f"Error: {error}", err=True)
    if isinstance(error, ConflictError) and error.existing_file_id is not None:
        click.echo(f"Existing import: {error.existing_file_id}", err=True)
    ctx.exit(1)
