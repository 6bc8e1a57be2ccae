"""Shared domain error messages and error types."""

from typing import Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as a statement file that was already imported."""

    def __init__(self, message: str, existing_file_id: Optional[int] = None):
        super().__init__(message)
        self.existing_file_id = existing_file_id


class FormatNotImplementedError(DomainError):
    """Declared import format that has no parser yet."""

    def __init__(self, fmt: str):
        super().__init__(f"{fmt} format not yet implemented")
        self.format = fmt


class ImportFailedError(DomainError):
    """A pipeline stage failed after the import file record was created."""

    def __init__(self, file_id: int, message: str):
        super().__init__(f"Import {file_id} failed: {message}")
        self.file_id = file_id
        self.reason = message


def account_not_found(account_id: int) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def record_not_found(kind: str, record_id: int) -> str:
    """Return message for a missing income or expense record."""
    return f"{kind.capitalize()} record {record_id} not found"


def file_already_imported(existing_file_id: int) -> str:
    """Return message for a statement file that was already fully imported."""
    return (
        f"This file has already been imported (import {existing_file_id}). "
        "Use the MARK_DUPLICATE policy to import it again."
    )


def import_in_progress(existing_file_id: Optional[int] = None) -> str:
    """Return message for a statement file another import is still processing."""
    if existing_file_id is None:
        return "An import of this file is already in progress"
    return f"An import of this file is already in progress (import {existing_file_id})"


def unsupported_format(extension: str) -> str:
    """Return message for an unknown file extension."""
    return f"Unsupported file format: {extension or '(none)'}"
