"""Database factory functions for creating database instances."""

import os
from pathlib import Path
from typing import Optional

from bankimport.database.sqlalchemy_db import SQLAlchemyDatabase

DB_PATH_ENV = "BANKIMPORT_DB_PATH"


def default_database_path() -> Path:
    """Return ~/.bankimport/bankimport.db, creating the directory."""
    db_dir = Path.home() / ".bankimport"
    db_dir.mkdir(parents=True, exist_ok=True)
    return db_dir / "bankimport.db"


def create_sqlite_database(database_path: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a SQLite database instance.

    Args:
        database_path: Path to the SQLite file. Falls back to the
            BANKIMPORT_DB_PATH environment variable, then to
            ``default_database_path()``.

    Returns:
        SQLAlchemyDatabase instance configured for SQLite
    """
    database_path = database_path or os.environ.get(DB_PATH_ENV) or str(default_database_path())
    return SQLAlchemyDatabase(f"sqlite:///{database_path}")
