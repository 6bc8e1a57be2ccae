"""Tests for statement import commands."""

from bankimport.cli.main import cli


def _invoke(cli_runner, temp_db, *args):
    return cli_runner.invoke(cli, ["--db-path", temp_db.database_path, *args])


def test_import_successful(cli_runner, temp_db, sample_account, fixtures_dir):
    """Test successful statement import."""
    csv_file = fixtures_dir / "basic_statement.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday")

    assert result.exit_code == 0
    assert "complete" in result.output
    assert "Imported: 3 transactions" in result.output
    assert "Duplicates: 0" in result.output


def test_import_account_by_id(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "tab_delimited.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", str(sample_account.id))

    assert result.exit_code == 0
    assert "Imported: 2 transactions" in result.output


def test_import_unknown_account(cli_runner, temp_db, fixtures_dir):
    csv_file = fixtures_dir / "basic_statement.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Nope")

    assert result.exit_code == 1
    assert "Account 'Nope' not found" in result.output


def test_import_within_file_duplicates(cli_runner, temp_db, sample_account, fixtures_dir):
    """Test duplicate detection during import."""
    csv_file = fixtures_dir / "within_file_duplicate.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday")

    assert result.exit_code == 0
    assert "Imported: 2 transactions" in result.output
    assert "Duplicates: 1" in result.output


def test_reimport_rejected(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "basic_statement.csv"
    _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday")

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday")

    assert result.exit_code == 1
    assert "already been imported" in result.output
    assert "Existing import:" in result.output


def test_reimport_with_mark_duplicate(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "basic_statement.csv"
    _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday")

    result = _invoke(
        cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday", "--policy", "mark_duplicate"
    )

    assert result.exit_code == 0
    assert "Imported: 3 transactions" in result.output
    assert "Duplicates: 3" in result.output


def test_import_reports_row_errors(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "rows_with_errors.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday")

    assert result.exit_code == 0
    assert "Imported: 2 transactions" in result.output
    assert "Errors: 3" in result.output
    assert "Row 3:" in result.output
    assert "Row 5:" in result.output


def test_import_with_column_options(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "no_header.csv"

    result = _invoke(
        cli_runner,
        temp_db,
        "import",
        str(csv_file),
        "--account",
        "Everyday",
        "--no-header",
        "--column",
        "date=1",
        "--column",
        "amount=2",
        "--column",
        "description=3",
        "--date-format",
        "DD/MM/YYYY",
    )

    assert result.exit_code == 0
    assert "Imported: 2 transactions" in result.output


def test_import_invalid_column_option(cli_runner, temp_db, fixtures_dir):
    csv_file = fixtures_dir / "basic_statement.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--column", "date")

    assert result.exit_code == 1
    assert "FIELD=HEADER" in result.output


def test_import_update_balance(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "cba_statement.csv"

    result = _invoke(
        cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday", "--update-balance", "--no-recurring"
    )

    assert result.exit_code == 0
    assert "Bank layout: Commonwealth Bank" in result.output
    assert "Closing balance: 4601.91" in result.output

    listing = _invoke(cli_runner, temp_db, "account", "list")
    assert "Balance: 4601.91" in listing.output


def test_import_with_link(cli_runner, temp_db, sample_account, fixtures_dir):
    _invoke(cli_runner, temp_db, "record", "add-income", "ACME Payroll", "--amount", "2500")
    csv_file = fixtures_dir / "basic_statement.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--account", "Everyday", "--link", "4=income:1")

    assert result.exit_code == 0
    assert "Linked: 1 explicit, 0 automatic" in result.output


def test_import_with_bad_link(cli_runner, temp_db, sample_account, fixtures_dir):
    csv_file = fixtures_dir / "basic_statement.csv"

    result = _invoke(cli_runner, temp_db, "import", str(csv_file), "--link", "4=property:1")

    assert result.exit_code == 1
    assert "income or expense" in result.output


def test_import_ofx_not_implemented(cli_runner, temp_db, fixtures_dir):
    ofx_file = fixtures_dir / "statement.ofx"

    result = _invoke(cli_runner, temp_db, "import", str(ofx_file))

    assert result.exit_code == 1
    assert "not yet implemented" in result.output

    history = _invoke(cli_runner, temp_db, "imports")
    assert "FAILED" in history.output


def test_inspect(cli_runner, temp_db, fixtures_dir):
    csv_file = fixtures_dir / "cba_statement.csv"

    result = _invoke(cli_runner, temp_db, "inspect", str(csv_file), "--rows", "2")

    assert result.exit_code == 0
    assert "Bank layout: Commonwealth Bank" in result.output
    assert "Rows: 4 (0 with errors)" in result.output
    assert "VISA PURCHASE COLES" in result.output
    assert "Transfer to Savings" not in result.output


def test_inspect_does_not_import(cli_runner, temp_db, fixtures_dir):
    csv_file = fixtures_dir / "basic_statement.csv"
    _invoke(cli_runner, temp_db, "inspect", str(csv_file))

    result = _invoke(cli_runner, temp_db, "imports")
    assert "No imports found." in result.output


def test_imports_listing(cli_runner, temp_db, sample_account, fixtures_dir):
    for name in ("basic_statement.csv", "tab_delimited.csv", "cba_statement.csv"):
        _invoke(cli_runner, temp_db, "import", str(fixtures_dir / name), "--no-recurring")

    result = _invoke(cli_runner, temp_db, "imports", "--page-size", "2")

    assert result.exit_code == 0
    assert "Imports (page 1 of 2, 3 total):" in result.output
    assert "cba_statement.csv" in result.output
    assert "basic_statement.csv" not in result.output


def test_imports_invalid_page(cli_runner, temp_db):
    result = _invoke(cli_runner, temp_db, "imports", "--page", "0")

    assert result.exit_code == 1
    assert "Error:" in result.output
