"""Tests for Database interface returning domain models."""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from bankimport.database.factories import create_sqlite_database, default_database_path
from bankimport.database.models import ImportFile
from bankimport.domain import entities
from bankimport.domain.errors import ConflictError
from bankimport.domain.parsing import RawRow


def _start(temp_db, content_hash="a" * 64, allow_reimport=False, user_id=1, **kwargs):
    return temp_db.start_import(
        user_id=user_id,
        filename="statement.csv",
        format=entities.ImportFormat.CSV,
        file_size=120,
        content_hash=content_hash,
        duplicate_policy=entities.DuplicatePolicy.REJECT,
        allow_reimport=allow_reimport,
        **kwargs,
    )


def _new_transaction(fingerprint="f" * 64, **kwargs):
    values = dict(
        user_id=1,
        account_id=None,
        date=date(2024, 1, 15),
        amount=Decimal("45.00"),
        direction=entities.Direction.OUT,
        description="Woolworths",
        raw_description="WOOLWORTHS 1234",
        merchant_raw="WOOLWORTHS 1234",
        merchant_standardised="WOOLWORTHS",
        fingerprint=fingerprint,
        category_level1="Food & Dining",
        category_level2="Groceries",
        subcategory=None,
        category_type=entities.CategoryType.PERSONAL_EXPENSE,
        confidence_score=0.5,
    )
    values.update(kwargs)
    return entities.NewTransaction(**values)


class TestDatabaseInterface:
    """Tests to verify Database interface returns domain models."""

    def test_get_account_returns_domain_model(self, temp_db):
        """Test that get_account returns a domain Account entity."""
        account_id = temp_db.create_account(1, name="Everyday", bank_name="ING", current_balance=Decimal("10.50"))

        account = temp_db.get_account(account_id)

        assert isinstance(account, entities.Account)
        assert account.id == account_id
        assert account.user_id == 1
        assert account.current_balance == Decimal("10.50")
        assert isinstance(account.created_at, datetime)

    def test_list_accounts_per_user(self, temp_db):
        temp_db.create_account(1, name="Savings", bank_name="ING")
        temp_db.create_account(1, name="Everyday", bank_name="ING")
        temp_db.create_account(2, name="Other", bank_name="ING")

        assert [a.name for a in temp_db.list_accounts(1)] == ["Everyday", "Savings"]

    def test_transactions_round_trip(self, temp_db):
        """Test that stored transactions come back as domain entities."""
        file_id = _start(temp_db).id
        ids = temp_db.add_transactions(
            [
                _new_transaction(import_batch_id=file_id, anomaly_flags=("possible_duplicate",)),
                _new_transaction(fingerprint="e" * 64, date=date(2024, 1, 10), link_type=entities.LinkType.EXPENSE, link_id=3),
            ]
        )

        transactions = temp_db.list_transactions(1)

        assert [t.id for t in transactions] == [ids[1], ids[0]]
        later = transactions[1]
        assert isinstance(later, entities.UnifiedTransaction)
        assert later.direction == entities.Direction.OUT
        assert later.category_type == entities.CategoryType.PERSONAL_EXPENSE
        assert later.anomaly_flags == ("possible_duplicate",)
        assert later.import_batch_id == file_id
        assert later.processed_at is not None
        assert transactions[0].link_type == entities.LinkType.EXPENSE

    def test_list_transactions_filters(self, temp_db):
        temp_db.add_transactions(
            [
                _new_transaction(fingerprint="1" * 64, date=date(2024, 1, 1)),
                _new_transaction(fingerprint="2" * 64, date=date(2024, 2, 1)),
                _new_transaction(fingerprint="3" * 64, date=date(2024, 3, 1), user_id=2),
            ]
        )

        assert len(temp_db.list_transactions(1, start_date=date(2024, 1, 15))) == 1
        assert len(temp_db.list_transactions(1, end_date=date(2024, 1, 15))) == 1
        assert len(temp_db.list_transactions(2)) == 1

    def test_summaries_for_duplicate_detection(self, temp_db):
        temp_db.add_transactions([_new_transaction()])

        summaries = temp_db.list_transaction_summaries(1)

        assert isinstance(summaries[0], entities.ExistingTransaction)
        assert summaries[0].fingerprint == "f" * 64
        assert summaries[0].description == "WOOLWORTHS 1234"
        assert temp_db.list_transaction_summaries(2) == []

    def test_flag_recurring(self, temp_db):
        ids = temp_db.add_transactions([_new_transaction()])

        temp_db.flag_recurring(ids, entities.RecurrencePattern.MONTHLY)

        txn = temp_db.list_transactions(1)[0]
        assert txn.is_recurring
        assert txn.recurrence_pattern == entities.RecurrencePattern.MONTHLY


class TestImportLifecycle:
    """Tests for import file state transitions."""

    def test_start_and_complete(self, temp_db):
        import_file = _start(temp_db)
        assert import_file.status == entities.ImportStatus.PROCESSING

        temp_db.complete_import(import_file.id, total_rows=3, imported_count=2, duplicate_count=1, error_count=0)

        stored = temp_db.get_import_file(import_file.id)
        assert stored.status == entities.ImportStatus.COMPLETED
        assert (stored.total_rows, stored.imported_count, stored.duplicate_count) == (3, 2, 1)

    def test_completed_import_blocks_same_content(self, temp_db):
        first = _start(temp_db)
        temp_db.complete_import(first.id, 1, 1, 0, 0)

        with pytest.raises(ConflictError) as exc_info:
            _start(temp_db)
        assert exc_info.value.existing_file_id == first.id

        assert _start(temp_db, allow_reimport=True).id != first.id
        assert _start(temp_db, user_id=2).status == entities.ImportStatus.PROCESSING

    def test_stale_attempts_are_purged(self, temp_db):
        failed = _start(temp_db)
        temp_db.add_raw_rows(failed.id, [(RawRow(row_number=2, raw_data={"Date": "x"}), "invalid-2")])
        temp_db.fail_import(failed.id, "boom")

        retry = _start(temp_db)

        assert temp_db.get_import_file(failed.id) is None
        assert temp_db.list_raw_rows(failed.id) == []
        assert temp_db.count_import_files(1) == 1
        assert retry.id != failed.id

    def test_abandoned_processing_import_is_replaced(self, temp_db):
        abandoned = _start(temp_db, content_hash="b" * 64)
        session = temp_db._get_session()
        session.get(ImportFile, abandoned.id).uploaded_at = datetime(2024, 1, 1)
        session.commit()

        replacement = _start(temp_db, content_hash="b" * 64)

        assert temp_db.count_import_files(1) == 1
        assert replacement.id > abandoned.id
        assert temp_db.get_import_file(abandoned.id) is None

    def test_live_processing_import_blocks_second_start(self, temp_db):
        first = _start(temp_db, content_hash="c" * 64)

        with pytest.raises(ConflictError) as exc_info:
            _start(temp_db, content_hash="c" * 64)

        assert exc_info.value.existing_file_id == first.id
        assert temp_db.get_import_file(first.id).status == entities.ImportStatus.PROCESSING
        assert _start(temp_db, content_hash="c" * 64, processing_timeout=timedelta(minutes=-1)).id > first.id

    def test_concurrent_start_from_second_connection(self, temp_db):
        other = create_sqlite_database(database_path=temp_db.database_path)
        try:
            first = _start(temp_db)

            with pytest.raises(ConflictError) as exc_info:
                _start(other)
            assert exc_info.value.existing_file_id == first.id

            temp_db.complete_import(first.id, 1, 1, 0, 0)
            assert other.get_import_file(first.id).status == entities.ImportStatus.COMPLETED
            assert other.count_import_files(1) == 1
        finally:
            other.disconnect()

    def test_purged_ids_are_not_reused(self, temp_db):
        ids = []
        for _ in range(3):
            import_file = _start(temp_db)
            temp_db.fail_import(import_file.id, "boom")
            ids.append(import_file.id)

        assert ids == sorted(set(ids))
        assert temp_db.count_import_files(1) == 1

    def test_fail_import_truncates_message(self, temp_db):
        import_file = _start(temp_db)

        temp_db.fail_import(import_file.id, "x" * 5000)

        stored = temp_db.get_import_file(import_file.id)
        assert stored.status == entities.ImportStatus.FAILED
        assert len(stored.error_message) == 1000

    def test_completed_import_cannot_fail(self, temp_db):
        import_file = _start(temp_db)
        temp_db.complete_import(import_file.id, 0, 0, 0, 0)

        with pytest.raises(ValueError):
            temp_db.fail_import(import_file.id, "late")


class TestRulesAndRegistry:
    """Tests for rules and the recurring registry."""

    def test_rules_ordered_by_priority_then_id(self, temp_db):
        def rule(user_id, priority, pattern):
            return entities.CategoryRule(
                id=None,
                user_id=user_id,
                rule_type=entities.RuleType.KEYWORD,
                pattern=pattern,
                category_level1="Shopping",
                priority=priority,
            )

        low = temp_db.create_rule(rule(1, 0, "a"))
        global_high = temp_db.create_rule(rule(None, 10, "b"))
        other_user = temp_db.create_rule(rule(2, 50, "c"))
        high = temp_db.create_rule(rule(1, 10, "d"))

        assert [r.id for r in temp_db.list_rules(1)] == [global_high, high, low]

        temp_db.set_rule_active(high, False)
        assert [r.id for r in temp_db.list_active_rules(1)] == [global_high, low]
        assert other_user not in [r.id for r in temp_db.list_rules(1)]

    def test_upsert_recurring(self, temp_db):
        values = dict(
            pattern=entities.RecurrencePattern.MONTHLY,
            expected_amount=Decimal("15.99"),
            amount_variance=0.0,
            last_occurrence=date(2024, 6, 15),
            next_expected=date(2024, 7, 15),
            occurrence_count=6,
            confidence=1.0,
        )
        first = temp_db.upsert_recurring(1, "NETFLIX", None, values)
        second = temp_db.upsert_recurring(1, "Netflix", None, dict(values, occurrence_count=7))
        other_account = temp_db.upsert_recurring(1, "NETFLIX", 4, values)

        assert first == second
        assert other_account != first
        entries = {p.id: p for p in temp_db.list_recurring(1)}
        assert entries[first].occurrence_count == 7
        assert entries[first].pattern == entities.RecurrencePattern.MONTHLY

        temp_db.deactivate_recurring([first])
        assert [p.id for p in temp_db.list_recurring(1, active=False)] == [first]
        assert [p.id for p in temp_db.list_recurring(1, active=True)] == [other_account]

    def test_income_and_expense_records(self, temp_db):
        income_id = temp_db.create_income_record(
            1, "ACME", "Salary", Decimal("3200"), entities.Frequency.MONTHLY, net_amount=Decimal("2500")
        )
        expense_id = temp_db.create_expense_record(
            1, "Netflix", "Entertainment", Decimal("15.99"), entities.Frequency.MONTHLY, vendor_name="NETFLIX"
        )

        income = temp_db.get_income_record(income_id)
        expense = temp_db.get_expense_record(expense_id)
        assert isinstance(income, entities.IncomeRecord)
        assert income.frequency == entities.Frequency.MONTHLY
        assert income.net_amount == Decimal("2500")
        assert expense.vendor_name == "NETFLIX"
        assert temp_db.get_expense_record(expense_id + 100) is None
        assert temp_db.list_expense_records(2) == []


class TestFactories:
    def test_path_from_environment(self, tmp_path, monkeypatch):
        db_file = tmp_path / "env.db"
        monkeypatch.setenv("BANKIMPORT_DB_PATH", str(db_file))

        db = create_sqlite_database()

        assert db.database_url == f"sqlite:///{db_file}"

    def test_default_path_under_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("BANKIMPORT_DB_PATH", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        assert default_database_path() == tmp_path / ".bankimport" / "bankimport.db"
        assert (tmp_path / ".bankimport").is_dir()
