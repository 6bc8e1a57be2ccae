"""Tests for recurring payment detection."""

import pytest
from dataclasses import replace
from datetime import date, datetime, timedelta, UTC
from decimal import Decimal

from bankimport.config import ImportSettings
from bankimport.domain.entities import (
    CategoryType,
    Direction,
    RecurrencePattern,
    RecurringPayment,
    TransactionSource,
    UnifiedTransaction,
)
from bankimport.domain.recurring import (
    classify_interval,
    detect_recurring_payments,
    is_stale,
    next_occurrence,
    price_levels,
    reconcile_registry,
)

USER_ID = 1
AS_OF = date(2024, 6, 20)


def _txn(txn_id, txn_date, amount, merchant="NETFLIX", direction=Direction.OUT, account_id=1, **kwargs):
    return UnifiedTransaction(
        id=txn_id,
        user_id=USER_ID,
        account_id=account_id,
        date=txn_date,
        amount=Decimal(amount),
        direction=direction,
        description=merchant,
        raw_description=merchant,
        merchant_raw=merchant,
        merchant_standardised=merchant,
        fingerprint=f"fp-{txn_id}",
        category_level1="Entertainment",
        category_level2=None,
        subcategory=None,
        category_type=CategoryType.PERSONAL_EXPENSE,
        confidence_score=1.0,
        source=TransactionSource.CSV,
        created_at=datetime.now(UTC),
        **kwargs,
    )


def _monthly(amounts, merchant="NETFLIX", start_id=1):
    return [
        _txn(start_id + i, date(2024, 1 + i, 15), amount, merchant)
        for i, amount in enumerate(amounts)
    ]


def _entry_from(candidate, entry_id=1):
    return RecurringPayment(
        id=entry_id, user_id=USER_ID, account_id=candidate.account_id, **candidate.registry_values()
    )


class TestClassification:
    @pytest.mark.parametrize(
        "gap,expected",
        [
            (7, RecurrencePattern.WEEKLY),
            (9, RecurrencePattern.WEEKLY),
            (14, RecurrencePattern.FORTNIGHTLY),
            (31, RecurrencePattern.MONTHLY),
            (28, RecurrencePattern.MONTHLY),
            (92, RecurrencePattern.QUARTERLY),
            (366, RecurrencePattern.ANNUALLY),
            (50, None),
            (1, None),
        ],
    )
    def test_classify_interval(self, gap, expected):
        assert classify_interval(gap) == expected

    def test_next_occurrence_uses_calendar_months(self):
        assert next_occurrence(date(2024, 1, 31), RecurrencePattern.MONTHLY) == date(2024, 2, 29)
        assert next_occurrence(date(2024, 1, 15), RecurrencePattern.FORTNIGHTLY) == date(2024, 1, 29)

    def test_is_stale(self):
        assert not is_stale(date(2024, 7, 15), RecurrencePattern.MONTHLY, date(2024, 8, 15))
        assert is_stale(date(2024, 7, 15), RecurrencePattern.MONTHLY, date(2024, 8, 16))
        assert not is_stale(None, RecurrencePattern.MONTHLY, date(2030, 1, 1))

    def test_price_levels(self):
        floor = Decimal("0.05")
        noisy = [Decimal("15.99"), Decimal("16.10"), Decimal("15.95")]
        assert price_levels(noisy, floor) == [noisy]

        stepped = [Decimal("15.99")] * 3 + [Decimal("17.99")]
        assert price_levels(stepped, floor) == [[Decimal("15.99")] * 3, [Decimal("17.99")]]


class TestDetection:
    """Tests for recurring detection over a transaction history."""

    def test_netflix_monthly(self):
        txns = _monthly(["15.99"] * 6)
        candidates = detect_recurring_payments(txns, ImportSettings(), AS_OF)

        assert len(candidates) == 1
        netflix = candidates[0]
        assert netflix.pattern == RecurrencePattern.MONTHLY
        assert netflix.expected_amount == Decimal("15.99")
        assert netflix.amount_variance == 0
        assert netflix.occurrence_count == 6
        assert netflix.last_occurrence == date(2024, 6, 15)
        assert netflix.next_expected == date(2024, 7, 15)
        assert netflix.confidence == 1.0
        assert not netflix.price_increase_alert
        assert netflix.transaction_ids == (1, 2, 3, 4, 5, 6)

    def test_price_increase_alert(self):
        txns = _monthly(["15.99"] * 6 + ["17.99"])
        netflix = detect_recurring_payments(txns, ImportSettings(), date(2024, 7, 20))[0]

        assert netflix.price_increase_alert
        assert netflix.expected_amount == Decimal("17.99")
        assert netflix.last_price_change == Decimal("2.00")
        assert netflix.last_price_change_date == date(2024, 7, 15)
        assert netflix.occurrence_count == 7

    def test_alert_clears_once_new_price_is_established(self):
        txns = _monthly(["15.99"] * 5 + ["17.99"] * 3)
        netflix = detect_recurring_payments(txns, ImportSettings(), date(2024, 8, 20))[0]

        assert not netflix.price_increase_alert
        assert netflix.expected_amount == Decimal("17.99")
        assert netflix.last_price_change == Decimal("2.00")

    def test_price_decrease_does_not_alert(self):
        txns = _monthly(["17.99"] * 6 + ["15.99"])
        netflix = detect_recurring_payments(txns, ImportSettings(), date(2024, 7, 20))[0]

        assert not netflix.price_increase_alert
        assert netflix.last_price_change == Decimal("-2.00")

    def test_too_few_occurrences(self):
        assert detect_recurring_payments(_monthly(["15.99"] * 2), ImportSettings(), AS_OF) == []

    def test_irregular_gaps(self):
        dates = [date(2024, 1, 1), date(2024, 1, 4), date(2024, 2, 20), date(2024, 6, 1)]
        txns = [_txn(i, d, "10.00", "CORNER SHOP") for i, d in enumerate(dates, start=1)]
        assert detect_recurring_payments(txns, ImportSettings(), AS_OF) == []

    def test_weekly(self):
        txns = [_txn(i, date(2024, 5, 1) + timedelta(weeks=i), "25.00", "GYM") for i in range(5)]
        candidates = detect_recurring_payments(txns, ImportSettings(), AS_OF)
        assert candidates[0].pattern == RecurrencePattern.WEEKLY

    def test_incoming_and_duplicate_transactions_ignored(self):
        incoming = [
            _txn(i, date(2024, i, 1), "2500.00", "ACME PAYROLL", direction=Direction.IN) for i in range(1, 6)
        ]
        duplicates = [replace(t, is_duplicate=True) for t in _monthly(["15.99"] * 6)]
        assert detect_recurring_payments(incoming + duplicates, ImportSettings(), AS_OF) == []

    def test_groups_by_account(self):
        txns = _monthly(["15.99"] * 3) + [
            replace(t, id=t.id + 10, account_id=2) for t in _monthly(["15.99"] * 3)
        ]
        candidates = detect_recurring_payments(txns, ImportSettings(), AS_OF)
        assert [(c.merchant_standardised, c.account_id) for c in candidates] == [("NETFLIX", 1), ("NETFLIX", 2)]

    def test_stale_group_is_inactive(self):
        netflix = detect_recurring_payments(_monthly(["15.99"] * 6), ImportSettings(), date(2024, 9, 1))[0]
        assert not netflix.is_active


class TestReconcile:
    """Tests for partitioning candidates against the registry."""

    def test_new_and_unchanged(self):
        candidate = detect_recurring_payments(_monthly(["15.99"] * 6), ImportSettings(), AS_OF)[0]

        first = reconcile_registry([candidate], [], AS_OF)
        assert first.detected == [candidate]

        second = reconcile_registry([candidate], [_entry_from(candidate)], AS_OF)
        assert second.detected == []
        assert second.updated == []
        assert second.unchanged == [candidate]

    def test_updated_lists_changed_fields(self):
        old = detect_recurring_payments(_monthly(["15.99"] * 6), ImportSettings(), AS_OF)[0]
        new = detect_recurring_payments(_monthly(["15.99"] * 6 + ["17.99"]), ImportSettings(), date(2024, 7, 20))[0]

        result = reconcile_registry([new], [_entry_from(old)], date(2024, 7, 20))

        assert len(result.updated) == 1
        changed = result.updated[0].changed_fields
        for name in ("expected_amount", "next_expected", "occurrence_count", "price_increase_alert"):
            assert name in changed

    def test_overdue_entry_without_candidate_is_deactivated(self):
        old = detect_recurring_payments(_monthly(["15.99"] * 6), ImportSettings(), AS_OF)[0]
        result = reconcile_registry([], [_entry_from(old)], date(2024, 9, 1))

        assert [e.merchant_standardised for e in result.deactivated] == ["NETFLIX"]
        assert not result.deactivated[0].is_active

    def test_entry_not_yet_overdue_is_kept(self):
        old = detect_recurring_payments(_monthly(["15.99"] * 6), ImportSettings(), AS_OF)[0]
        assert reconcile_registry([], [_entry_from(old)], date(2024, 7, 20)).deactivated == []


class TestRecurringDetectionService:
    """Tests for detection against the database."""

    def _import(self, import_service, make_request, content, filename="netflix.csv"):
        return import_service.import_file(make_request(content, filename=filename))

    def test_creates_registry_and_flags_transactions(
        self, temp_db, import_service, recurring_service, make_request, monthly_csv
    ):
        result = self._import(import_service, make_request, monthly_csv("NETFLIX.COM", ["15.99"] * 6))
        assert result.imported_count == 6

        detection = recurring_service.run(USER_ID, as_of=AS_OF)

        assert len(detection.detected) == 1
        assert detection.flagged_count == 6
        registry = recurring_service.list_recurring(USER_ID)
        assert len(registry) == 1
        netflix = registry[0]
        assert netflix.merchant_standardised == "NETFLIX"
        assert netflix.pattern == RecurrencePattern.MONTHLY
        assert netflix.expected_amount == Decimal("15.99")
        assert netflix.occurrence_count == 6
        assert netflix.amount_variance == 0

        stored = temp_db.list_transactions(USER_ID)
        assert all(t.is_recurring for t in stored)
        assert all(t.recurrence_pattern == RecurrencePattern.MONTHLY for t in stored)

    def test_rerun_is_idempotent(self, import_service, recurring_service, make_request, monthly_csv):
        self._import(import_service, make_request, monthly_csv("NETFLIX.COM", ["15.99"] * 6))
        recurring_service.run(USER_ID, as_of=AS_OF)
        before = recurring_service.list_recurring(USER_ID)

        again = recurring_service.run(USER_ID, as_of=AS_OF)

        assert again.detected == []
        assert again.updated == []
        assert len(again.unchanged) == 1
        assert again.flagged_count == 0
        after = recurring_service.list_recurring(USER_ID)
        assert [(p.id, p.expected_amount, p.next_expected) for p in after] == [
            (p.id, p.expected_amount, p.next_expected) for p in before
        ]

    def test_price_increase_updates_registry(self, import_service, recurring_service, make_request, monthly_csv):
        self._import(import_service, make_request, monthly_csv("NETFLIX.COM", ["15.99"] * 6))
        recurring_service.run(USER_ID, as_of=AS_OF)

        self._import(
            import_service, make_request, "Date,Description,Amount\n2024-07-15,NETFLIX.COM,-17.99\n", "july.csv"
        )
        detection = recurring_service.run(USER_ID, as_of=date(2024, 7, 20))

        assert len(detection.updated) == 1
        netflix = recurring_service.list_recurring(USER_ID)[0]
        assert netflix.price_increase_alert
        assert netflix.expected_amount == Decimal("17.99")
        assert netflix.occurrence_count == 7
        assert netflix.next_expected == date(2024, 8, 15)

    def test_stale_entries_are_deactivated_not_deleted(
        self, import_service, recurring_service, make_request, monthly_csv
    ):
        self._import(import_service, make_request, monthly_csv("NETFLIX.COM", ["15.99"] * 6))
        recurring_service.run(USER_ID, as_of=AS_OF)

        detection = recurring_service.run(USER_ID, as_of=date(2025, 6, 1))

        assert len(detection.deactivated) == 1
        assert recurring_service.list_recurring(USER_ID, active=True) == []
        assert len(recurring_service.list_recurring(USER_ID, active=False)) == 1

    def test_import_runs_detection(self, import_service, make_request, monthly_csv):
        """Test that an import with detection enabled links its rows to recurring payments."""
        start = date.today().replace(day=1) - timedelta(days=170)
        content = monthly_csv("SPOTIFY", ["11.99"] * 6, start=start.replace(day=10))

        result = import_service.import_file(make_request(content, detect_recurring=True))

        assert result.recurring is not None
        assert result.linked_to_recurring == 6
