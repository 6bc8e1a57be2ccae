"""Recurring payment detection.

Outgoing transactions are grouped by standardised merchant and account.
A group is recurring when its typical gap between payments fits one of the
known periods and the combined regularity/stability score is high enough.
Detection is a pure function of the transaction history, so running it
again on unchanged data produces the same registry state.
"""

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from bankimport.config import ImportSettings
from bankimport.database.base import Database
from bankimport.domain.entities import (
    Direction,
    RecurrencePattern,
    RecurringPayment,
    UnifiedTransaction,
)
from bankimport.utils.amount_parser import quantize

logger = logging.getLogger(__name__)

# Target interval in days and accepted distance from it
PATTERN_INTERVALS: dict[RecurrencePattern, tuple[int, int]] = {
    RecurrencePattern.WEEKLY: (7, 2),
    RecurrencePattern.FORTNIGHTLY: (14, 3),
    RecurrencePattern.MONTHLY: (30, 5),
    RecurrencePattern.QUARTERLY: (91, 10),
    RecurrencePattern.ANNUALLY: (365, 20),
}

PATTERN_STEPS = {
    RecurrencePattern.WEEKLY: relativedelta(weeks=1),
    RecurrencePattern.FORTNIGHTLY: relativedelta(weeks=2),
    RecurrencePattern.MONTHLY: relativedelta(months=1),
    RecurrencePattern.QUARTERLY: relativedelta(months=3),
    RecurrencePattern.ANNUALLY: relativedelta(years=1),
}

REGULARITY_WEIGHT = 0.6
STABILITY_WEIGHT = 0.4

TRACKED_FIELDS = (
    "merchant_standardised",
    "pattern",
    "expected_amount",
    "amount_variance",
    "last_occurrence",
    "next_expected",
    "occurrence_count",
    "confidence",
    "price_increase_alert",
    "last_price_change",
    "last_price_change_date",
    "is_active",
)


@dataclass(frozen=True)
class RecurringCandidate:
    """A merchant group that qualifies as recurring."""

    merchant_standardised: str
    account_id: Optional[int]
    pattern: RecurrencePattern
    expected_amount: Decimal
    amount_variance: float
    last_occurrence: date
    next_expected: date
    occurrence_count: int
    confidence: float
    price_increase_alert: bool = False
    last_price_change: Optional[Decimal] = None
    last_price_change_date: Optional[date] = None
    is_active: bool = True
    transaction_ids: tuple[int, ...] = ()

    @property
    def key(self) -> tuple[str, Optional[int]]:
        return self.merchant_standardised.lower(), self.account_id

    def registry_values(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in TRACKED_FIELDS}


@dataclass(frozen=True)
class RecurringUpdate:
    existing: RecurringPayment
    candidate: RecurringCandidate
    changed_fields: tuple[str, ...]


@dataclass
class RecurringDetectionResult:
    detected: list[RecurringCandidate] = field(default_factory=list)
    updated: list[RecurringUpdate] = field(default_factory=list)
    unchanged: list[RecurringCandidate] = field(default_factory=list)
    deactivated: list[RecurringPayment] = field(default_factory=list)
    # transaction id -> pattern for every transaction in a recurring group
    recurring_transactions: dict[int, RecurrencePattern] = field(default_factory=dict)
    flagged_count: int = 0

    @property
    def candidates(self) -> list[RecurringCandidate]:
        return self.detected + [u.candidate for u in self.updated] + self.unchanged


def classify_interval(median_gap: float) -> Optional[RecurrencePattern]:
    """Nearest pattern whose tolerance contains the gap, or None."""
    best = None
    best_distance = None
    for pattern, (target, tolerance) in PATTERN_INTERVALS.items():
        distance = abs(median_gap - target)
        if distance <= tolerance and (best_distance is None or distance < best_distance):
            best, best_distance = pattern, distance
    return best


def next_occurrence(last: date, pattern: RecurrencePattern) -> date:
    return last + PATTERN_STEPS[pattern]


def is_stale(next_expected: Optional[date], pattern: RecurrencePattern, as_of: date) -> bool:
    """True when a full extra period has passed since the payment was due."""
    if next_expected is None:
        return False
    return next_expected + PATTERN_STEPS[pattern] < as_of


def _relative_deviation(amount: Decimal, reference: Decimal) -> Decimal:
    if reference == 0:
        return Decimal("0")
    return abs(amount - reference) / reference


def price_levels(amounts: list[Decimal], floor: Decimal) -> list[list[Decimal]]:
    """Split chronological amounts into runs at a stable price.

    An amount further from the current level's median than the larger of
    the level's own spread and ``floor`` starts a new level.
    """
    levels: list[list[Decimal]] = []
    for amount in amounts:
        if not levels:
            levels.append([amount])
            continue
        level = levels[-1]
        median = statistics.median(level)
        spread = max((_relative_deviation(a, median) for a in level), default=Decimal("0"))
        if _relative_deviation(amount, median) > max(spread, floor):
            levels.append([amount])
        else:
            level.append(amount)
    return levels


def _stability(amounts: list[Decimal]) -> float:
    if len(amounts) < 2:
        return 1.0
    mean = statistics.fmean(float(a) for a in amounts)
    if mean == 0:
        return 0.0
    cv = statistics.pstdev(float(a) for a in amounts) / mean
    return max(0.0, 1.0 - cv)


def _evaluate_group(
    txns: list[UnifiedTransaction], settings: ImportSettings, as_of: date
) -> Optional[RecurringCandidate]:
    txns = sorted(txns, key=lambda t: (t.date, t.id))
    gaps = [(b.date - a.date).days for a, b in zip(txns, txns[1:])]
    pattern = classify_interval(statistics.median(gaps))
    if pattern is None:
        return None

    target, tolerance = PATTERN_INTERVALS[pattern]
    regularity = sum(1 for gap in gaps if abs(gap - target) <= tolerance) / len(gaps)

    amounts = [quantize(t.amount) for t in txns]
    levels = price_levels(amounts, settings.price_change_floor)
    current = levels[-1]
    expected = quantize(statistics.median(current))
    variance = max(_relative_deviation(a, expected) for a in current)

    confidence = round(REGULARITY_WEIGHT * regularity + STABILITY_WEIGHT * _stability(current), 4)
    if confidence < settings.min_recurring_confidence:
        return None

    alert = False
    change = None
    change_date = None
    if len(levels) > 1:
        previous = quantize(statistics.median(levels[-2]))
        change = quantize(current[0] - previous)
        change_date = txns[len(amounts) - len(current)].date
        alert = len(current) == 1 and current[0] > previous

    last = txns[-1]
    next_expected = next_occurrence(last.date, pattern)
    return RecurringCandidate(
        merchant_standardised=last.merchant_standardised or last.description,
        account_id=last.account_id,
        pattern=pattern,
        expected_amount=expected,
        amount_variance=round(float(variance), 4),
        last_occurrence=last.date,
        next_expected=next_expected,
        occurrence_count=len(txns),
        confidence=confidence,
        price_increase_alert=alert,
        last_price_change=change,
        last_price_change_date=change_date,
        is_active=not is_stale(next_expected, pattern, as_of),
        transaction_ids=tuple(t.id for t in txns),
    )


def detect_recurring_payments(
    transactions: list[UnifiedTransaction],
    settings: Optional[ImportSettings] = None,
    as_of: Optional[date] = None,
) -> list[RecurringCandidate]:
    """Find recurring merchant groups in a transaction history.

    Args:
        transactions: History to scan; incoming and duplicate flagged
            transactions are ignored
        settings: Thresholds; defaults when omitted
        as_of: Reference date for staleness; today when omitted

    Returns:
        Candidates ordered by merchant then account
    """
    settings = settings or ImportSettings()
    as_of = as_of or date.today()

    groups: dict[tuple[str, Optional[int]], list[UnifiedTransaction]] = defaultdict(list)
    for txn in transactions:
        if txn.direction != Direction.OUT or txn.is_duplicate:
            continue
        merchant = (txn.merchant_standardised or txn.description or "").strip()
        if not merchant:
            continue
        groups[(merchant.lower(), txn.account_id)].append(txn)

    candidates = []
    for key in sorted(groups, key=lambda k: (k[0], k[1] is None, k[1] or 0)):
        group = groups[key]
        if len(group) < settings.min_occurrences:
            continue
        candidate = _evaluate_group(group, settings, as_of)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def reconcile_registry(
    candidates: list[RecurringCandidate],
    registry: list[RecurringPayment],
    as_of: date,
) -> RecurringDetectionResult:
    """Partition candidates against the stored registry.

    New groups are ``detected``; stored entries become ``updated`` only when
    a tracked field changes. Active entries with no candidate that are
    overdue by a full period are ``deactivated``.
    """
    existing = {(p.merchant_standardised.lower(), p.account_id): p for p in registry}
    result = RecurringDetectionResult()
    matched = set()

    for candidate in candidates:
        entry = existing.get(candidate.key)
        if entry is None:
            result.detected.append(candidate)
            continue
        matched.add(candidate.key)
        changed = tuple(
            name for name in TRACKED_FIELDS if getattr(entry, name) != getattr(candidate, name)
        )
        if changed:
            result.updated.append(RecurringUpdate(entry, candidate, changed))
        else:
            result.unchanged.append(candidate)

    for key, entry in existing.items():
        if key in matched or not entry.is_active:
            continue
        if is_stale(entry.next_expected, entry.pattern, as_of):
            result.deactivated.append(replace(entry, is_active=False))

    return result


class RecurringDetectionService:
    """Runs recurring detection against the stored history of a user."""

    def __init__(self, db: Database, settings: Optional[ImportSettings] = None):
        """Initialize recurring detection service.

        Args:
            db: Database instance
            settings: Detection thresholds
        """
        self.db = db
        self.settings = settings or ImportSettings()

    def run(self, user_id: int, as_of: Optional[date] = None) -> RecurringDetectionResult:
        """Detect recurring payments and write the registry and flags.

        Args:
            user_id: Owner of the transactions
            as_of: End of the trailing history window; today when omitted

        Returns:
            RecurringDetectionResult describing what changed
        """
        as_of = as_of or date.today()
        start = as_of - relativedelta(months=self.settings.history_months)
        history = self.db.list_transactions(user_id, start_date=start, end_date=as_of)
        registry = self.db.list_recurring(user_id)

        candidates = detect_recurring_payments(history, self.settings, as_of)
        result = reconcile_registry(candidates, registry, as_of)

        for candidate in result.detected:
            self.db.upsert_recurring(
                user_id, candidate.merchant_standardised, candidate.account_id, candidate.registry_values()
            )
        for update in result.updated:
            self.db.upsert_recurring(
                user_id, update.candidate.merchant_standardised, update.candidate.account_id,
                update.candidate.registry_values(),
            )
        if result.deactivated:
            self.db.deactivate_recurring([entry.id for entry in result.deactivated])

        for candidate in candidates:
            for txn_id in candidate.transaction_ids:
                result.recurring_transactions[txn_id] = candidate.pattern

        # Transactions of registry merchants that did not qualify on this run
        # keep following the stored entry while it is active
        candidate_keys = {c.key for c in candidates}
        deactivated_ids = {p.id for p in result.deactivated}
        active_entries = {
            (p.merchant_standardised.lower(), p.account_id): p
            for p in registry
            if p.is_active and not p.is_paused and p.id not in deactivated_ids
        }
        for txn in history:
            if txn.direction != Direction.OUT or txn.is_duplicate or txn.id in result.recurring_transactions:
                continue
            key = ((txn.merchant_standardised or txn.description or "").lower(), txn.account_id)
            entry = active_entries.get(key)
            if entry is not None and key not in candidate_keys:
                result.recurring_transactions[txn.id] = entry.pattern

        current = {t.id: t for t in history}
        to_flag: dict[RecurrencePattern, list[int]] = defaultdict(list)
        for txn_id, pattern in result.recurring_transactions.items():
            txn = current.get(txn_id)
            if txn is not None and (not txn.is_recurring or txn.recurrence_pattern != pattern):
                to_flag[pattern].append(txn_id)
        for pattern, ids in to_flag.items():
            self.db.flag_recurring(ids, pattern)
        result.flagged_count = sum(len(ids) for ids in to_flag.values())

        logger.info(
            "Recurring detection for user %s: %d detected, %d updated, %d deactivated, %d flagged",
            user_id,
            len(result.detected),
            len(result.updated),
            len(result.deactivated),
            result.flagged_count,
        )
        return result

    def list_recurring(self, user_id: int, active: Optional[bool] = None) -> list[RecurringPayment]:
        """List registry entries, optionally only active or inactive ones."""
        return self.db.list_recurring(user_id, active=active)
