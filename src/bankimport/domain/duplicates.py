"""Duplicate detection for incoming transactions.

Two passes: an exact pass on fingerprints (against history and against
earlier rows of the same file), then a bounded fuzzy pass that looks for
near matches in history sharing direction and amount within a small date
window.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from rapidfuzz import fuzz

from bankimport.config import ImportSettings
from bankimport.domain.entities import Direction, DuplicateStatus, ExistingTransaction
from bankimport.domain.normalisation import NormalisedTransaction

REASON_EXISTING = "matches existing transaction"
REASON_WITHIN_FILE = "duplicate within import file"
REASON_FUZZY = "similar to existing transaction"


@dataclass(frozen=True)
class DuplicateCheck:
    """Classification of one incoming transaction.

    ``duplicate_of`` is the id of the matched stored transaction, or None
    for a within-file duplicate. ``first_row_number`` points at the kept
    row for within-file duplicates.
    """

    transaction: NormalisedTransaction
    status: DuplicateStatus
    duplicate_of: Optional[int] = None
    first_row_number: Optional[int] = None
    similarity: float = 0.0
    reason: Optional[str] = None

    @property
    def is_unique(self) -> bool:
        return self.status == DuplicateStatus.UNIQUE


@dataclass
class DuplicateDetectionResult:
    checks: list[DuplicateCheck] = field(default_factory=list)

    def _with_status(self, status: DuplicateStatus) -> list[DuplicateCheck]:
        return [c for c in self.checks if c.status == status]

    @property
    def unique(self) -> list[DuplicateCheck]:
        return self._with_status(DuplicateStatus.UNIQUE)

    @property
    def duplicates(self) -> list[DuplicateCheck]:
        return self._with_status(DuplicateStatus.DUPLICATE)

    @property
    def possible_duplicates(self) -> list[DuplicateCheck]:
        return self._with_status(DuplicateStatus.POSSIBLE_DUPLICATE)

    @property
    def unique_count(self) -> int:
        return len(self.unique)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def possible_count(self) -> int:
        return len(self.possible_duplicates)


def _comparable(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def description_similarity(
    txn: NormalisedTransaction, existing: ExistingTransaction
) -> float:
    """Similarity in [0, 1] of descriptions, or merchants when that is higher."""
    score = fuzz.ratio(_comparable(txn.raw_description), _comparable(existing.description))
    if existing.merchant_standardised:
        merchant_score = fuzz.ratio(
            _comparable(txn.merchant_standardised), _comparable(existing.merchant_standardised)
        )
        score = max(score, merchant_score)
    return score / 100.0


def _cents(amount) -> int:
    return int((abs(amount) * 100).to_integral_value())


def detect_duplicates(
    transactions: list[NormalisedTransaction],
    existing: list[ExistingTransaction],
    settings: Optional[ImportSettings] = None,
) -> DuplicateDetectionResult:
    """Classify incoming transactions as unique, duplicate or possible duplicate.

    Args:
        transactions: Normalised transactions of the current file, in order
        existing: Summaries of the user's stored transactions
        settings: Thresholds; defaults when omitted

    Returns:
        DuplicateDetectionResult with one check per transaction, in input
        order. Within a file the first occurrence is kept as UNIQUE.
    """
    settings = settings or ImportSettings()

    existing_by_fingerprint: dict[str, int] = {}
    buckets: dict[tuple[Direction, int], list[ExistingTransaction]] = defaultdict(list)
    for item in existing:
        existing_by_fingerprint.setdefault(item.fingerprint, item.id)
        buckets[(Direction(item.direction), _cents(item.amount))].append(item)

    seen_in_file: dict[str, int] = {}
    result = DuplicateDetectionResult()

    for txn in transactions:
        if txn.fingerprint in existing_by_fingerprint:
            result.checks.append(
                DuplicateCheck(
                    txn,
                    DuplicateStatus.DUPLICATE,
                    duplicate_of=existing_by_fingerprint[txn.fingerprint],
                    similarity=1.0,
                    reason=REASON_EXISTING,
                )
            )
            continue

        if txn.fingerprint in seen_in_file:
            result.checks.append(
                DuplicateCheck(
                    txn,
                    DuplicateStatus.DUPLICATE,
                    first_row_number=seen_in_file[txn.fingerprint],
                    similarity=1.0,
                    reason=REASON_WITHIN_FILE,
                )
            )
            continue
        seen_in_file[txn.fingerprint] = txn.row_number

        best: Optional[ExistingTransaction] = None
        best_score = 0.0
        for candidate in buckets.get((txn.direction, _cents(txn.amount)), ()):
            if abs((candidate.date - txn.date).days) > settings.fuzzy_date_window_days:
                continue
            score = description_similarity(txn, candidate)
            if score > best_score:
                best, best_score = candidate, score

        if best is not None and best_score >= settings.fuzzy_threshold:
            result.checks.append(
                DuplicateCheck(
                    txn,
                    DuplicateStatus.POSSIBLE_DUPLICATE,
                    duplicate_of=best.id,
                    similarity=round(best_score, 4),
                    reason=REASON_FUZZY,
                )
            )
        else:
            result.checks.append(DuplicateCheck(txn, DuplicateStatus.UNIQUE))

    return result
