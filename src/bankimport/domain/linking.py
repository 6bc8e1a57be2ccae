"""Auto-linking of transactions to declared income and expense records."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from rapidfuzz import fuzz, utils

from bankimport.config import ImportSettings
from bankimport.domain.entities import (
    Direction,
    ExpenseRecord,
    Frequency,
    IncomeRecord,
    LinkType,
)
from bankimport.domain.normalisation import NormalisedTransaction

logger = logging.getLogger(__name__)

# Occurrences per month for each frequency
MONTHLY_FACTORS: dict[Frequency, Decimal] = {
    Frequency.WEEKLY: Decimal(52) / Decimal(12),
    Frequency.FORTNIGHTLY: Decimal(26) / Decimal(12),
    Frequency.MONTHLY: Decimal(1),
    Frequency.QUARTERLY: Decimal(1) / Decimal(3),
    Frequency.ANNUALLY: Decimal(1) / Decimal(12),
}


@dataclass(frozen=True)
class LinkMatch:
    row_number: int
    link_type: LinkType
    record_id: int
    confidence: float
    amount_difference: float


def convert_amount(amount: Decimal, from_frequency: Frequency, to_frequency: Frequency) -> Decimal:
    """Convert a periodic amount to the equivalent amount of another period."""
    monthly = amount * MONTHLY_FACTORS[from_frequency]
    return monthly / MONTHLY_FACTORS[to_frequency]


def name_similarity(left: Optional[str], right: Optional[str]) -> float:
    if not left or not right:
        return 0.0
    return fuzz.token_set_ratio(left, right, processor=utils.default_process) / 100.0


def _relative_difference(actual: Decimal, expected: Decimal) -> Optional[Decimal]:
    if expected <= 0:
        return None
    return abs(actual - expected) / expected


class AutoLinker:
    """Matches transactions to income (IN) or expense (OUT) records.

    A link needs both a name confidence at or above the threshold and an
    amount within the tolerance of the record's amount.
    """

    def __init__(
        self,
        income_records: list[IncomeRecord],
        expense_records: list[ExpenseRecord],
        settings: Optional[ImportSettings] = None,
    ):
        self.income_records = sorted(income_records, key=lambda r: r.id)
        self.expense_records = sorted(expense_records, key=lambda r: r.id)
        self.settings = settings or ImportSettings()

    def _expected_amounts(
        self, record: Union[IncomeRecord, ExpenseRecord], period: Optional[Frequency]
    ) -> list[Decimal]:
        amounts = []
        if isinstance(record, IncomeRecord) and record.net_amount is not None:
            amounts.append(record.net_amount)
        amounts.append(record.amount)
        if period is not None and period != record.frequency:
            amounts = [convert_amount(a, record.frequency, period) for a in amounts]
        return amounts

    def _names(self, record: Union[IncomeRecord, ExpenseRecord]) -> list[str]:
        if isinstance(record, IncomeRecord):
            return [record.name, record.income_type]
        return [record.name, record.vendor_name]

    def match(
        self, txn: NormalisedTransaction, period: Optional[Frequency] = None
    ) -> Optional[LinkMatch]:
        """Find the best record for one transaction.

        Args:
            txn: Transaction to link
            period: Known recurrence of the transaction's merchant; record
                amounts are converted to it before comparing

        Returns:
            LinkMatch, or None when no record passes both checks
        """
        if txn.direction == Direction.IN:
            records, link_type = self.income_records, LinkType.INCOME
        else:
            records, link_type = self.expense_records, LinkType.EXPENSE

        texts = [txn.merchant_standardised, txn.description]
        best: Optional[LinkMatch] = None
        for record in records:
            confidence = max(
                name_similarity(text, name) for text in texts for name in self._names(record)
            )
            if confidence < self.settings.link_confidence_threshold:
                continue
            differences = [
                d for d in (_relative_difference(txn.amount, a) for a in self._expected_amounts(record, period))
                if d is not None
            ]
            if not differences:
                continue
            difference = min(differences)
            if difference > self.settings.link_amount_tolerance:
                continue
            candidate = LinkMatch(
                txn.row_number, link_type, record.id, round(confidence, 4), round(float(difference), 4)
            )
            if best is None or (candidate.confidence, -candidate.amount_difference) > (
                best.confidence,
                -best.amount_difference,
            ):
                best = candidate
        return best
