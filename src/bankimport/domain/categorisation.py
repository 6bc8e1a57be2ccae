"""Category rule engine.

Rules are evaluated as an explicit ordered list: priority descending, then
rule id ascending. The first matching rule wins with confidence 1.0. When no
rule matches, a built-in heuristic classifier (keyword and merchant table
plus a merchant category code lookup) gives a lower confidence guess;
otherwise the transaction stays uncategorised.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Optional, Protocol

from bankimport.domain.entities import (
    UNCATEGORISED,
    CategoryRule,
    CategoryType,
    Direction,
    LinkType,
    RuleType,
)

logger = logging.getLogger(__name__)

RULE_CONFIDENCE = 1.0
MCC_CONFIDENCE = 0.6
KEYWORD_CONFIDENCE = 0.5

_BPAY_BILLER = re.compile(r"\bBPAY\b\D{0,30}?(\d{3,10})\b", re.IGNORECASE)
_DIGITS = re.compile(r"^\d{3,10}$")
_AMOUNT_RANGE = re.compile(r"^\s*(\d+(?:\.\d+)?)?\s*-\s*(\d+(?:\.\d+)?)?\s*$")


class Categorisable(Protocol):
    """Fields a transaction needs to be matched against rules."""

    amount: Decimal
    direction: Direction
    raw_description: str
    merchant_standardised: Optional[str]
    reference: Optional[str]
    mcc: Optional[str]


@dataclass(frozen=True)
class CategoryAssignment:
    category_level1: str
    category_level2: Optional[str]
    subcategory: Optional[str]
    category_type: CategoryType
    confidence: float
    matched_rule_id: Optional[int] = None
    link_type: Optional[LinkType] = None
    link_id: Optional[int] = None
    method: str = "none"

    @property
    def is_categorised(self) -> bool:
        return self.category_type != CategoryType.UNKNOWN


@dataclass(frozen=True)
class CategorisedTransaction:
    transaction: Categorisable
    assignment: CategoryAssignment


@dataclass
class CategorisationResult:
    items: list[CategorisedTransaction] = field(default_factory=list)
    by_category: Counter = field(default_factory=Counter)

    @property
    def categorised(self) -> int:
        return sum(1 for item in self.items if item.assignment.is_categorised)

    @property
    def uncategorised(self) -> int:
        return len(self.items) - self.categorised


def category_type(category_level1: str, direction: Direction) -> CategoryType:
    """Derive the category type from the level 1 category and direction."""
    if category_level1 == UNCATEGORISED:
        return CategoryType.UNKNOWN
    if category_level1 == "Income":
        return CategoryType.INCOME
    if category_level1 == "Transfer":
        return CategoryType.TRANSFER
    if direction == Direction.IN:
        return CategoryType.INCOME
    if category_level1 == "Property":
        return CategoryType.PROPERTY_EXPENSE
    if category_level1 == "Investment":
        return CategoryType.INVESTMENT_EXPENSE
    return CategoryType.PERSONAL_EXPENSE


def uncategorised() -> CategoryAssignment:
    return CategoryAssignment(UNCATEGORISED, None, None, CategoryType.UNKNOWN, 0.0)


def sort_rules(rules: list[CategoryRule]) -> list[CategoryRule]:
    """Return active rules in evaluation order.

    Priority descending, then id ascending. Rules without an id come after
    those with one and are ordered by pattern.
    """
    active = [rule for rule in rules if rule.is_active]
    return sorted(
        active,
        key=lambda r: (-r.priority, r.id is None, r.id if r.id is not None else 0, r.pattern),
    )


@lru_cache(maxsize=1024)
def _compile(pattern: str, case_sensitive: bool) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        logger.warning("Ignoring category rule with invalid regex %r: %s", pattern, e)
        return None


@lru_cache(maxsize=256)
def parse_amount_range(pattern: str) -> Optional[tuple[Optional[Decimal], Optional[Decimal]]]:
    """Parse ``MIN-MAX`` where either bound may be omitted.

    Returns None (and logs once) for a malformed range.
    """
    match = _AMOUNT_RANGE.match(pattern or "")
    if not match or (match.group(1) is None and match.group(2) is None):
        logger.warning("Ignoring amount range rule with invalid pattern %r", pattern)
        return None
    try:
        low = Decimal(match.group(1)) if match.group(1) else None
        high = Decimal(match.group(2)) if match.group(2) else None
    except InvalidOperation:
        logger.warning("Ignoring amount range rule with invalid pattern %r", pattern)
        return None
    if low is not None and high is not None and low > high:
        logger.warning("Ignoring amount range rule with inverted bounds %r", pattern)
        return None
    return low, high


def extract_biller_code(description: Optional[str], reference: Optional[str] = None) -> Optional[str]:
    """Find a BPAY biller code in the description, else use a numeric reference."""
    if description:
        match = _BPAY_BILLER.search(description)
        if match:
            return match.group(1)
    if reference and _DIGITS.match(reference.strip()):
        return reference.strip()
    return None


def _text_matches(rule: CategoryRule, text: Optional[str], exact: bool) -> bool:
    if not text:
        return False
    if rule.is_regex:
        regex = _compile(rule.pattern, rule.case_sensitive)
        return regex is not None and regex.search(text) is not None
    if rule.case_sensitive:
        value, pattern = text, rule.pattern
    else:
        value, pattern = text.casefold(), rule.pattern.casefold()
    return value == pattern if exact else pattern in value


def rule_matches(rule: CategoryRule, txn: Categorisable) -> bool:
    """Check whether a single rule matches a transaction."""
    if rule.rule_type == RuleType.MERCHANT:
        merchant = txn.merchant_standardised or txn.raw_description
        return _text_matches(rule, merchant, exact=True)

    if rule.rule_type == RuleType.KEYWORD:
        return _text_matches(rule, txn.raw_description, exact=False)

    if rule.rule_type == RuleType.MCC:
        if not txn.mcc:
            return False
        if rule.is_regex:
            return _text_matches(rule, txn.mcc, exact=True)
        codes = {code.strip() for code in rule.pattern.split(",") if code.strip()}
        return txn.mcc.strip() in codes

    if rule.rule_type == RuleType.BPAY:
        biller = extract_biller_code(txn.raw_description, txn.reference)
        return _text_matches(rule, biller, exact=True)

    if rule.rule_type == RuleType.AMOUNT_RANGE:
        bounds = parse_amount_range(rule.pattern)
        if bounds is None:
            return False
        low, high = bounds
        amount = abs(txn.amount)
        return (low is None or amount >= low) and (high is None or amount <= high)

    return False


def _rule_link(rule: CategoryRule) -> tuple[Optional[LinkType], Optional[int]]:
    if rule.link_property_id is not None:
        return LinkType.PROPERTY, rule.link_property_id
    if rule.link_loan_id is not None:
        return LinkType.LOAN, rule.link_loan_id
    if rule.link_expense_id is not None:
        return LinkType.EXPENSE, rule.link_expense_id
    return None, None


def _builtin(rule_type: RuleType, pattern: str, level1: str, level2: str,
             subcategory: Optional[str] = None, priority: int = 80, is_regex: bool = False) -> CategoryRule:
    return CategoryRule(
        id=None,
        user_id=None,
        rule_type=rule_type,
        pattern=pattern,
        category_level1=level1,
        category_level2=level2,
        subcategory=subcategory,
        is_regex=is_regex,
        priority=priority,
    )


K, M = RuleType.KEYWORD, RuleType.MERCHANT

DEFAULT_RULES: list[CategoryRule] = [
    # Income
    _builtin(K, "salary", "Income", "Salary", priority=100),
    _builtin(K, "wages", "Income", "Salary", priority=100),
    _builtin(K, "payroll", "Income", "Salary", priority=100),
    _builtin(K, "dividend", "Income", "Investment", priority=90),
    _builtin(K, "interest", "Income", "Interest", priority=85),
    _builtin(K, "centrelink", "Income", "Government", priority=95),
    _builtin(K, "ato refund", "Income", "Tax Refund", priority=95),
    _builtin(K, "rental income", "Income", "Rent", priority=90),
    # Transfers
    _builtin(K, "transfer from", "Transfer", "Internal", priority=100),
    _builtin(K, "transfer to", "Transfer", "Internal", priority=100),
    _builtin(K, "internal transfer", "Transfer", "Internal", priority=100),
    _builtin(K, "osko", "Transfer", "External"),
    _builtin(K, "pay/id", "Transfer", "External"),
    # Property
    _builtin(K, "council rates", "Property", "Rates", priority=95),
    _builtin(K, "water rates", "Property", "Water", priority=95),
    _builtin(K, "strata", "Property", "Strata", priority=95),
    _builtin(K, "body corporate", "Property", "Strata", priority=95),
    _builtin(K, "land tax", "Property", "Land Tax", priority=95),
    _builtin(K, "property management", "Property", "Management", priority=90),
    # Utilities
    _builtin(M, "AGL", "Utilities", "Electricity", priority=90),
    _builtin(M, "ORIGIN ENERGY", "Utilities", "Gas", priority=90),
    _builtin(M, "ENERGY AUSTRALIA", "Utilities", "Electricity", priority=90),
    _builtin(M, "TELSTRA", "Utilities", "Phone", priority=90),
    _builtin(M, "OPTUS", "Utilities", "Phone", priority=90),
    _builtin(M, "VODAFONE", "Utilities", "Phone", priority=90),
    _builtin(K, r"\bnbn\b", "Utilities", "Internet", priority=85, is_regex=True),
    # Groceries and dining
    _builtin(M, "WOOLWORTHS", "Food & Dining", "Groceries", "Supermarket", priority=85),
    _builtin(M, "COLES", "Food & Dining", "Groceries", "Supermarket", priority=85),
    _builtin(M, "ALDI", "Food & Dining", "Groceries", "Supermarket", priority=85),
    _builtin(M, "COSTCO", "Food & Dining", "Groceries", "Wholesale", priority=85),
    _builtin(M, "MCDONALD'S", "Food & Dining", "Fast Food"),
    _builtin(M, "KFC", "Food & Dining", "Fast Food"),
    _builtin(M, "HUNGRY JACKS", "Food & Dining", "Fast Food"),
    _builtin(M, "DOMINO'S", "Food & Dining", "Fast Food"),
    _builtin(K, "restaurant", "Food & Dining", "Restaurant", priority=70),
    _builtin(K, "cafe", "Food & Dining", "Cafe", priority=70),
    _builtin(K, "coffee", "Food & Dining", "Cafe", priority=70),
    # Transport
    _builtin(M, "CALTEX", "Transport", "Fuel", priority=85),
    _builtin(M, "AMPOL", "Transport", "Fuel", priority=85),
    _builtin(M, "7-ELEVEN", "Transport", "Fuel"),
    _builtin(M, "UBER", "Transport", "Rideshare", priority=85),
    _builtin(M, "UBER EATS", "Food & Dining", "Takeaway", priority=85),
    _builtin(K, r"\bopal\b", "Transport", "Public Transport", priority=85, is_regex=True),
    _builtin(K, "myki", "Transport", "Public Transport", priority=85),
    _builtin(K, "parking", "Transport", "Parking", priority=75),
    # Subscriptions and entertainment
    _builtin(M, "NETFLIX", "Entertainment", "Streaming", priority=90),
    _builtin(M, "SPOTIFY", "Entertainment", "Streaming", priority=90),
    _builtin(M, "DISNEY+", "Entertainment", "Streaming", priority=90),
    _builtin(K, "cinema", "Entertainment", "Cinema"),
    _builtin(K, "hoyts", "Entertainment", "Cinema", priority=85),
    # Insurance and health
    _builtin(K, "health insurance", "Insurance", "Health", priority=85),
    _builtin(K, "medibank", "Insurance", "Health", priority=85),
    _builtin(K, "bupa", "Insurance", "Health", priority=85),
    _builtin(K, "insurance", "Insurance", "General"),
    _builtin(M, "NRMA", "Insurance", "Vehicle", priority=85),
    _builtin(M, "RACV", "Insurance", "Vehicle", priority=85),
    _builtin(M, "SUNCORP", "Insurance", "General"),
    _builtin(M, "ALLIANZ", "Insurance", "General"),
    _builtin(K, "pharmacy", "Health", "Pharmacy"),
    _builtin(K, "chemist", "Health", "Pharmacy"),
    _builtin(K, "dentist", "Health", "Dental"),
    _builtin(K, r"\bgym\b", "Health", "Fitness", is_regex=True),
    # Shopping
    _builtin(K, "kmart", "Shopping", "Department Store"),
    _builtin(K, "big w", "Shopping", "Department Store"),
    _builtin(K, "bunnings", "Shopping", "Hardware", priority=85),
    _builtin(K, "officeworks", "Shopping", "Office"),
    _builtin(K, "jb hi-fi", "Shopping", "Electronics", priority=85),
    # Finance, cash and fees
    _builtin(K, "loan repayment", "Finance", "Loan Repayment", priority=95),
    _builtin(K, "mortgage", "Finance", "Mortgage", priority=95),
    _builtin(K, "home loan", "Finance", "Mortgage", priority=95),
    _builtin(K, r"\batm\b", "Cash", "ATM Withdrawal", priority=90, is_regex=True),
    _builtin(K, "cash withdrawal", "Cash", "ATM Withdrawal", priority=90),
    _builtin(K, "account fee", "Fees", "Bank Fees", priority=90),
    _builtin(K, "international fee", "Fees", "Bank Fees", priority=90),
]

# Merchant category codes (ISO 18245) for common spending
MCC_CATEGORIES: dict[str, tuple[str, str]] = {
    "4121": ("Transport", "Rideshare"),
    "4111": ("Transport", "Public Transport"),
    "4814": ("Utilities", "Phone"),
    "4899": ("Entertainment", "Streaming"),
    "4900": ("Utilities", "Electricity"),
    "5200": ("Shopping", "Hardware"),
    "5311": ("Shopping", "Department Store"),
    "5411": ("Food & Dining", "Groceries"),
    "5541": ("Transport", "Fuel"),
    "5542": ("Transport", "Fuel"),
    "5812": ("Food & Dining", "Restaurant"),
    "5814": ("Food & Dining", "Fast Food"),
    "5912": ("Health", "Pharmacy"),
    "6011": ("Cash", "ATM Withdrawal"),
    "6300": ("Insurance", "General"),
    "7832": ("Entertainment", "Cinema"),
    "7997": ("Health", "Fitness"),
    "8011": ("Health", "Medical"),
    "8021": ("Health", "Dental"),
    "8220": ("Education", "University"),
}


class HeuristicClassifier:
    """Fallback classification from merchant category codes and a keyword table."""

    def __init__(self, rules: Optional[list[CategoryRule]] = None,
                 mcc_categories: Optional[dict[str, tuple[str, str]]] = None):
        self.rules = sort_rules(DEFAULT_RULES if rules is None else rules)
        self.mcc_categories = MCC_CATEGORIES if mcc_categories is None else mcc_categories

    def classify(self, txn: Categorisable) -> Optional[CategoryAssignment]:
        if txn.mcc and txn.mcc.strip() in self.mcc_categories:
            level1, level2 = self.mcc_categories[txn.mcc.strip()]
            return CategoryAssignment(
                level1, level2, None, category_type(level1, txn.direction), MCC_CONFIDENCE, method="mcc"
            )
        for rule in self.rules:
            if rule_matches(rule, txn):
                return CategoryAssignment(
                    rule.category_level1,
                    rule.category_level2,
                    rule.subcategory,
                    category_type(rule.category_level1, txn.direction),
                    KEYWORD_CONFIDENCE,
                    method="keyword",
                )
        return None


class CategoryRuleEngine:
    """Assigns categories from an ordered rule list with heuristic fallback."""

    def __init__(self, rules: list[CategoryRule], use_heuristics: bool = True,
                 heuristics: Optional[HeuristicClassifier] = None):
        """Initialize the engine.

        Args:
            rules: User and global rules; inactive ones are ignored
            use_heuristics: Whether to fall back to the built-in classifier
            heuristics: Classifier to use instead of the built-in one
        """
        self.rules = sort_rules(rules)
        self.heuristics = (heuristics or HeuristicClassifier()) if use_heuristics else None

    def categorise(self, txn: Categorisable) -> CategoryAssignment:
        """Categorise one transaction. The first matching rule wins."""
        for rule in self.rules:
            if rule_matches(rule, txn):
                link_type, link_id = _rule_link(rule)
                return CategoryAssignment(
                    rule.category_level1,
                    rule.category_level2,
                    rule.subcategory,
                    category_type(rule.category_level1, txn.direction),
                    RULE_CONFIDENCE,
                    matched_rule_id=rule.id,
                    link_type=link_type,
                    link_id=link_id,
                    method="rule",
                )

        if self.heuristics is not None:
            guess = self.heuristics.classify(txn)
            if guess is not None:
                return guess

        return uncategorised()

    def categorise_all(self, transactions: list[Categorisable]) -> CategorisationResult:
        result = CategorisationResult()
        for txn in transactions:
            assignment = self.categorise(txn)
            result.items.append(CategorisedTransaction(txn, assignment))
            if assignment.is_categorised:
                result.by_category[assignment.category_level1] += 1
        logger.debug(
            "Categorised %d of %d transactions", result.categorised, len(result.items)
        )
        return result
