"""Conversion of raw parsed rows into canonical transactions."""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from bankimport.domain.entities import Direction
from bankimport.domain.parsing import RawRow
from bankimport.utils.amount_parser import quantize

MAX_MERCHANT_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_MERCHANT_RAW_LENGTH = 200
FINGERPRINT_DESCRIPTION_CHARS = 50

_PROCESSOR_PREFIX = re.compile(
    r"^(?:VISA|MASTERCARD|EFTPOS|DIRECT DEBIT|DEBIT|CREDIT|BPAY|OSKO|PAY/ID)\b\s*",
    re.IGNORECASE,
)
_ACTION_PREFIX = re.compile(
    r"^(?:PURCHASE|PAYMENT|WITHDRAWAL|DEPOSIT|TRANSFER)\b\s*", re.IGNORECASE
)
_WALLET_PREFIX = re.compile(r"^(?:SQ|PAYPAL)\s*\*\s*", re.IGNORECASE)
_CARD_FRAGMENT = re.compile(r"\b(?:CARD|XX+)\s*\d{4}\b", re.IGNORECASE)
_DATE_FRAGMENT = re.compile(r"\b\d{2}/\d{2}(?:/\d{2,4})?\b")
_TRAILING_REFERENCE = re.compile(r"\s+\d{4,}$")
_TRAILING_STATE = re.compile(r"\s+(?:NSW|VIC|QLD|SA|WA|TAS|NT|ACT)$", re.IGNORECASE)
_TRAILING_COUNTRY = re.compile(r"\s*\bAUS?$", re.IGNORECASE)
_DESCRIPTION_JUNK = re.compile(r"[^\w\s\-./&']")
_WHITESPACE = re.compile(r"\s+")

# Brand aliases, matched as whole words against the cleaned text
MERCHANT_ALIASES: dict[str, str] = {
    "woolworths": "WOOLWORTHS",
    "woolies": "WOOLWORTHS",
    "coles": "COLES",
    "aldi": "ALDI",
    "costco": "COSTCO",
    "mcdonalds": "MCDONALD'S",
    "mcdonald's": "MCDONALD'S",
    "kfc": "KFC",
    "hungry jacks": "HUNGRY JACKS",
    "dominos": "DOMINO'S",
    "starbucks": "STARBUCKS",
    "caltex": "CALTEX",
    "ampol": "AMPOL",
    "7-eleven": "7-ELEVEN",
    "7eleven": "7-ELEVEN",
    "agl": "AGL",
    "origin energy": "ORIGIN ENERGY",
    "energy australia": "ENERGY AUSTRALIA",
    "telstra": "TELSTRA",
    "optus": "OPTUS",
    "vodafone": "VODAFONE",
    "netflix": "NETFLIX",
    "spotify": "SPOTIFY",
    "disney plus": "DISNEY+",
    "disneyplus": "DISNEY+",
    "uber eats": "UBER EATS",
    "uber": "UBER",
    "nrma": "NRMA",
    "racv": "RACV",
    "suncorp": "SUNCORP",
    "allianz": "ALLIANZ",
    "commbank": "COMMONWEALTH BANK",
}

_ALIAS_PATTERNS = [
    (re.compile(rf"(?<![\w]){re.escape(alias)}(?![\w])", re.IGNORECASE), name)
    for alias, name in MERCHANT_ALIASES.items()
]


@dataclass(frozen=True)
class NormalisedTransaction:
    """Canonical form of one statement row, not yet persisted.

    ``amount`` is always a non-negative magnitude; ``direction`` carries the
    sign.
    """

    row_number: int
    date: date
    amount: Decimal
    direction: Direction
    description: str
    raw_description: str
    merchant_raw: str
    merchant_standardised: str
    fingerprint: str
    source_file_id: Optional[int] = None
    account_id: Optional[int] = None
    balance: Optional[Decimal] = None
    reference: Optional[str] = None
    mcc: Optional[str] = None


@dataclass(frozen=True)
class NormalisationError:
    row_number: int
    field: str
    message: str
    raw_value: Optional[str] = None


@dataclass
class NormalisationResult:
    transactions: list[NormalisedTransaction] = field(default_factory=list)
    errors: list[NormalisationError] = field(default_factory=list)
    total: int = 0

    @property
    def normalised(self) -> int:
        return len(self.transactions)

    @property
    def failed(self) -> int:
        return len(self.errors)


def clean_description(description: Optional[str]) -> str:
    """Strip special characters and collapse whitespace."""
    if not description:
        return ""
    cleaned = _DESCRIPTION_JUNK.sub(" ", description)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:MAX_DESCRIPTION_LENGTH]


def standardise_merchant(description: Optional[str]) -> str:
    """Reduce a raw description to a stable merchant name.

    Payment processor boilerplate, card and date fragments, trailing
    reference numbers and location suffixes are removed, known brand
    aliases are collapsed, and the result is uppercased.

    Args:
        description: Raw statement description

    Returns:
        Uppercase merchant name, at most 100 characters; "UNKNOWN" when the
        description is empty
    """
    if not description or not description.strip():
        return "UNKNOWN"

    text = _WHITESPACE.sub(" ", description).strip()
    # Prefixes can stack ("VISA PURCHASE SQ *CAFE")
    previous = None
    while previous != text:
        previous = text
        text = _PROCESSOR_PREFIX.sub("", text)
        text = _ACTION_PREFIX.sub("", text)
        text = _WALLET_PREFIX.sub("", text)

    text = _CARD_FRAGMENT.sub(" ", text)
    text = _DATE_FRAGMENT.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()

    previous = None
    while previous != text:
        previous = text
        text = _TRAILING_REFERENCE.sub("", text)
        text = _TRAILING_COUNTRY.sub("", text).strip()
        text = _TRAILING_STATE.sub("", text).strip()

    for pattern, name in _ALIAS_PATTERNS:
        if pattern.search(text):
            return name

    merchant = _WHITESPACE.sub(" ", text).strip().upper()
    if not merchant:
        merchant = clean_description(description).upper() or "UNKNOWN"
    return merchant[:MAX_MERCHANT_LENGTH]


def fingerprint(txn_date: date, amount: Decimal, description: str) -> str:
    """Content hash used as the primary duplicate key.

    SHA-256 of ``YYYY-MM-DD|amount|description`` where the amount is the
    two decimal magnitude and the description is lowercased, stripped of
    all whitespace and then cut to its first 50 characters.
    """
    amount_str = f"{quantize(abs(Decimal(amount))):.2f}"
    desc = "".join(description.lower().split())[:FINGERPRINT_DESCRIPTION_CHARS]
    payload = f"{txn_date.isoformat()}|{amount_str}|{desc}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def row_fingerprint(row: RawRow, row_index: int) -> str:
    """Fingerprint of a raw row, or a placeholder for incomplete rows.

    The ``invalid-{row_index}`` placeholder is never a 64 character hex
    digest, so it cannot equal a real fingerprint.
    """
    if row.date is None or row.amount is None or not row.description:
        return f"invalid-{row_index}"
    return fingerprint(row.date, row.amount, row.description)


def _normalise_row(
    row: RawRow, source_file_id: Optional[int], account_id: Optional[int]
) -> tuple[Optional[NormalisedTransaction], Optional[NormalisationError]]:
    if row.date is None:
        return None, NormalisationError(row.row_number, "date", "Missing or invalid date")
    if row.amount is None:
        return None, NormalisationError(row.row_number, "amount", "Missing or invalid amount")
    if not row.description:
        return None, NormalisationError(row.row_number, "description", "Missing description")

    if row.direction is not None:
        direction = row.direction
    else:
        direction = Direction.IN if row.amount >= 0 else Direction.OUT
    amount = quantize(abs(row.amount))

    txn = NormalisedTransaction(
        row_number=row.row_number,
        date=row.date,
        amount=amount,
        direction=direction,
        description=clean_description(row.description),
        raw_description=row.description,
        merchant_raw=row.description[:MAX_MERCHANT_RAW_LENGTH],
        merchant_standardised=standardise_merchant(row.description),
        fingerprint=fingerprint(row.date, amount, row.description),
        source_file_id=source_file_id,
        account_id=account_id,
        balance=row.balance,
        reference=row.reference,
        mcc=row.mcc,
    )
    return txn, None


def normalise_rows(
    rows: list[RawRow],
    source_file_id: Optional[int] = None,
    account_id: Optional[int] = None,
) -> NormalisationResult:
    """Normalise parsed rows, keeping input order.

    Incomplete rows produce a NormalisationError and no transaction.
    """
    result = NormalisationResult(total=len(rows))
    for row in rows:
        txn, error = _normalise_row(row, source_file_id, account_id)
        if txn is not None:
            result.transactions.append(txn)
        if error is not None:
            result.errors.append(error)
    return result
