"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
import re

_CURRENCY = re.compile(r"(AUD|USD|NZD|EUR|GBP|[$€£¥])", re.IGNORECASE)
_CREDIT_DEBIT_SUFFIX = re.compile(r"\s*(CR|DR)$", re.IGNORECASE)

TWO_PLACES = Decimal("0.01")


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string from a bank export into a signed Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45", "AUD 123.45"
    - "-123.45", "-$123.45"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)
    - "123.45 DR" / "123.45 CR" (debit negative, credit positive)

    Args:
        amount_str: Amount string

    Returns:
        Decimal amount

    Raises:
        ValueError: If amount string cannot be parsed
    """
    if amount_str is None or not str(amount_str).strip():
        raise ValueError("Empty amount string")

    amount_str = str(amount_str).strip()

    is_negative = False
    suffix = _CREDIT_DEBIT_SUFFIX.search(amount_str)
    if suffix:
        is_negative = suffix.group(1).upper() == "DR"
        amount_str = amount_str[: suffix.start()].strip()

    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    amount_str = _CURRENCY.sub("", amount_str)
    amount_str = amount_str.replace(",", "").replace(" ", "").strip()

    # "-$5.00" leaves "-5.00"; "$-5.00" leaves "-5.00" as well
    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{amount_str}'")

    if is_negative:
        amount = -abs(amount)
    return amount


def parse_optional_amount(amount_str: str | None) -> Decimal | None:
    """Parse an amount, returning None for blank or malformed cells."""
    if amount_str is None or not str(amount_str).strip():
        return None
    try:
        return parse_amount(amount_str)
    except ValueError:
        return None


def quantize(amount: Decimal) -> Decimal:
    """Round an amount to cents."""
    return amount.quantize(TWO_PLACES)
