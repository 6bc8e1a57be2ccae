"""Date parsing utilities."""

import re
from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser

# Bank style format hints ("DD/MM/YYYY") mapped to strptime directives.
_TOKENS = [
    ("YYYY", "%Y"),
    ("MMMM", "%B"),
    ("MMM", "%b"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("D", "%d"),
    ("M", "%m"),
]

_KNOWN_PATTERNS = [
    (re.compile(r"^\d{4}-\d{2}-\d{2}$"), "%Y-%m-%d"),
    (re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"), "%d/%m/%Y"),
    (re.compile(r"^\d{1,2}/\d{1,2}/\d{2}$"), "%d/%m/%y"),
    (re.compile(r"^\d{1,2}\s+[A-Za-z]{3}\s+\d{4}$"), "%d %b %Y"),
    (re.compile(r"^\d{1,2}\s+[A-Za-z]{3}\s+\d{2}$"), "%d %b %y"),
]


def to_strptime_format(date_format: str) -> str:
    """Convert a bank style format hint into a strptime format string.

    Args:
        date_format: Hint such as "DD/MM/YYYY", "YYYY-MM-DD" or "DD MMM YY".
            Strings that already contain "%" directives are returned as is.

    Returns:
        strptime format string
    """
    if "%" in date_format:
        return date_format

    result = []
    i = 0
    while i < len(date_format):
        for token, directive in _TOKENS:
            if date_format.startswith(token, i):
                result.append(directive)
                i += len(token)
                break
        else:
            result.append(date_format[i])
            i += 1
    return "".join(result)


def _is_year_first(date_format: Optional[str]) -> bool:
    if not date_format:
        return False
    return date_format.strip().upper().startswith("Y") or date_format.startswith("%Y")


def parse_date(date_str: str, date_format: Optional[str] = None) -> date:
    """Parse a date cell from a statement export.

    The format hint is tried first, then a few common bank layouts, then a
    lenient dateutil parse (day first unless the hint is year first).

    Args:
        date_str: Date string in various formats
        date_format: Optional format hint ("DD/MM/YYYY", "%d/%m/%Y", ...)

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    if date_str is None or not str(date_str).strip():
        raise ValueError("Empty date string")

    date_str = " ".join(str(date_str).split())

    if date_format:
        try:
            return datetime.strptime(date_str, to_strptime_format(date_format)).date()
        except ValueError:
            pass

    for pattern, fmt in _KNOWN_PATTERNS:
        if pattern.match(date_str):
            try:
                return datetime.strptime(date_str, fmt).date()
            except ValueError:
                break

    try:
        dt = date_parser.parse(date_str, dayfirst=not _is_year_first(date_format))
        return dt.date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")
