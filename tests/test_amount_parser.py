"""Tests for amount parsing."""

import pytest
from decimal import Decimal

from bankimport.utils.amount_parser import parse_amount, parse_optional_amount, quantize


@pytest.mark.parametrize(
    "text,expected",
    [
        ("123.45", Decimal("123.45")),
        ("-45.00", Decimal("-45.00")),
        ("1,234.56", Decimal("1234.56")),
        ("$99.95", Decimal("99.95")),
        ("-$5.00", Decimal("-5.00")),
        ("$-5.00", Decimal("-5.00")),
        ("AUD 12.50", Decimal("12.50")),
        ("(45.00)", Decimal("-45.00")),
        ("45.00 DR", Decimal("-45.00")),
        ("45.00 CR", Decimal("45.00")),
        ("  7  ", Decimal("7")),
    ],
)
def test_parse_amount_formats(text, expected):
    """Test the amount formats found in bank exports."""
    assert parse_amount(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "abc", "12.3.4", "NaN"])
def test_parse_amount_invalid(text):
    """Test that unparseable amounts raise ValueError."""
    with pytest.raises(ValueError):
        parse_amount(text)


def test_parse_optional_amount():
    """Test that blank or malformed cells become None."""
    assert parse_optional_amount(None) is None
    assert parse_optional_amount("") is None
    assert parse_optional_amount("n/a") is None
    assert parse_optional_amount("1,000.00") == Decimal("1000.00")


def test_quantize_rounds_to_cents():
    assert quantize(Decimal("15.999")) == Decimal("16.00")
    assert quantize(Decimal("2")) == Decimal("2.00")
