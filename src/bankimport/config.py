"""Runtime configuration for the import pipeline.

Tuning values live in one frozen dataclass so the pipeline stages receive
them explicitly instead of reading the environment themselves. Environment
variables prefixed with ``BANKIMPORT_`` override the defaults; a local
``.env`` file is honoured.
"""

import os
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

from bankimport.domain.errors import ValidationError

load_dotenv()

ENV_PREFIX = "BANKIMPORT_"


@dataclass(frozen=True)
class ImportSettings:
    """Thresholds used by duplicate detection, recurring detection and linking.

    Attributes:
        fuzzy_threshold: Minimum description similarity (0-1) for a near
            match against history to count as a possible duplicate.
        fuzzy_date_window_days: Maximum date distance for a near match.
        min_occurrences: Transactions needed before a merchant group can be
            considered recurring.
        min_recurring_confidence: Groups scoring below this are ignored.
        price_change_floor: Smallest relative amount change treated as a new
            price rather than noise.
        history_months: Trailing window used for recurring detection.
        link_confidence_threshold: Minimum name similarity for auto-linking.
        link_amount_tolerance: Maximum relative amount difference for
            auto-linking.
        max_reported_errors: Row errors echoed back in an import result.
        processing_timeout_minutes: Age after which a PROCESSING import of the
            same file counts as abandoned and may be replaced.
    """

    fuzzy_threshold: float = 0.85
    fuzzy_date_window_days: int = 1
    min_occurrences: int = 3
    min_recurring_confidence: float = 0.5
    price_change_floor: Decimal = Decimal("0.05")
    history_months: int = 12
    link_confidence_threshold: float = 0.7
    link_amount_tolerance: Decimal = Decimal("0.10")
    max_reported_errors: int = 10
    processing_timeout_minutes: int = 30


def _coerce(name: str, raw: str, target: type):
    try:
        if target is int:
            return int(raw)
        if target is float:
            return float(raw)
        if target is Decimal:
            return Decimal(raw)
    except (ValueError, InvalidOperation):
        raise ValidationError(f"Invalid value for {ENV_PREFIX}{name.upper()}: '{raw}'")
    return raw


def load_settings(environ: Optional[dict[str, str]] = None) -> ImportSettings:
    """Create settings from defaults overridden by ``BANKIMPORT_*`` variables.

    Args:
        environ: Mapping to read instead of ``os.environ`` (used by tests)

    Returns:
        ImportSettings instance

    Raises:
        ValidationError: If a variable holds a value of the wrong type
    """
    environ = os.environ if environ is None else environ
    defaults = ImportSettings()
    values = {}
    for f in fields(ImportSettings):
        raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is None or raw.strip() == "":
            continue
        values[f.name] = _coerce(f.name, raw.strip(), type(getattr(defaults, f.name)))
    return ImportSettings(**values)
