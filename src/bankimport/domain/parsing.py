"""Statement file parsing.

Turns the text of an uploaded statement into raw rows tagged with their
source row number. Rows missing a date, amount or description are kept
(they are part of the audit trail) and also reported as row errors;
parsing always continues with the next row.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from pathlib import PurePath
from typing import Any, Optional

from bankimport.domain.entities import Direction, ImportFormat
from bankimport.domain.errors import (
    FormatNotImplementedError,
    ValidationError,
    unsupported_format,
)
from bankimport.utils.amount_parser import parse_amount
from bankimport.utils.date_parser import parse_date

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "DD/MM/YYYY"

_EXTENSIONS = {
    "csv": ImportFormat.CSV,
    "ofx": ImportFormat.OFX,
    "qfx": ImportFormat.OFX,
    "qif": ImportFormat.QIF,
}

_DIRECTION_VALUES = {
    "in": Direction.IN,
    "cr": Direction.IN,
    "credit": Direction.IN,
    "deposit": Direction.IN,
    "out": Direction.OUT,
    "dr": Direction.OUT,
    "debit": Direction.OUT,
    "withdrawal": Direction.OUT,
}


@dataclass(frozen=True)
class ColumnMapping:
    """Header name to use for each target field. Unset fields are detected."""

    date: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[str] = None
    credit: Optional[str] = None
    debit: Optional[str] = None
    direction: Optional[str] = None
    balance: Optional[str] = None
    reference: Optional[str] = None
    mcc: Optional[str] = None

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, mapping: dict[str, str]) -> "ColumnMapping":
        """Build a mapping from ``{field: header}``, rejecting unknown fields."""
        valid = set(cls.field_names())
        unknown = sorted(set(mapping) - valid)
        if unknown:
            raise ValidationError(
                f"Invalid column field(s) {', '.join(unknown)}. "
                f"Must be one of: {', '.join(sorted(valid))}"
            )
        return cls(**{k: v for k, v in mapping.items() if v})

    def as_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in self.field_names() if getattr(self, name)}

    def merged_over(self, other: "ColumnMapping") -> "ColumnMapping":
        """Return this mapping with gaps filled from ``other``."""
        values = other.as_dict()
        values.update(self.as_dict())
        return ColumnMapping(**values)


@dataclass(frozen=True)
class ParseOptions:
    """CSV parsing configuration.

    Attributes:
        columns: Explicit header names per target field
        date_format: Date format hint such as "DD/MM/YYYY"
        delimiter: Field delimiter; sniffed from the content when None
        has_header: Whether the first (non skipped) record is a header
        skip_rows: Leading records to ignore before the header
    """

    columns: ColumnMapping = field(default_factory=ColumnMapping)
    date_format: Optional[str] = None
    delimiter: Optional[str] = None
    has_header: bool = True
    skip_rows: int = 0

    def __post_init__(self):
        if self.delimiter is not None and len(self.delimiter) != 1:
            raise ValidationError("Delimiter must be a single character")
        if self.skip_rows < 0:
            raise ValidationError("skip_rows cannot be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParseOptions":
        """Build options from a plain dict (e.g. a decoded JSON form field)."""
        if not isinstance(data, dict):
            raise ValidationError("Parse options must be an object")
        allowed = {"columns", "date_format", "delimiter", "has_header", "skip_rows"}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValidationError(f"Unknown parse option(s): {', '.join(unknown)}")
        columns = data.get("columns") or {}
        if not isinstance(columns, dict):
            raise ValidationError("'columns' must map field names to header names")
        try:
            skip_rows = int(data.get("skip_rows", 0))
        except (TypeError, ValueError):
            raise ValidationError("'skip_rows' must be an integer")
        return cls(
            columns=ColumnMapping.from_dict(columns),
            date_format=data.get("date_format"),
            delimiter=data.get("delimiter"),
            has_header=bool(data.get("has_header", True)),
            skip_rows=skip_rows,
        )

    @classmethod
    def from_json(cls, text: Optional[str]) -> Optional["ParseOptions"]:
        """Decode options sent as a JSON string; None or blank means defaults."""
        if text is None or not text.strip():
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Malformed parse options JSON: {e}")
        return cls.from_dict(data)


@dataclass(frozen=True)
class RawRow:
    """One parsed data row.

    ``amount`` keeps the source sign unless ``direction`` was given by the
    file (direction column, or separate credit/debit columns), in which case
    it is already a magnitude.
    """

    row_number: int
    raw_data: dict[str, str]
    date: Optional[date] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    direction: Optional[Direction] = None
    balance: Optional[Decimal] = None
    reference: Optional[str] = None
    mcc: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.date is not None and self.amount is not None and bool(self.description)


@dataclass(frozen=True)
class RowError:
    """Reason a row could not provide the minimum required fields."""

    row_number: int
    field: str
    message: str
    raw_value: Optional[str] = None


@dataclass
class ParsedFile:
    """Result of parsing one statement file."""

    format: ImportFormat
    rows: list[RawRow]
    errors: list[RowError]
    total_rows: int
    headers: list[str] = field(default_factory=list)
    columns: ColumnMapping = field(default_factory=ColumnMapping)
    detected_bank: Optional[str] = None
    date_format: Optional[str] = None
    closing_balance: Optional[Decimal] = None
    opening_balance: Optional[Decimal] = None

    @property
    def valid_rows(self) -> list[RawRow]:
        return [row for row in self.rows if row.is_complete]


@dataclass(frozen=True)
class BankLayout:
    """Known header layout of a bank's CSV export."""

    name: str
    patterns: tuple[str, ...]
    columns: ColumnMapping
    date_format: str


BANK_LAYOUTS: list[BankLayout] = [
    BankLayout(
        "Commonwealth Bank",
        ("date", "description", "debit", "credit", "balance"),
        ColumnMapping(date="Date", description="Description", debit="Debit", credit="Credit", balance="Balance"),
        "DD/MM/YYYY",
    ),
    BankLayout(
        "ANZ",
        ("date", "details", "amount", "type"),
        ColumnMapping(date="Date", description="Details", amount="Amount"),
        "DD/MM/YYYY",
    ),
    BankLayout(
        "Westpac",
        ("date", "narrative", "debit amount", "credit amount"),
        ColumnMapping(date="Date", description="Narrative", debit="Debit Amount", credit="Credit Amount"),
        "DD/MM/YYYY",
    ),
    BankLayout(
        "NAB",
        ("date", "transaction details", "debits", "credits"),
        ColumnMapping(date="Date", description="Transaction Details", debit="Debits", credit="Credits"),
        "DD MMM YY",
    ),
    BankLayout(
        "ING",
        ("date", "description", "credit", "debit"),
        ColumnMapping(date="Date", description="Description", credit="Credit", debit="Debit"),
        "DD/MM/YYYY",
    ),
    BankLayout(
        "Up Bank",
        ("date", "time", "description", "amount"),
        ColumnMapping(date="Date", description="Description", amount="Amount"),
        "YYYY-MM-DD",
    ),
    BankLayout(
        "Generic",
        ("date", "description", "amount"),
        ColumnMapping(date="date", description="description", amount="amount"),
        "DD/MM/YYYY",
    ),
]


def detect_format(filename: str) -> ImportFormat:
    """Determine the declared import format from a file name's extension.

    Raises:
        ValidationError: If the extension is not a supported statement format
    """
    extension = PurePath(filename or "").suffix.lower().lstrip(".")
    fmt = _EXTENSIONS.get(extension)
    if fmt is None:
        raise ValidationError(unsupported_format(extension))
    return fmt


def decode_content(data: bytes | str) -> str:
    """Decode uploaded bytes to text (UTF-8 with optional BOM, else latin-1)."""
    if isinstance(data, str):
        return data[1:] if data.startswith("\ufeff") else data
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def detect_bank_layout(headers: list[str]) -> Optional[BankLayout]:
    """Match headers against known bank layouts.

    A layout qualifies when at least 60% of its patterns appear in the
    headers; the best scoring layout wins and ties go to the earlier one.
    """
    normalized = [h.lower().strip() for h in headers if h and h.strip()]
    if not normalized:
        return None
    best = None
    best_score = 0.0
    for layout in BANK_LAYOUTS:
        matches = sum(1 for p in layout.patterns if any(p in h for h in normalized))
        required = -(-len(layout.patterns) * 6 // 10)  # ceil(60%)
        score = matches / len(layout.patterns)
        if matches >= required and score > best_score:
            best, best_score = layout, score
    return best


def find_column(headers: list[str], name: Optional[str]) -> int:
    """Find a column index by header name, case-insensitively.

    An exact match wins over a header that merely contains the name.
    Returns -1 when nothing matches.
    """
    if not name:
        return -1
    wanted = name.lower().strip()
    lowered = [h.lower().strip() for h in headers]
    if wanted in lowered:
        return lowered.index(wanted)
    for idx, header in enumerate(lowered):
        if header and wanted in header:
            return idx
    return -1


def _guess_columns(headers: list[str]) -> ColumnMapping:
    def first(*keywords: str, exclude: tuple[str, ...] = ()) -> Optional[str]:
        for header in headers:
            lowered = header.lower()
            if any(k in lowered for k in keywords) and not any(x in lowered for x in exclude):
                return header
        return None

    return ColumnMapping(
        date=first("date") or (headers[0] if headers else None),
        description=first("desc", "detail", "narrative", "memo", "payee")
        or (headers[1] if len(headers) > 1 else None),
        amount=first("amount", exclude=("debit", "credit")),
        credit=first("credit"),
        debit=first("debit"),
        balance=first("balance"),
        reference=first("reference", "ref"),
    )


def suggest_column_mappings(headers: list[str]) -> ParseOptions:
    """Suggest parse options for a header row.

    Uses a known bank layout when one matches and fills the layout's gaps
    (or everything, without a layout) from common header keywords.
    """
    guessed = _guess_columns(headers)
    layout = detect_bank_layout(headers)
    if layout is not None:
        return ParseOptions(columns=layout.columns.merged_over(guessed), date_format=layout.date_format)
    return ParseOptions(columns=guessed, date_format=DEFAULT_DATE_FORMAT)


def _sniff_delimiter(content: str) -> str:
    sample = content[:1024]
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
    except csv.Error:
        return ","


def _cell(record: list[str], index: int) -> Optional[str]:
    if index < 0 or index >= len(record):
        return None
    value = record[index].strip()
    return value or None


def _parse_direction(value: Optional[str]) -> Optional[Direction]:
    if not value:
        return None
    return _DIRECTION_VALUES.get(value.strip().lower())


def parse_file(
    content: str, fmt: ImportFormat, options: Optional[ParseOptions] = None
) -> ParsedFile:
    """Parse statement text of a declared format.

    Raises:
        FormatNotImplementedError: For OFX and QIF, which are declared but
            have no parser
    """
    if fmt == ImportFormat.CSV:
        return parse_csv(content, options)
    raise FormatNotImplementedError(fmt.value)


def parse_csv(content: str, options: Optional[ParseOptions] = None) -> ParsedFile:
    """Parse CSV statement text into raw rows.

    Args:
        content: Decoded file text
        options: Optional parse options; missing column names are resolved
            from known bank layouts or header keywords

    Returns:
        ParsedFile with every data row, row errors in input order and file
        level metadata
    """
    options = options or ParseOptions()
    delimiter = options.delimiter or _sniff_delimiter(content)
    records = list(csv.reader(io.StringIO(content), delimiter=delimiter))

    # (1-based record number, cells) for every non-blank record
    numbered = [
        (number, record)
        for number, record in enumerate(records, start=1)
        if number > options.skip_rows and any(cell.strip() for cell in record)
    ]

    headers: list[str] = []
    if options.has_header and numbered:
        headers = [h.strip() for h in numbered[0][1]]
        numbered = numbered[1:]

    layout = detect_bank_layout(headers) if headers else None
    if headers:
        fallback = suggest_column_mappings(headers).columns
        columns = options.columns.merged_over(fallback)
        index = {name: find_column(headers, getattr(columns, name)) for name in ColumnMapping.field_names()}
    else:
        columns = options.columns
        index = {name: -1 for name in ColumnMapping.field_names()}
        index.update({"date": 0, "description": 1, "amount": 2})
        # Without a header, explicit mappings may give 1-based column numbers
        for name, value in columns.as_dict().items():
            if value.isdigit():
                index[name] = int(value) - 1

    date_format = options.date_format or (layout.date_format if layout else DEFAULT_DATE_FORMAT)

    rows: list[RawRow] = []
    errors: list[RowError] = []
    for row_number, record in numbered:
        row, problems = _parse_record(row_number, record, headers, index, date_format)
        rows.append(row)
        if problems:
            field_name = problems[0][0]
            message = "; ".join(p[1] for p in problems)
            errors.append(RowError(row_number, field_name, message, problems[0][2]))

    opening, closing = _boundary_balances(rows)

    logger.debug(
        "Parsed %d rows (%d errors), bank=%s, delimiter=%r",
        len(rows),
        len(errors),
        layout.name if layout else None,
        delimiter,
    )

    return ParsedFile(
        format=ImportFormat.CSV,
        rows=rows,
        errors=errors,
        total_rows=len(rows),
        headers=headers,
        columns=columns,
        detected_bank=layout.name if layout else None,
        date_format=date_format,
        closing_balance=closing,
        opening_balance=opening,
    )


def _parse_record(
    row_number: int,
    record: list[str],
    headers: list[str],
    index: dict[str, int],
    date_format: str,
) -> tuple[RawRow, list[tuple[str, str, Optional[str]]]]:
    """Extract fields from one record, collecting problems instead of raising."""
    problems: list[tuple[str, str, Optional[str]]] = []

    if headers:
        raw_data = {header: (record[i] if i < len(record) else "") for i, header in enumerate(headers)}
    else:
        raw_data = {f"column_{i + 1}": value for i, value in enumerate(record)}

    txn_date = None
    date_str = _cell(record, index["date"])
    if date_str is None:
        problems.append(("date", "Missing date", None))
    else:
        try:
            txn_date = parse_date(date_str, date_format)
        except ValueError:
            problems.append(("date", f"Invalid date '{date_str}'", date_str))

    description = _cell(record, index["description"])
    if description is None:
        problems.append(("description", "Missing description", None))

    amount, direction, amount_problem = _resolve_amount(record, index)
    if amount_problem:
        problems.append(amount_problem)

    balance = None
    balance_str = _cell(record, index["balance"])
    if balance_str is not None:
        try:
            balance = parse_amount(balance_str)
        except ValueError:
            balance = None

    row = RawRow(
        row_number=row_number,
        raw_data=raw_data,
        date=txn_date,
        description=description,
        amount=amount,
        direction=direction,
        balance=balance,
        reference=_cell(record, index["reference"]),
        mcc=_cell(record, index["mcc"]),
    )
    return row, problems


def _resolve_amount(
    record: list[str], index: dict[str, int]
) -> tuple[Optional[Decimal], Optional[Direction], Optional[tuple[str, str, Optional[str]]]]:
    explicit_direction = _parse_direction(_cell(record, index["direction"]))

    if index["amount"] >= 0:
        amount_str = _cell(record, index["amount"])
        if amount_str is None:
            return None, None, ("amount", "Missing amount", None)
        try:
            amount = parse_amount(amount_str)
        except ValueError:
            return None, None, ("amount", f"Invalid amount '{amount_str}'", amount_str)
        if explicit_direction is not None:
            return abs(amount), explicit_direction, None
        return amount, None, None

    if index["credit"] >= 0 or index["debit"] >= 0:
        credit_str = _cell(record, index["credit"])
        debit_str = _cell(record, index["debit"])
        try:
            credit = parse_amount(credit_str) if credit_str is not None else None
            debit = parse_amount(debit_str) if debit_str is not None else None
        except ValueError:
            bad = credit_str if credit_str is not None else debit_str
            return None, None, ("amount", f"Invalid amount '{bad}'", bad)

        if credit is not None and credit > 0:
            return credit, Direction.IN, None
        if debit is not None and debit != 0:
            return abs(debit), Direction.OUT, None
        if credit is not None:
            return abs(credit), (Direction.IN if credit >= 0 else Direction.OUT), None
        if debit is not None:
            return abs(debit), Direction.OUT, None
        return None, None, ("amount", "Missing both debit and credit values", None)

    return None, None, ("amount", "Missing amount", None)


def _boundary_balances(rows: list[RawRow]) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """Balance of the earliest and latest dated rows (ties: file order)."""
    dated = [(row.date, position, row.balance) for position, row in enumerate(rows) if row.date and row.balance is not None]
    if not dated:
        return None, None
    earliest = min(dated, key=lambda item: (item[0], item[1]))
    latest = max(dated, key=lambda item: (item[0], item[1]))
    return earliest[2], latest[2]
