"""Bank statement parsing: delimited exports and MT940 statements.

Both parsers emit ``TransactionDraft`` objects: typed transactions that do
not yet belong to an import or company. Row-level problems are collected and
reported alongside the drafts; only a statement that yields nothing usable
fails as a whole.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from bankrecon.logger import get_logger
from bankrecon.models import ImportFormat, TransactionDirection
from bankrecon.services.format_detection import (
    ColumnDetectionError,
    ColumnMapping,
    detect_columns,
    detect_delimiter,
    split_line,
)
from bankrecon.services.normalizers import parse_amount, parse_date

logger = get_logger(__name__)

MAX_REPORTED_ROW_ERRORS = 5

_MT940_NARRATIVE_TAG = ":86:"
_MT940_STATEMENT_LINE = re.compile(r":61:(\d{6})(.*)")
_MT940_AMOUNT = re.compile(r"(R?)([CD])(\d+),(\d*)")
_MT940_NEXT_TAG = re.compile(r"^:\d{2}[A-Z]?:", re.MULTILINE)


class StatementFormatError(ValueError):
    """The statement cannot be parsed at all; nothing from it is usable."""

    def __init__(self, message: str, row_errors: list[RowError] | None = None):
        self.row_errors = row_errors or []
        super().__init__(message)


@dataclass(frozen=True)
class RowError:
    """A skipped data row. ``row`` is 1-based and excludes the header line."""

    row: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row}: {self.message}"


@dataclass
class TransactionDraft:
    """Parsed transaction awaiting matching and commit."""

    temp_id: str
    txn_date: date
    amount: Decimal
    description: str
    beneficiary: str | None = None
    reference: str | None = None

    @property
    def direction(self) -> TransactionDirection:
        return TransactionDirection.from_amount(self.amount)


@dataclass
class ParseResult:
    format: ImportFormat
    transactions: list[TransactionDraft]
    row_errors: list[RowError] = field(default_factory=list)
    column_mapping: ColumnMapping | None = None


def _optional_cell(row: list[str], index: int | None) -> str | None:
    if index is None:
        return None
    value = row[index].strip()
    return value or None


def parse_delimited_rows(rows: list[list[str]], mapping: ColumnMapping) -> tuple[list[TransactionDraft], list[RowError]]:
    """Convert data rows to drafts, skipping rows that cannot be parsed.

    Raises:
        StatementFormatError: when no row parses and at least one failed.
    """
    drafts: list[TransactionDraft] = []
    errors: list[RowError] = []
    required_width = mapping.max_index + 1

    for index, row in enumerate(rows):
        row_number = index + 1
        if len(row) < required_width:
            errors.append(
                RowError(row_number, f"expected at least {required_width} columns, found {len(row)}")
            )
            continue

        date_text = row[mapping.date]
        amount_text = row[mapping.amount]
        if not date_text.strip() or not amount_text.strip():
            errors.append(RowError(row_number, "date or amount is empty"))
            continue

        try:
            txn_date = parse_date(date_text)
            amount = parse_amount(amount_text)
        except ValueError as exc:
            errors.append(RowError(row_number, str(exc)))
            continue

        drafts.append(
            TransactionDraft(
                temp_id=f"csv-{index}",
                txn_date=txn_date,
                amount=amount,
                description=row[mapping.description].strip(),
                beneficiary=_optional_cell(row, mapping.beneficiary),
                reference=_optional_cell(row, mapping.reference),
            )
        )

    if not drafts and errors:
        details = "\n".join(str(error) for error in errors[:MAX_REPORTED_ROW_ERRORS])
        raise StatementFormatError(f"No valid transactions found:\n{details}", row_errors=errors)

    if errors:
        logger.warning(
            "Skipped unparseable statement rows",
            skipped_rows=len(errors),
            parsed_rows=len(drafts),
            first_errors=[str(error) for error in errors[:MAX_REPORTED_ROW_ERRORS]],
        )

    return drafts, errors


def parse_delimited(raw_text: str) -> ParseResult:
    """Parse a delimited export whose first line is the header."""
    lines = [line for line in raw_text.strip().splitlines() if line.strip()]
    if not lines:
        raise StatementFormatError("Statement is empty")

    delimiter = detect_delimiter(lines[0])
    headers = split_line(lines[0], delimiter)
    try:
        mapping = detect_columns(headers)
    except ColumnDetectionError as exc:
        raise StatementFormatError(str(exc)) from exc

    rows = [split_line(line, delimiter) for line in lines[1:]]
    drafts, errors = parse_delimited_rows(rows, mapping)
    return ParseResult(
        format=ImportFormat.CSV,
        transactions=drafts,
        row_errors=errors,
        column_mapping=mapping,
    )


def _narrative(segment: str) -> str:
    start = segment.find(_MT940_NARRATIVE_TAG)
    if start == -1:
        return ""
    text = segment[start + len(_MT940_NARRATIVE_TAG) :]
    next_tag = _MT940_NEXT_TAG.search(text)
    if next_tag:
        text = text[: next_tag.start()]
    return " ".join(part.strip() for part in text.splitlines() if part.strip())


def parse_mt940(raw_text: str) -> ParseResult:
    """Parse an MT940 statement.

    Each ``:61:`` statement line is paired with the ``:86:`` narrative that
    follows it. The C/D indicator sets the sign and an R prefix (RC, RD)
    flips it. Blocks without a usable date or amount (headers, balances) are
    skipped, so a statement without movements parses to no transactions.
    """
    if not raw_text.strip():
        raise StatementFormatError("Statement is empty")

    segments = raw_text.split(":61:")
    drafts: list[TransactionDraft] = []
    skipped = 0

    for index, body in enumerate(segments[1:], start=1):
        segment = f":61:{body}"
        line_match = _MT940_STATEMENT_LINE.match(segment)
        amount_match = _MT940_AMOUNT.search(line_match.group(2)) if line_match else None
        if not line_match or not amount_match:
            skipped += 1
            continue

        yymmdd = line_match.group(1)
        try:
            txn_date = date(2000 + int(yymmdd[:2]), int(yymmdd[2:4]), int(yymmdd[4:6]))
        except ValueError:
            skipped += 1
            continue

        reversal, indicator, whole, fraction = amount_match.groups()
        amount = Decimal(f"{whole}.{fraction or '0'}")
        # RC reverses a credit, RD reverses a debit
        if (indicator == "D") != bool(reversal):
            amount = -amount

        drafts.append(
            TransactionDraft(
                temp_id=f"mt940-{index}",
                txn_date=txn_date,
                amount=amount,
                description=_narrative(segment),
            )
        )

    if skipped:
        logger.debug("Skipped MT940 blocks without date or amount", skipped_blocks=skipped)

    return ParseResult(format=ImportFormat.MT940, transactions=drafts)


def parse_statement(raw_text: str, statement_format: ImportFormat) -> ParseResult:
    """Parse raw statement text in the requested format."""
    if statement_format == ImportFormat.MT940:
        return parse_mt940(raw_text)
    return parse_delimited(raw_text)
