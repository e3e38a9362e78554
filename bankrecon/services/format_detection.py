"""Delimiter inference and header-to-column role detection for delimited exports."""

from __future__ import annotations

from dataclasses import dataclass

# Ordered per role: the first header containing any pattern wins.
COLUMN_PATTERNS: dict[str, tuple[str, ...]] = {
    "date": ("datum", "date", "boekdatum", "valutadatum", "transaction date"),
    "amount": ("bedrag", "amount", "totaal", "total", "saldo mutatie"),
    "description": ("omschrijving", "description", "mededelingen", "remarks"),
    "beneficiary": ("begunstigde", "beneficiary", "naam", "name", "tegenpartij"),
    "reference": ("referentie", "reference", "kenmerk", "transaction id"),
}

REQUIRED_ROLES = ("date", "amount", "description")

_QUOTES = "\"'"


class ColumnDetectionError(ValueError):
    """Raised when mandatory column roles cannot be resolved from the header."""

    def __init__(self, missing: list[str], headers: list[str]):
        self.missing = missing
        self.headers = headers
        super().__init__(
            f"Could not detect {', '.join(missing)} column(s) in header: {', '.join(headers)}"
        )


@dataclass(frozen=True)
class ColumnMapping:
    """Zero-based column index per semantic role."""

    date: int
    amount: int
    description: int
    beneficiary: int | None = None
    reference: int | None = None

    @property
    def max_index(self) -> int:
        indexes = [self.date, self.amount, self.description, self.beneficiary, self.reference]
        return max(index for index in indexes if index is not None)


def strip_quotes(value: str) -> str:
    """Trim whitespace and a single layer of surrounding quotes."""
    value = value.strip()
    if value[:1] in _QUOTES:
        value = value[1:]
    if value[-1:] in _QUOTES:
        value = value[:-1]
    return value


def detect_delimiter(first_line: str) -> str:
    """Pick tab, semicolon, or comma from occurrence counts in the header line."""
    tabs = first_line.count("\t")
    semicolons = first_line.count(";")
    commas = first_line.count(",")
    if tabs > semicolons and tabs > commas:
        return "\t"
    if semicolons > commas:
        return ";"
    return ","


def split_line(line: str, delimiter: str) -> list[str]:
    return [strip_quotes(cell) for cell in line.split(delimiter)]


def find_column(headers: list[str], patterns: tuple[str, ...]) -> int | None:
    for index, header in enumerate(headers):
        lowered = header.lower()
        if any(pattern in lowered for pattern in patterns):
            return index
    return None


def detect_columns(headers: list[str]) -> ColumnMapping:
    """Map headers to roles; date, amount and description are mandatory."""
    found = {role: find_column(headers, patterns) for role, patterns in COLUMN_PATTERNS.items()}
    missing = [role for role in REQUIRED_ROLES if found[role] is None]
    if missing:
        raise ColumnDetectionError(missing, headers)
    return ColumnMapping(
        date=found["date"],
        amount=found["amount"],
        description=found["description"],
        beneficiary=found["beneficiary"],
        reference=found["reference"],
    )
