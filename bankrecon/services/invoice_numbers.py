"""Invoice-number candidates in free-text payment descriptions."""

import re

# Patterns overlap on purpose; scoring decides which candidate matters.
INVOICE_NUMBER_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(\d{4}[-/]\d{3,4})\b"),
    re.compile(r"\b(INV[-_]?\d{3,})\b", re.IGNORECASE),
    re.compile(r"\b(FACT[-_]?\d{3,})\b", re.IGNORECASE),
    re.compile(r"\b(F[-_]?\d{4,})\b", re.IGNORECASE),
    re.compile(r"\b([A-Z]{2,4}\d{4,})\b"),
    re.compile(r"\b(\d{6,})\b"),
]

_SEPARATORS = re.compile(r"[-_\s]")


def extract_invoice_numbers(text: str) -> list[str]:
    """Return uppercased, de-duplicated invoice-number candidates in first-seen order."""
    found: dict[str, None] = {}
    for pattern in INVOICE_NUMBER_PATTERNS:
        for match in pattern.finditer(text):
            found.setdefault(match.group(1).upper(), None)
    return list(found)


def normalize_invoice_number(value: str) -> str:
    """Case-fold and drop hyphens, underscores and whitespace."""
    return _SEPARATORS.sub("", value.upper()).strip()
