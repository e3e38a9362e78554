"""SQLAlchemy models package."""

from bankrecon.models.bank_import import (
    BankImport,
    BankTransaction,
    ImportFormat,
    MatchedPayment,
    TransactionDirection,
)
from bankrecon.models.match_state import (
    Confirmed,
    InvoiceKind,
    LinkedInvoice,
    MatchState,
    MatchStatus,
    Pending,
    TransactionStatus,
    Unmatched,
)

__all__ = [
    "BankImport",
    "BankTransaction",
    "Confirmed",
    "ImportFormat",
    "InvoiceKind",
    "LinkedInvoice",
    "MatchState",
    "MatchStatus",
    "MatchedPayment",
    "Pending",
    "TransactionDirection",
    "TransactionStatus",
    "Unmatched",
]
