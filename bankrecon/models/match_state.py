"""Tagged reconciliation state of a bank transaction.

A transaction is in exactly one of three states. Only ``Pending`` and
``Confirmed`` carry a linked invoice, so a confirmed transaction without a
link cannot be expressed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal


class InvoiceKind(str, enum.Enum):
    """Invoice side: outgoing = sales invoice, incoming = purchase invoice."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"


class TransactionStatus(str, enum.Enum):
    """Persisted reconciliation status."""

    CONFIRMED = "confirmed"
    PENDING = "pending"
    UNMATCHED = "unmatched"


class MatchStatus(str, enum.Enum):
    """Preview classification of a transaction's best candidate."""

    MATCHED = "matched"  # confirm-eligible, becomes confirmed on commit
    PARTIAL = "partial"  # needs review, becomes pending on commit
    MANUAL = "manual"  # linked by an operator in the preview
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class LinkedInvoice:
    """Invoice fields copied onto a transaction when a match is accepted."""

    invoice_id: str
    kind: InvoiceKind
    invoice_number: str
    amount: Decimal
    counterparty_name: str
    invoice_date: date | None
    confidence: int
    invoice_status: str | None = None
    manually_linked: bool = False


@dataclass(frozen=True)
class Unmatched:
    status = TransactionStatus.UNMATCHED


@dataclass(frozen=True)
class Pending:
    invoice: LinkedInvoice
    status = TransactionStatus.PENDING


@dataclass(frozen=True)
class Confirmed:
    invoice: LinkedInvoice
    confirmed_by: str
    confirmed_at: datetime
    status = TransactionStatus.CONFIRMED


MatchState = Unmatched | Pending | Confirmed
