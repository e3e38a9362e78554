"""Bank import, transaction, and matched payment models."""

from __future__ import annotations

import enum
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from bankrecon.database import Base
from bankrecon.models.base import CompanyOwnedMixin, TimestampMixin, UUIDMixin
from bankrecon.models.match_state import (
    Confirmed,
    InvoiceKind,
    LinkedInvoice,
    MatchState,
    Pending,
    TransactionStatus,
    Unmatched,
)


class ImportFormat(str, enum.Enum):
    """Raw statement format."""

    CSV = "CSV"
    MT940 = "MT940"


class TransactionDirection(str, enum.Enum):
    """Money in (positive amount) or money out (negative amount)."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"

    @classmethod
    def from_amount(cls, amount: Decimal) -> TransactionDirection:
        return cls.INCOMING if amount >= 0 else cls.OUTGOING


class BankImport(Base, UUIDMixin, CompanyOwnedMixin):
    """One ingestion batch.

    The count columns are a snapshot taken at commit time and are never
    recomputed; live counts come from the import's transactions.
    """

    __tablename__ = "bank_imports"

    format: Mapped[ImportFormat] = mapped_column(
        Enum(ImportFormat, name="bank_import_format_enum"), nullable=False
    )
    total_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confirmed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unmatched_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    raw_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    imported_by: Mapped[str] = mapped_column(String(128), nullable=False)
    imported_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class BankTransaction(Base, UUIDMixin, CompanyOwnedMixin, TimestampMixin):
    """One bank-ledger line belonging to an import."""

    __tablename__ = "bank_transactions"

    import_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_imports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Transaction details
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    beneficiary: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    direction: Mapped[TransactionDirection] = mapped_column(
        Enum(TransactionDirection, name="bank_transaction_direction_enum"), nullable=False
    )

    # Reconciliation state, written only through apply_match_state()
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, name="bank_transaction_status_enum"),
        nullable=False,
        default=TransactionStatus.UNMATCHED,
    )
    matched_invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    matched_invoice_kind: Mapped[InvoiceKind | None] = mapped_column(
        Enum(InvoiceKind, name="invoice_kind_enum"), nullable=True
    )
    matched_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    matched_invoice_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    matched_counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    matched_invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    matched_invoice_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0-100
    manually_linked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Append-only: {field, old_value, new_value, user_id, user_name, timestamp}
    edit_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    @property
    def linked_invoice(self) -> LinkedInvoice | None:
        if not self.matched_invoice_id or self.matched_invoice_kind is None:
            return None
        return LinkedInvoice(
            invoice_id=self.matched_invoice_id,
            kind=InvoiceKind(self.matched_invoice_kind),
            invoice_number=self.matched_invoice_number or "",
            amount=self.matched_invoice_amount or Decimal("0.00"),
            counterparty_name=self.matched_counterparty_name or "",
            invoice_date=self.matched_invoice_date,
            confidence=self.confidence,
            invoice_status=self.matched_invoice_status,
            manually_linked=self.manually_linked,
        )

    @property
    def match_state(self) -> MatchState:
        invoice = self.linked_invoice
        if invoice is None:
            return Unmatched()
        if self.status == TransactionStatus.CONFIRMED:
            return Confirmed(
                invoice=invoice,
                confirmed_by=self.confirmed_by or "",
                confirmed_at=self.confirmed_at or self.updated_at,
            )
        return Pending(invoice=invoice)

    def apply_match_state(self, state: MatchState) -> None:
        """Write status and link columns from a tagged state."""
        self.status = state.status
        if isinstance(state, Unmatched):
            self.matched_invoice_id = None
            self.matched_invoice_kind = None
            self.matched_invoice_number = None
            self.matched_invoice_amount = None
            self.matched_counterparty_name = None
            self.matched_invoice_date = None
            self.matched_invoice_status = None
            self.confidence = 0
            self.manually_linked = False
            self.confirmed_by = None
            self.confirmed_at = None
            return

        invoice = state.invoice
        self.matched_invoice_id = invoice.invoice_id
        self.matched_invoice_kind = invoice.kind
        self.matched_invoice_number = invoice.invoice_number
        self.matched_invoice_amount = invoice.amount
        self.matched_counterparty_name = invoice.counterparty_name
        self.matched_invoice_date = invoice.invoice_date
        self.matched_invoice_status = invoice.invoice_status
        self.confidence = invoice.confidence
        self.manually_linked = invoice.manually_linked
        if isinstance(state, Confirmed):
            self.confirmed_by = state.confirmed_by
            self.confirmed_at = state.confirmed_at
        else:
            self.confirmed_by = None
            self.confirmed_at = None


class MatchedPayment(Base, UUIDMixin, CompanyOwnedMixin):
    """Audit record of a confirmed invoice link, one per confirmed transaction."""

    __tablename__ = "matched_payments"
    __table_args__ = (
        UniqueConstraint(
            "company_id", "invoice_id", "invoice_kind", name="uq_matched_payments_company_invoice"
        ),
    )

    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    invoice_kind: Mapped[InvoiceKind] = mapped_column(
        Enum(InvoiceKind, name="invoice_kind_enum"), nullable=False
    )
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    import_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_imports.id", ondelete="CASCADE"),
        nullable=False,
    )
    matched_by: Mapped[str] = mapped_column(String(128), nullable=False)
    matched_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
