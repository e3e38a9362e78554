"""Pydantic schemas for the bank import and reconciliation API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from bankrecon.models import ImportFormat, InvoiceKind, MatchStatus, TransactionDirection, TransactionStatus
from bankrecon.schemas.base import BaseResponse, ListResponse

# --- Request Schemas ---


class ParseRequest(BaseModel):
    """Raw statement text to parse."""

    raw_text: Annotated[str, Field(min_length=1)]
    format: ImportFormat = ImportFormat.CSV


class DraftTransaction(BaseModel):
    """Parsed transaction that is not stored yet."""

    temp_id: str
    txn_date: date
    amount: Decimal
    description: str = ""
    beneficiary: str | None = None
    reference: str | None = None


class MatchRequest(BaseModel):
    """Drafts to match against the company's outstanding invoices."""

    transactions: list[DraftTransaction]


class MatchedInvoiceSchema(BaseResponse):
    """Scored invoice candidate."""

    invoice_id: str
    invoice_number: str
    amount: Decimal
    counterparty_name: str = ""
    invoice_date: date | None = None
    confidence: Annotated[int, Field(ge=0, le=100)]
    kind: InvoiceKind
    status: str | None = None
    breakdown: dict[str, int] = Field(default_factory=dict)


class CommitItem(BaseModel):
    """One reviewed match result; ``matched_invoice`` may be an operator's choice."""

    transaction: DraftTransaction
    status: MatchStatus
    matched_invoice: MatchedInvoiceSchema | None = None

    @model_validator(mode="after")
    def validate_link(self) -> "CommitItem":
        """Only unmatched results may come without an invoice."""
        if self.status != MatchStatus.UNMATCHED and self.matched_invoice is None:
            raise ValueError(f"A {self.status.value} result needs a matched invoice")
        return self


class CommitRequest(BaseModel):
    """Reviewed preview to persist as a new import."""

    format: ImportFormat
    raw_data: str | None = None
    results: list[CommitItem]


class TransactionUpdateRequest(BaseModel):
    """Request to manually correct a transaction."""

    txn_date: date | None = None
    amount: Decimal | None = None
    description: str | None = None
    beneficiary: str | None = None
    reference: str | None = None


class LinkInvoiceRequest(BaseModel):
    invoice_id: Annotated[str, Field(min_length=1)]
    kind: InvoiceKind


class RematchRequest(BaseModel):
    transaction_ids: Annotated[list[UUID], Field(min_length=1)]


# --- Response Schemas ---


class DraftTransactionResponse(DraftTransaction):
    direction: TransactionDirection


class RowErrorResponse(BaseResponse):
    row: int
    message: str


class ColumnMappingResponse(BaseResponse):
    """Zero-based column index per detected role."""

    date: int
    amount: int
    description: int
    beneficiary: int | None = None
    reference: int | None = None


class ParseResponse(BaseModel):
    format: ImportFormat
    transactions: list[DraftTransactionResponse]
    row_errors: list[RowErrorResponse] = Field(default_factory=list)
    skipped_rows: int = 0
    column_mapping: ColumnMappingResponse | None = None


class MatchResultResponse(BaseModel):
    transaction: DraftTransactionResponse
    status: MatchStatus
    confidence: int
    matched_invoice: MatchedInvoiceSchema | None = None
    possible_matches: list[MatchedInvoiceSchema] = Field(default_factory=list)


class MatchSummary(BaseModel):
    matched: int = 0
    partial: int = 0
    unmatched: int = 0


class MatchResponse(BaseModel):
    results: list[MatchResultResponse]
    summary: MatchSummary


class PreviewResponse(MatchResponse):
    """Parse and match in one call."""

    format: ImportFormat
    row_errors: list[RowErrorResponse] = Field(default_factory=list)
    skipped_rows: int = 0


class EditHistoryEntry(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None
    user_id: str
    user_name: str | None = None
    timestamp: datetime


class BankTransactionResponse(BaseResponse):
    """Stored bank transaction with its reconciliation state."""

    id: UUID
    company_id: str
    import_id: UUID
    txn_date: date
    amount: Decimal
    description: str
    beneficiary: str | None
    reference: str | None
    direction: TransactionDirection
    status: TransactionStatus
    matched_invoice_id: str | None
    matched_invoice_kind: InvoiceKind | None
    matched_invoice_number: str | None
    matched_invoice_amount: Decimal | None
    matched_counterparty_name: str | None
    matched_invoice_date: date | None
    matched_invoice_status: str | None
    confidence: int
    manually_linked: bool
    confirmed_by: str | None
    confirmed_at: datetime | None
    edit_history: list[EditHistoryEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


BankTransactionListResponse = ListResponse[BankTransactionResponse]


class BankImportResponse(BaseResponse):
    """Import header; counts are the snapshot taken at commit time."""

    id: UUID
    company_id: str
    format: ImportFormat
    total_lines: int
    confirmed_count: int
    pending_count: int
    unmatched_count: int
    imported_by: str
    imported_by_name: str | None
    imported_at: datetime


BankImportListResponse = ListResponse[BankImportResponse]


class ImportCountsResponse(BaseResponse):
    confirmed: int
    pending: int
    unmatched: int


class BankImportDetailResponse(BankImportResponse):
    raw_data: str | None = None
    live_counts: ImportCountsResponse


class InvoiceSyncFailureResponse(BaseResponse):
    transaction_id: UUID
    invoice_id: str
    kind: InvoiceKind
    error: str


class CommitResponse(BaseModel):
    bank_import: BankImportResponse
    transactions: list[BankTransactionResponse]
    conflicts: list[str] = Field(default_factory=list)
    invoice_sync_failures: list[InvoiceSyncFailureResponse] = Field(default_factory=list)


class ImportDeleteResponse(BaseModel):
    """Invoices that could not be marked unpaid after the import was deleted."""

    import_id: UUID
    invoice_sync_failures: list[InvoiceSyncFailureResponse] = Field(default_factory=list)


class WorkflowOutcomeResponse(BaseModel):
    """Result of an operation that also updates the invoice paid flag.

    ``invoice_synced`` is False when the local change was saved but the
    invoice service call failed; the caller must retry or roll back.
    """

    transaction: BankTransactionResponse
    invoice_synced: bool = True
    invoice_error: str | None = None


class RematchItemResponse(BaseModel):
    transaction_id: UUID
    updated: bool
    reason: str
    confidence: int = 0
    matched_invoice: MatchedInvoiceSchema | None = None


class RematchResponse(BaseModel):
    items: list[RematchItemResponse]
    updated: int
