from bankrecon.schemas.bank_import import (
    BankImportDetailResponse,
    BankImportListResponse,
    BankImportResponse,
    BankTransactionListResponse,
    BankTransactionResponse,
    ColumnMappingResponse,
    CommitItem,
    CommitRequest,
    CommitResponse,
    DraftTransaction,
    DraftTransactionResponse,
    EditHistoryEntry,
    ImportCountsResponse,
    ImportDeleteResponse,
    InvoiceSyncFailureResponse,
    LinkInvoiceRequest,
    MatchedInvoiceSchema,
    MatchRequest,
    MatchResponse,
    MatchResultResponse,
    MatchSummary,
    ParseRequest,
    ParseResponse,
    PreviewResponse,
    RematchItemResponse,
    RematchRequest,
    RematchResponse,
    RowErrorResponse,
    TransactionUpdateRequest,
    WorkflowOutcomeResponse,
)
from bankrecon.schemas.base import BaseResponse, ListResponse
from bankrecon.schemas.invoice import Invoice

__all__ = [
    "BankImportDetailResponse",
    "BankImportListResponse",
    "BankImportResponse",
    "BankTransactionListResponse",
    "BankTransactionResponse",
    "BaseResponse",
    "ColumnMappingResponse",
    "CommitItem",
    "CommitRequest",
    "CommitResponse",
    "DraftTransaction",
    "DraftTransactionResponse",
    "EditHistoryEntry",
    "ImportCountsResponse",
    "ImportDeleteResponse",
    "Invoice",
    "InvoiceSyncFailureResponse",
    "LinkInvoiceRequest",
    "ListResponse",
    "MatchRequest",
    "MatchResponse",
    "MatchResultResponse",
    "MatchSummary",
    "MatchedInvoiceSchema",
    "ParseRequest",
    "ParseResponse",
    "PreviewResponse",
    "RematchItemResponse",
    "RematchRequest",
    "RematchResponse",
    "RowErrorResponse",
    "TransactionUpdateRequest",
    "WorkflowOutcomeResponse",
]
