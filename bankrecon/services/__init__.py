"""Services package."""

from bankrecon.services.format_detection import ColumnDetectionError, ColumnMapping, detect_columns, detect_delimiter
from bankrecon.services.invoice_numbers import extract_invoice_numbers, normalize_invoice_number
from bankrecon.services.invoices import (
    HttpInvoiceDirectory,
    InvoiceDirectory,
    InvoiceLookupError,
    fetch_invoices_for_matching,
)
from bankrecon.services.matching import (
    MatchedInvoice,
    MatchResult,
    ScoringConfig,
    load_scoring_config,
    match_transaction,
    match_transactions,
)
from bankrecon.services.normalizers import parse_amount, parse_date
from bankrecon.services.reconciliation_store import (
    Actor,
    ImportNotFoundError,
    InvoiceNotFoundError,
    ReconciliationError,
    TransactionNotFoundError,
    WorkflowConflictError,
    WorkflowOutcome,
)
from bankrecon.services.statement_parsing import (
    ParseResult,
    RowError,
    StatementFormatError,
    TransactionDraft,
    parse_delimited,
    parse_mt940,
    parse_statement,
)

__all__ = [
    "Actor",
    "ColumnDetectionError",
    "ColumnMapping",
    "HttpInvoiceDirectory",
    "ImportNotFoundError",
    "InvoiceDirectory",
    "InvoiceLookupError",
    "InvoiceNotFoundError",
    "MatchResult",
    "MatchedInvoice",
    "ParseResult",
    "ReconciliationError",
    "RowError",
    "ScoringConfig",
    "StatementFormatError",
    "TransactionDraft",
    "TransactionNotFoundError",
    "WorkflowConflictError",
    "WorkflowOutcome",
    "detect_columns",
    "detect_delimiter",
    "extract_invoice_numbers",
    "fetch_invoices_for_matching",
    "load_scoring_config",
    "match_transaction",
    "match_transactions",
    "normalize_invoice_number",
    "parse_amount",
    "parse_date",
    "parse_delimited",
    "parse_mt940",
    "parse_statement",
]
