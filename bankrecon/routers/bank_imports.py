"""Bank import API router: parse, match, preview, commit and manage imports."""

from collections.abc import Sequence
from uuid import UUID

from fastapi import APIRouter, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.deps import CurrentActor, DbSession, InvoiceDirectoryDep
from bankrecon.logger import get_logger, log_exception, log_timing
from bankrecon.models import MatchStatus, TransactionDirection
from bankrecon.schemas import (
    BankImportDetailResponse,
    BankImportListResponse,
    BankImportResponse,
    BankTransactionResponse,
    ColumnMappingResponse,
    CommitRequest,
    CommitResponse,
    DraftTransactionResponse,
    ImportCountsResponse,
    ImportDeleteResponse,
    InvoiceSyncFailureResponse,
    MatchedInvoiceSchema,
    MatchRequest,
    MatchResponse,
    MatchResultResponse,
    MatchSummary,
    ParseRequest,
    ParseResponse,
    PreviewResponse,
    RowErrorResponse,
)
from bankrecon.services import reconciliation_store
from bankrecon.services.invoices import InvoiceDirectory, InvoiceLookupError
from bankrecon.services.matching import MatchedInvoice, MatchResult
from bankrecon.services.reconciliation_store import ImportNotFoundError, WorkflowConflictError
from bankrecon.services.statement_parsing import ParseResult, StatementFormatError, parse_statement
from bankrecon.utils.exceptions import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_service_unavailable,
)

router = APIRouter(prefix="/companies/{company_id}/bank-imports", tags=["bank-imports"])
logger = get_logger(__name__)


def _draft_response(draft) -> DraftTransactionResponse:
    return DraftTransactionResponse(
        temp_id=draft.temp_id,
        txn_date=draft.txn_date,
        amount=draft.amount,
        description=draft.description or "",
        beneficiary=draft.beneficiary,
        reference=draft.reference,
        direction=TransactionDirection.from_amount(draft.amount),
    )


def _candidate(candidate: MatchedInvoice | None) -> MatchedInvoiceSchema | None:
    if candidate is None:
        return None
    return MatchedInvoiceSchema.model_validate(candidate)


def _match_response(results: Sequence[MatchResult]) -> tuple[list[MatchResultResponse], MatchSummary]:
    items = [
        MatchResultResponse(
            transaction=_draft_response(result.transaction),
            status=result.status,
            confidence=result.confidence,
            matched_invoice=_candidate(result.matched_invoice),
            possible_matches=[MatchedInvoiceSchema.model_validate(c) for c in result.possible_matches],
        )
        for result in results
    ]
    summary = MatchSummary(
        matched=sum(1 for result in results if result.status == MatchStatus.MATCHED),
        partial=sum(1 for result in results if result.status == MatchStatus.PARTIAL),
        unmatched=sum(1 for result in results if result.status == MatchStatus.UNMATCHED),
    )
    return items, summary


def _parse(payload: ParseRequest, company_id: str) -> ParseResult:
    with log_timing("parse_statement", logger=logger, company_id=company_id, format=payload.format.value) as timing:
        try:
            parsed = parse_statement(payload.raw_text, payload.format)
        except StatementFormatError as e:
            logger.info(
                "Statement rejected",
                company_id=company_id,
                format=payload.format.value,
                error=str(e),
                row_errors=len(e.row_errors),
            )
            raise_bad_request(str(e), cause=e)
        timing.update(transactions=len(parsed.transactions), skipped_rows=len(parsed.row_errors))
    return parsed


async def _match(
    db: AsyncSession,
    directory: InvoiceDirectory,
    owner_id: str,
    company_id: str,
    transactions: Sequence,
) -> list[MatchResult]:
    try:
        return await reconciliation_store.run_matching_pass(
            db, directory, owner_id=owner_id, company_id=company_id, transactions=transactions
        )
    except InvoiceLookupError as e:
        log_exception(logger, e, "Invoice fetch failed", include_traceback=False, company_id=company_id)
        raise_service_unavailable(f"Invoice service unavailable: {e}", cause=e)


@router.post("/parse", response_model=ParseResponse)
async def parse_import(
    company_id: str,
    payload: ParseRequest,
    actor: CurrentActor,
) -> ParseResponse:
    """Parse a raw statement into draft transactions without storing anything."""
    parsed = _parse(payload, company_id)
    mapping = parsed.column_mapping
    return ParseResponse(
        format=parsed.format,
        transactions=[_draft_response(draft) for draft in parsed.transactions],
        row_errors=[RowErrorResponse.model_validate(error) for error in parsed.row_errors],
        skipped_rows=len(parsed.row_errors),
        column_mapping=ColumnMappingResponse.model_validate(mapping) if mapping else None,
    )


@router.post("/match", response_model=MatchResponse)
async def match_import(
    company_id: str,
    payload: MatchRequest,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> MatchResponse:
    """Match drafts against the company's outstanding invoices."""
    results = await _match(db, directory, actor.user_id, company_id, payload.transactions)
    items, summary = _match_response(results)
    return MatchResponse(results=items, summary=summary)


@router.post("/preview", response_model=PreviewResponse)
async def preview_import(
    company_id: str,
    payload: ParseRequest,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> PreviewResponse:
    """Parse and match in one call for the review screen."""
    parsed = _parse(payload, company_id)
    results = await _match(db, directory, actor.user_id, company_id, parsed.transactions)
    items, summary = _match_response(results)
    return PreviewResponse(
        format=parsed.format,
        results=items,
        summary=summary,
        row_errors=[RowErrorResponse.model_validate(error) for error in parsed.row_errors],
        skipped_rows=len(parsed.row_errors),
    )


@router.post("", response_model=CommitResponse, status_code=status.HTTP_201_CREATED)
async def commit_import(
    company_id: str,
    payload: CommitRequest,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> CommitResponse:
    """Store reviewed match results as a new import."""
    results = [
        MatchResult(
            transaction=item.transaction,
            status=item.status,
            confidence=item.matched_invoice.confidence if item.matched_invoice else 0,
            matched_invoice=MatchedInvoice(**item.matched_invoice.model_dump()) if item.matched_invoice else None,
        )
        for item in payload.results
    ]
    try:
        committed = await reconciliation_store.commit_import(
            db,
            directory,
            company_id=company_id,
            actor=actor,
            results=results,
            statement_format=payload.format,
            raw_data=payload.raw_data,
        )
    except WorkflowConflictError as e:
        raise_conflict(str(e), cause=e)

    return CommitResponse(
        bank_import=BankImportResponse.model_validate(committed.bank_import),
        transactions=[BankTransactionResponse.model_validate(txn) for txn in committed.transactions],
        conflicts=committed.conflicts,
        invoice_sync_failures=[
            InvoiceSyncFailureResponse.model_validate(failure) for failure in committed.invoice_sync_failures
        ],
    )


@router.get("", response_model=BankImportListResponse)
async def list_imports(
    company_id: str,
    db: DbSession,
    actor: CurrentActor,
) -> BankImportListResponse:
    """List imports, newest first."""
    imports = await reconciliation_store.list_imports(db, company_id)
    items = [BankImportResponse.model_validate(bank_import) for bank_import in imports]
    return BankImportListResponse(items=items, total=len(items))


@router.get("/{import_id}", response_model=BankImportDetailResponse)
async def get_import(
    company_id: str,
    import_id: UUID,
    db: DbSession,
    actor: CurrentActor,
) -> BankImportDetailResponse:
    """Get an import with its commit-time snapshot and live counts."""
    try:
        bank_import, counts = await reconciliation_store.get_import(db, company_id, import_id)
    except ImportNotFoundError as e:
        logger.debug("Import not found", import_id=str(import_id))
        raise_not_found("Import", cause=e)

    return BankImportDetailResponse(
        **BankImportResponse.model_validate(bank_import).model_dump(),
        raw_data=bank_import.raw_data,
        live_counts=ImportCountsResponse.model_validate(counts),
    )


@router.delete("/{import_id}", response_model=ImportDeleteResponse)
async def delete_import(
    company_id: str,
    import_id: UUID,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> ImportDeleteResponse:
    """Delete an import with all its transactions and matched payments.

    Invoices its confirmed transactions settled are marked unpaid again.
    """
    try:
        failures = await reconciliation_store.delete_import(
            db, directory, company_id=company_id, import_id=import_id
        )
    except ImportNotFoundError as e:
        logger.debug("Import not found for deletion", import_id=str(import_id))
        raise_not_found("Import", cause=e)

    return ImportDeleteResponse(
        import_id=import_id,
        invoice_sync_failures=[InvoiceSyncFailureResponse.model_validate(failure) for failure in failures],
    )
