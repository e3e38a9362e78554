"""Bank transaction review API router."""

from uuid import UUID

from fastapi import APIRouter, Query

from bankrecon.deps import CurrentActor, DbSession, InvoiceDirectoryDep
from bankrecon.logger import get_logger, log_exception
from bankrecon.models import TransactionStatus
from bankrecon.schemas import (
    BankTransactionListResponse,
    BankTransactionResponse,
    LinkInvoiceRequest,
    MatchedInvoiceSchema,
    RematchItemResponse,
    RematchRequest,
    RematchResponse,
    TransactionUpdateRequest,
    WorkflowOutcomeResponse,
)
from bankrecon.services import reconciliation_store
from bankrecon.services.invoices import InvoiceLookupError
from bankrecon.services.reconciliation_store import (
    InvoiceNotFoundError,
    TransactionNotFoundError,
    WorkflowConflictError,
    WorkflowOutcome,
)
from bankrecon.utils.exceptions import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_service_unavailable,
)

router = APIRouter(prefix="/companies/{company_id}/bank-transactions", tags=["bank-transactions"])
logger = get_logger(__name__)


def _outcome_response(outcome: WorkflowOutcome) -> WorkflowOutcomeResponse:
    return WorkflowOutcomeResponse(
        transaction=BankTransactionResponse.model_validate(outcome.transaction),
        invoice_synced=outcome.invoice_synced,
        invoice_error=outcome.invoice_error,
    )


@router.get("", response_model=BankTransactionListResponse)
async def list_transactions(
    company_id: str,
    db: DbSession,
    actor: CurrentActor,
    import_id: UUID | None = Query(default=None),
    status: TransactionStatus | None = Query(default=None),
) -> BankTransactionListResponse:
    """List stored transactions, optionally for one import or status."""
    transactions = await reconciliation_store.list_transactions(db, company_id, import_id=import_id, status=status)
    items = [BankTransactionResponse.model_validate(txn) for txn in transactions]
    return BankTransactionListResponse(items=items, total=len(items))


@router.post("/rematch", response_model=RematchResponse)
async def rematch_transactions(
    company_id: str,
    payload: RematchRequest,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> RematchResponse:
    """Re-run matching for stored transactions against the current invoices."""
    try:
        outcomes = await reconciliation_store.rematch_transactions(
            db,
            directory,
            owner_id=actor.user_id,
            company_id=company_id,
            transaction_ids=payload.transaction_ids,
        )
    except InvoiceLookupError as e:
        log_exception(logger, e, "Invoice fetch failed", include_traceback=False, company_id=company_id)
        raise_service_unavailable(f"Invoice service unavailable: {e}", cause=e)

    items = []
    for outcome in outcomes:
        best = outcome.result.matched_invoice if outcome.result else None
        items.append(
            RematchItemResponse(
                transaction_id=outcome.transaction_id,
                updated=outcome.updated,
                reason=outcome.reason,
                confidence=outcome.result.confidence if outcome.result else 0,
                matched_invoice=MatchedInvoiceSchema.model_validate(best) if best else None,
            )
        )
    return RematchResponse(items=items, updated=sum(1 for item in items if item.updated))


@router.patch("/{transaction_id}", response_model=BankTransactionResponse)
async def update_transaction(
    company_id: str,
    transaction_id: UUID,
    payload: TransactionUpdateRequest,
    db: DbSession,
    actor: CurrentActor,
) -> BankTransactionResponse:
    """Correct transaction fields; each change is added to the edit history."""
    try:
        transaction = await reconciliation_store.edit_transaction(
            db,
            company_id=company_id,
            transaction_id=transaction_id,
            changes=payload.model_dump(exclude_unset=True),
            actor=actor,
        )
    except TransactionNotFoundError as e:
        logger.debug("Transaction not found for update", transaction_id=str(transaction_id))
        raise_not_found("Transaction", cause=e)
    except WorkflowConflictError as e:
        raise_conflict(str(e), cause=e)
    except ValueError as e:
        raise_bad_request(str(e), cause=e)

    return BankTransactionResponse.model_validate(transaction)


@router.post("/{transaction_id}/confirm", response_model=WorkflowOutcomeResponse)
async def confirm_transaction(
    company_id: str,
    transaction_id: UUID,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> WorkflowOutcomeResponse:
    """Confirm the linked invoice and mark it paid."""
    try:
        outcome = await reconciliation_store.confirm_transaction(
            db, directory, company_id=company_id, transaction_id=transaction_id, actor=actor
        )
    except TransactionNotFoundError as e:
        raise_not_found("Transaction", cause=e)
    except WorkflowConflictError as e:
        raise_conflict(str(e), cause=e)
    return _outcome_response(outcome)


@router.post("/{transaction_id}/unconfirm", response_model=WorkflowOutcomeResponse)
async def unconfirm_transaction(
    company_id: str,
    transaction_id: UUID,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> WorkflowOutcomeResponse:
    """Return a confirmed transaction to pending and mark the invoice unpaid."""
    try:
        outcome = await reconciliation_store.unconfirm_transaction(
            db, directory, company_id=company_id, transaction_id=transaction_id, actor=actor
        )
    except TransactionNotFoundError as e:
        raise_not_found("Transaction", cause=e)
    except WorkflowConflictError as e:
        raise_conflict(str(e), cause=e)
    return _outcome_response(outcome)


@router.post("/{transaction_id}/link", response_model=BankTransactionResponse)
async def link_invoice(
    company_id: str,
    transaction_id: UUID,
    payload: LinkInvoiceRequest,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> BankTransactionResponse:
    """Link an invoice chosen by the operator."""
    try:
        transaction = await reconciliation_store.link_invoice(
            db,
            directory,
            owner_id=actor.user_id,
            company_id=company_id,
            transaction_id=transaction_id,
            invoice_id=payload.invoice_id,
            kind=payload.kind,
            actor=actor,
        )
    except TransactionNotFoundError as e:
        raise_not_found("Transaction", cause=e)
    except InvoiceNotFoundError as e:
        raise_not_found("Invoice", cause=e)
    except WorkflowConflictError as e:
        raise_conflict(str(e), cause=e)
    except InvoiceLookupError as e:
        log_exception(logger, e, "Invoice fetch failed", include_traceback=False, company_id=company_id)
        raise_service_unavailable(f"Invoice service unavailable: {e}", cause=e)
    return BankTransactionResponse.model_validate(transaction)


@router.post("/{transaction_id}/unlink", response_model=WorkflowOutcomeResponse)
async def unlink_invoice(
    company_id: str,
    transaction_id: UUID,
    db: DbSession,
    actor: CurrentActor,
    directory: InvoiceDirectoryDep,
) -> WorkflowOutcomeResponse:
    """Clear the invoice link; a confirmed transaction is unconfirmed first."""
    try:
        outcome = await reconciliation_store.unlink_invoice(
            db, directory, company_id=company_id, transaction_id=transaction_id, actor=actor
        )
    except TransactionNotFoundError as e:
        raise_not_found("Transaction", cause=e)
    return _outcome_response(outcome)
