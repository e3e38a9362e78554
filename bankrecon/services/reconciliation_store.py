"""Persisted reconciliation workflow for bank imports.

Imports are committed once from reviewed match results; afterwards operators
confirm, unconfirm, edit, re-match, link and unlink individual transactions.
Operations that touch the invoice paid flag commit the local change first and
then call the invoice service. A failed invoice call is reported in the
outcome (``invoice_synced=False``) instead of being retried or hidden.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.config import settings
from bankrecon.logger import get_logger, log_timing
from bankrecon.models import (
    BankImport,
    BankTransaction,
    Confirmed,
    ImportFormat,
    InvoiceKind,
    LinkedInvoice,
    MatchedPayment,
    MatchState,
    MatchStatus,
    Pending,
    TransactionDirection,
    TransactionStatus,
    Unmatched,
)
from bankrecon.services import matched_payments
from bankrecon.services.invoices import InvoiceDirectory, InvoiceLookupError, fetch_invoices_for_matching
from bankrecon.services.matching import (
    MatchableTransaction,
    MatchedInvoice,
    MatchResult,
    ScoringConfig,
    classify,
    invoice_kind_for,
    load_scoring_config,
    match_transaction,
    match_transactions,
)

logger = get_logger(__name__)

EDITABLE_FIELDS = ("txn_date", "amount", "description", "beneficiary", "reference")


class ReconciliationError(Exception):
    """Base class for workflow errors."""


class TransactionNotFoundError(ReconciliationError):
    pass


class ImportNotFoundError(ReconciliationError):
    pass


class InvoiceNotFoundError(ReconciliationError):
    pass


class WorkflowConflictError(ReconciliationError):
    """The requested transition conflicts with the transaction's current state."""


@dataclass(frozen=True)
class Actor:
    """Operator performing an action."""

    user_id: str
    name: str | None = None


@dataclass
class InvoiceSyncFailure:
    transaction_id: UUID
    invoice_id: str
    kind: InvoiceKind
    error: str


@dataclass
class WorkflowOutcome:
    transaction: BankTransaction
    invoice_synced: bool = True
    invoice_error: str | None = None


@dataclass
class CommitResult:
    bank_import: BankImport
    transactions: list[BankTransaction]
    # Confirm-eligible results stored as pending because the invoice was already matched
    conflicts: list[str] = field(default_factory=list)
    invoice_sync_failures: list[InvoiceSyncFailure] = field(default_factory=list)


@dataclass
class RematchOutcome:
    transaction_id: UUID
    updated: bool
    reason: str  # rematched | no_new_match | confirmed | not_found
    result: MatchResult | None = None


@dataclass(frozen=True)
class ImportCounts:
    confirmed: int = 0
    pending: int = 0
    unmatched: int = 0


# =============================================================================
# Helpers
# =============================================================================


def _linked_invoice(candidate: MatchedInvoice, *, manually_linked: bool = False) -> LinkedInvoice:
    return LinkedInvoice(
        invoice_id=candidate.invoice_id,
        kind=candidate.kind,
        invoice_number=candidate.invoice_number,
        amount=candidate.amount,
        counterparty_name=candidate.counterparty_name,
        invoice_date=candidate.invoice_date,
        confidence=candidate.confidence,
        invoice_status=candidate.status,
        manually_linked=manually_linked,
    )


def _state_for_result(result: MatchResult, actor: Actor, now: datetime, config: ScoringConfig) -> MatchState:
    candidate = result.matched_invoice
    if candidate is None or result.status == MatchStatus.UNMATCHED:
        return Unmatched()
    # Only a candidate scoring at the confirm threshold is confirmed on commit.
    if result.status == MatchStatus.MATCHED and classify(candidate.confidence, config) == MatchStatus.MATCHED:
        return Confirmed(invoice=_linked_invoice(candidate), confirmed_by=actor.user_id, confirmed_at=now)
    if result.status == MatchStatus.MANUAL:
        return Pending(invoice=_linked_invoice(candidate, manually_linked=True))
    return Pending(invoice=_linked_invoice(candidate))


def _check_direction(amount: Decimal, kind: InvoiceKind) -> None:
    expected = invoice_kind_for(amount)
    if kind != expected:
        raise WorkflowConflictError(
            f"A transaction of {amount} can only be linked to {expected.value} invoices, not {kind.value}"
        )


async def _get_transaction(db: AsyncSession, company_id: str, transaction_id: UUID) -> BankTransaction:
    result = await db.execute(
        select(BankTransaction).where(
            BankTransaction.id == transaction_id,
            BankTransaction.company_id == company_id,
        )
    )
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    return transaction


async def _set_invoice_paid(
    directory: InvoiceDirectory,
    transaction: BankTransaction,
    invoice: LinkedInvoice,
    *,
    paid: bool,
) -> InvoiceSyncFailure | None:
    try:
        if paid:
            await directory.mark_invoice_paid(invoice.invoice_id, invoice.kind)
        else:
            await directory.mark_invoice_unpaid(invoice.invoice_id, invoice.kind)
    except InvoiceLookupError as exc:
        logger.error(
            "Invoice paid flag out of sync with transaction",
            transaction_id=str(transaction.id),
            company_id=transaction.company_id,
            invoice_id=invoice.invoice_id,
            invoice_kind=invoice.kind.value,
            paid=paid,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return InvoiceSyncFailure(
            transaction_id=transaction.id,
            invoice_id=invoice.invoice_id,
            kind=invoice.kind,
            error=str(exc),
        )
    return None


def _outcome(transaction: BankTransaction, failure: InvoiceSyncFailure | None) -> WorkflowOutcome:
    if failure is None:
        return WorkflowOutcome(transaction=transaction)
    return WorkflowOutcome(transaction=transaction, invoice_synced=False, invoice_error=failure.error)


# =============================================================================
# Matching pass
# =============================================================================


async def run_matching_pass(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    owner_id: str,
    company_id: str,
    transactions: Sequence[MatchableTransaction],
) -> list[MatchResult]:
    """Fetch invoices once, drop already-settled ones, and match the batch.

    Raises:
        InvoiceLookupError: the invoice set could not be fetched; no results are produced.
    """
    if not transactions:
        return []

    with log_timing("match_transactions", logger=logger, company_id=company_id) as timing:
        outgoing, incoming = await fetch_invoices_for_matching(directory, owner_id, company_id)
        settled = await matched_payments.get_matched_invoice_keys(db, company_id)
        results = match_transactions(transactions, outgoing, incoming, exclude=settled)
        timing.update(
            transactions=len(results),
            outgoing_invoices=len(outgoing),
            incoming_invoices=len(incoming),
            matched=sum(1 for result in results if result.status == MatchStatus.MATCHED),
            partial=sum(1 for result in results if result.status == MatchStatus.PARTIAL),
        )
    return results


# =============================================================================
# Commit
# =============================================================================


async def commit_import(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    company_id: str,
    actor: Actor,
    results: Sequence[MatchResult],
    statement_format: ImportFormat,
    raw_data: str | None = None,
) -> CommitResult:
    """Persist an import header and its transactions from reviewed match results.

    Results labelled matched whose candidate scores at or above the confirm
    threshold become confirmed, get a matched payment record and mark their
    invoice paid. Anything else with an invoice is stored as pending. If the invoice is already matched elsewhere (or
    earlier in the same batch) the transaction is stored as pending and listed
    in ``conflicts``.
    """
    now = datetime.now(UTC)
    config = load_scoring_config()
    settled = await matched_payments.get_matched_invoice_keys(db, company_id)
    states: list[MatchState] = []
    conflicts: list[str] = []

    for result in results:
        draft = result.transaction
        state = _state_for_result(result, actor, now, config)
        if not isinstance(state, Unmatched):
            _check_direction(draft.amount, state.invoice.kind)
        if isinstance(state, Confirmed):
            key = (state.invoice.kind, state.invoice.invoice_id)
            if key in settled:
                conflicts.append(getattr(draft, "temp_id", None) or state.invoice.invoice_id)
                state = Pending(invoice=state.invoice)
            else:
                settled.add(key)
        states.append(state)

    bank_import = BankImport(
        company_id=company_id,
        format=statement_format,
        total_lines=len(results),
        confirmed_count=sum(1 for state in states if isinstance(state, Confirmed)),
        pending_count=sum(1 for state in states if isinstance(state, Pending)),
        unmatched_count=sum(1 for state in states if isinstance(state, Unmatched)),
        raw_data=raw_data[: settings.raw_data_max_chars] if raw_data else None,
        imported_by=actor.user_id,
        imported_by_name=actor.name,
        imported_at=now,
    )
    db.add(bank_import)
    await db.flush()

    transactions: list[BankTransaction] = []
    for result, state in zip(results, states, strict=True):
        draft = result.transaction
        transaction = BankTransaction(
            company_id=company_id,
            import_id=bank_import.id,
            txn_date=draft.txn_date,
            amount=draft.amount,
            description=draft.description or "",
            beneficiary=draft.beneficiary,
            reference=draft.reference,
            direction=TransactionDirection.from_amount(draft.amount),
            edit_history=[],
        )
        transaction.apply_match_state(state)
        transactions.append(transaction)
    db.add_all(transactions)
    await db.flush()

    confirmed = [txn for txn in transactions if txn.status == TransactionStatus.CONFIRMED]
    db.add_all(matched_payments.build_matched_payment(txn, actor.user_id, actor.name) for txn in confirmed)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise WorkflowConflictError("An invoice in this import was matched concurrently; retry the commit") from exc

    failures: list[InvoiceSyncFailure] = []
    for transaction in confirmed:
        failure = await _set_invoice_paid(directory, transaction, transaction.linked_invoice, paid=True)
        if failure:
            failures.append(failure)

    logger.info(
        "Bank import committed",
        company_id=company_id,
        import_id=str(bank_import.id),
        format=statement_format.value,
        total_lines=bank_import.total_lines,
        confirmed=bank_import.confirmed_count,
        pending=bank_import.pending_count,
        unmatched=bank_import.unmatched_count,
        conflicts=len(conflicts),
        invoice_sync_failures=len(failures),
    )
    return CommitResult(
        bank_import=bank_import,
        transactions=transactions,
        conflicts=conflicts,
        invoice_sync_failures=failures,
    )


# =============================================================================
# Review operations
# =============================================================================


async def confirm_transaction(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    company_id: str,
    transaction_id: UUID,
    actor: Actor,
) -> WorkflowOutcome:
    """Confirm a linked transaction and mark its invoice paid.

    Raises:
        WorkflowConflictError: no invoice link, or the invoice is already matched
            by another transaction.
    """
    transaction = await _get_transaction(db, company_id, transaction_id)
    state = transaction.match_state
    if isinstance(state, Confirmed):
        return WorkflowOutcome(transaction=transaction)
    if isinstance(state, Unmatched):
        raise WorkflowConflictError("Transaction must be linked to an invoice before confirming")

    invoice = state.invoice
    if await matched_payments.is_invoice_matched(
        db, company_id, invoice.invoice_id, invoice.kind, exclude_transaction_id=transaction.id
    ):
        raise WorkflowConflictError(
            f"Invoice {invoice.invoice_number} is already matched to another transaction"
        )

    transaction.apply_match_state(
        Confirmed(invoice=invoice, confirmed_by=actor.user_id, confirmed_at=datetime.now(UTC))
    )
    db.add(matched_payments.build_matched_payment(transaction, actor.user_id, actor.name))
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise WorkflowConflictError(
            f"Invoice {invoice.invoice_number} is already matched to another transaction"
        ) from exc

    logger.info(
        "Transaction confirmed",
        transaction_id=str(transaction.id),
        company_id=company_id,
        invoice_id=invoice.invoice_id,
        confirmed_by=actor.user_id,
    )
    failure = await _set_invoice_paid(directory, transaction, invoice, paid=True)
    return _outcome(transaction, failure)


async def unconfirm_transaction(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    company_id: str,
    transaction_id: UUID,
    actor: Actor | None = None,
) -> WorkflowOutcome:
    """Return a confirmed transaction to pending, keeping its invoice link."""
    transaction = await _get_transaction(db, company_id, transaction_id)
    state = transaction.match_state
    if not isinstance(state, Confirmed):
        raise WorkflowConflictError("Only confirmed transactions can be unconfirmed")

    transaction.apply_match_state(Pending(invoice=state.invoice))
    removed = await matched_payments.delete_for_transaction(db, company_id, transaction.id)
    await db.commit()

    logger.info(
        "Transaction unconfirmed",
        transaction_id=str(transaction.id),
        company_id=company_id,
        invoice_id=state.invoice.invoice_id,
        matched_payments_removed=removed,
        actor=actor.user_id if actor else None,
    )
    failure = await _set_invoice_paid(directory, transaction, state.invoice, paid=False)
    return _outcome(transaction, failure)


def _history_value(value: Any) -> Any:
    if isinstance(value, Decimal | date):
        return str(value)
    return value


async def edit_transaction(
    db: AsyncSession,
    *,
    company_id: str,
    transaction_id: UUID,
    changes: dict[str, Any],
    actor: Actor,
) -> BankTransaction:
    """Apply operator corrections and append one history entry per changed field.

    Matching is not re-run. An amount edit that flips the sign of a linked
    transaction would point it at the wrong invoice side and is rejected.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    transaction = await _get_transaction(db, company_id, transaction_id)
    new_amount = changes.get("amount")
    if new_amount is not None and transaction.linked_invoice is not None:
        _check_direction(Decimal(new_amount), transaction.linked_invoice.kind)

    timestamp = datetime.now(UTC).isoformat()
    entries: list[dict[str, Any]] = []
    for field_name in EDITABLE_FIELDS:
        if field_name not in changes:
            continue
        old_value = getattr(transaction, field_name)
        new_value = changes[field_name]
        if field_name == "amount" and new_value is not None:
            new_value = Decimal(new_value)
        if field_name in ("txn_date", "amount", "description") and new_value is None:
            raise ValueError(f"{field_name} cannot be empty")
        if old_value == new_value:
            continue
        setattr(transaction, field_name, new_value)
        entries.append(
            {
                "field": field_name,
                "old_value": _history_value(old_value),
                "new_value": _history_value(new_value),
                "user_id": actor.user_id,
                "user_name": actor.name,
                "timestamp": timestamp,
            }
        )

    if not entries:
        return transaction

    if "amount" in changes:
        transaction.direction = TransactionDirection.from_amount(transaction.amount)
    transaction.edit_history = [*(transaction.edit_history or []), *entries]
    await db.commit()

    logger.info(
        "Transaction edited",
        transaction_id=str(transaction.id),
        company_id=company_id,
        fields=[entry["field"] for entry in entries],
        edited_by=actor.user_id,
    )
    return transaction


async def rematch_transactions(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    owner_id: str,
    company_id: str,
    transaction_ids: Iterable[UUID],
) -> list[RematchOutcome]:
    """Re-run matching for stored transactions against the current invoice set.

    Confirmed transactions are left alone. A transaction is only updated when
    the best candidate is a different invoice from its current link; it then
    becomes pending.
    """
    ids = list(dict.fromkeys(transaction_ids))
    result = await db.execute(
        select(BankTransaction).where(
            BankTransaction.company_id == company_id,
            BankTransaction.id.in_(ids),
        )
    )
    by_id = {txn.id: txn for txn in result.scalars().all()}

    outgoing, incoming = await fetch_invoices_for_matching(directory, owner_id, company_id)
    settled = await matched_payments.get_matched_invoice_keys(db, company_id)
    outgoing = [invoice for invoice in outgoing if (InvoiceKind.OUTGOING, invoice.id) not in settled]
    incoming = [invoice for invoice in incoming if (InvoiceKind.INCOMING, invoice.id) not in settled]
    config = load_scoring_config()

    outcomes: list[RematchOutcome] = []
    for transaction_id in ids:
        transaction = by_id.get(transaction_id)
        if transaction is None:
            outcomes.append(RematchOutcome(transaction_id=transaction_id, updated=False, reason="not_found"))
            continue
        if transaction.status == TransactionStatus.CONFIRMED:
            outcomes.append(RematchOutcome(transaction_id=transaction_id, updated=False, reason="confirmed"))
            continue

        match = match_transaction(transaction, outgoing, incoming, config=config)
        best = match.matched_invoice
        current = transaction.linked_invoice
        if best is None or (
            current is not None and current.invoice_id == best.invoice_id and current.kind == best.kind
        ):
            outcomes.append(
                RematchOutcome(transaction_id=transaction_id, updated=False, reason="no_new_match", result=match)
            )
            continue

        transaction.apply_match_state(Pending(invoice=_linked_invoice(best)))
        outcomes.append(RematchOutcome(transaction_id=transaction_id, updated=True, reason="rematched", result=match))

    await db.commit()
    logger.info(
        "Transactions re-matched",
        company_id=company_id,
        requested=len(ids),
        updated=sum(1 for outcome in outcomes if outcome.updated),
    )
    return outcomes


async def link_invoice(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    owner_id: str,
    company_id: str,
    transaction_id: UUID,
    invoice_id: str,
    kind: InvoiceKind,
    actor: Actor,
) -> BankTransaction:
    """Link a transaction to an invoice chosen by the operator; status becomes pending."""
    transaction = await _get_transaction(db, company_id, transaction_id)
    if transaction.status == TransactionStatus.CONFIRMED:
        raise WorkflowConflictError("Unconfirm the transaction before linking another invoice")
    _check_direction(transaction.amount, kind)

    invoices = await directory.get_outstanding_invoices(owner_id, company_id, kind)
    invoice = next((candidate for candidate in invoices if candidate.id == invoice_id), None)
    if invoice is None:
        raise InvoiceNotFoundError(f"Outstanding {kind.value} invoice {invoice_id} not found")

    transaction.apply_match_state(
        Pending(
            invoice=LinkedInvoice(
                invoice_id=invoice.id,
                kind=kind,
                invoice_number=invoice.invoice_number,
                amount=invoice.total_amount,
                counterparty_name=invoice.counterparty_name,
                invoice_date=invoice.invoice_date,
                confidence=100,
                invoice_status=invoice.status,
                manually_linked=True,
            )
        )
    )
    await db.commit()

    logger.info(
        "Invoice linked manually",
        transaction_id=str(transaction.id),
        company_id=company_id,
        invoice_id=invoice_id,
        invoice_kind=kind.value,
        linked_by=actor.user_id,
    )
    return transaction


async def unlink_invoice(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    company_id: str,
    transaction_id: UUID,
    actor: Actor,
) -> WorkflowOutcome:
    """Clear the invoice link; a confirmed transaction is unconfirmed on the way."""
    transaction = await _get_transaction(db, company_id, transaction_id)
    state = transaction.match_state
    if isinstance(state, Unmatched):
        return WorkflowOutcome(transaction=transaction)

    transaction.apply_match_state(Unmatched())
    if isinstance(state, Confirmed):
        await matched_payments.delete_for_transaction(db, company_id, transaction.id)
    await db.commit()

    logger.info(
        "Invoice unlinked",
        transaction_id=str(transaction.id),
        company_id=company_id,
        invoice_id=state.invoice.invoice_id,
        was_confirmed=isinstance(state, Confirmed),
        unlinked_by=actor.user_id,
    )
    failure = None
    if isinstance(state, Confirmed):
        failure = await _set_invoice_paid(directory, transaction, state.invoice, paid=False)
    return _outcome(transaction, failure)


# =============================================================================
# Imports
# =============================================================================


async def list_imports(db: AsyncSession, company_id: str) -> list[BankImport]:
    result = await db.execute(
        select(BankImport).where(BankImport.company_id == company_id).order_by(BankImport.imported_at.desc())
    )
    return list(result.scalars().all())


async def get_import(db: AsyncSession, company_id: str, import_id: UUID) -> tuple[BankImport, ImportCounts]:
    """Return the import with live status counts of its transactions."""
    result = await db.execute(
        select(BankImport).where(BankImport.id == import_id, BankImport.company_id == company_id)
    )
    bank_import = result.scalar_one_or_none()
    if bank_import is None:
        raise ImportNotFoundError(f"Import {import_id} not found")

    counts_result = await db.execute(
        select(BankTransaction.status, func.count(BankTransaction.id))
        .where(BankTransaction.import_id == import_id)
        .group_by(BankTransaction.status)
    )
    counts = {TransactionStatus(status): count for status, count in counts_result.all()}
    return bank_import, ImportCounts(
        confirmed=counts.get(TransactionStatus.CONFIRMED, 0),
        pending=counts.get(TransactionStatus.PENDING, 0),
        unmatched=counts.get(TransactionStatus.UNMATCHED, 0),
    )


async def list_transactions(
    db: AsyncSession,
    company_id: str,
    *,
    import_id: UUID | None = None,
    status: TransactionStatus | None = None,
) -> list[BankTransaction]:
    query = select(BankTransaction).where(BankTransaction.company_id == company_id)
    if import_id is not None:
        query = query.where(BankTransaction.import_id == import_id)
    if status is not None:
        query = query.where(BankTransaction.status == status)
    result = await db.execute(query.order_by(BankTransaction.txn_date, BankTransaction.created_at))
    return list(result.scalars().all())


async def delete_import(
    db: AsyncSession,
    directory: InvoiceDirectory,
    *,
    company_id: str,
    import_id: UUID,
) -> list[InvoiceSyncFailure]:
    """Delete an import together with its transactions and their matched payments.

    Invoices settled by the import's confirmed transactions are marked unpaid
    after the delete is committed. Failed invoice calls are returned.
    """
    result = await db.execute(
        select(BankImport).where(BankImport.id == import_id, BankImport.company_id == company_id)
    )
    bank_import = result.scalar_one_or_none()
    if bank_import is None:
        raise ImportNotFoundError(f"Import {import_id} not found")

    confirmed = await db.execute(
        select(BankTransaction).where(
            BankTransaction.import_id == import_id,
            BankTransaction.status == TransactionStatus.CONFIRMED,
        )
    )
    settled = [(txn, txn.linked_invoice) for txn in confirmed.scalars().all() if txn.linked_invoice]

    payments = await db.execute(delete(MatchedPayment).where(MatchedPayment.import_id == import_id))
    transactions = await db.execute(delete(BankTransaction).where(BankTransaction.import_id == import_id))
    await db.delete(bank_import)
    await db.commit()

    failures: list[InvoiceSyncFailure] = []
    for transaction, invoice in settled:
        failure = await _set_invoice_paid(directory, transaction, invoice, paid=False)
        if failure:
            failures.append(failure)

    logger.info(
        "Bank import deleted",
        company_id=company_id,
        import_id=str(import_id),
        transactions_deleted=transactions.rowcount,
        matched_payments_deleted=payments.rowcount,
        invoices_unpaid=len(settled) - len(failures),
        invoice_sync_failures=len(failures),
    )
    return failures
