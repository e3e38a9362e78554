"""Matched payment audit records: which invoices are already settled by a confirmed transaction."""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.models import BankTransaction, InvoiceKind, MatchedPayment


async def is_invoice_matched(
    db: AsyncSession,
    company_id: str,
    invoice_id: str,
    kind: InvoiceKind,
    *,
    exclude_transaction_id: UUID | None = None,
) -> bool:
    """Return True if a confirmed transaction already settles this invoice."""
    query = select(MatchedPayment.id).where(
        MatchedPayment.company_id == company_id,
        MatchedPayment.invoice_id == invoice_id,
        MatchedPayment.invoice_kind == kind,
    )
    if exclude_transaction_id is not None:
        query = query.where(MatchedPayment.transaction_id != exclude_transaction_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def get_matched_invoice_keys(db: AsyncSession, company_id: str) -> set[tuple[InvoiceKind, str]]:
    """Return (kind, invoice id) for every invoice with a matched payment."""
    result = await db.execute(
        select(MatchedPayment.invoice_kind, MatchedPayment.invoice_id).where(
            MatchedPayment.company_id == company_id
        )
    )
    return {(InvoiceKind(kind), invoice_id) for kind, invoice_id in result.all()}


async def get_matched_payment_for_transaction(
    db: AsyncSession, company_id: str, transaction_id: UUID
) -> MatchedPayment | None:
    result = await db.execute(
        select(MatchedPayment).where(
            MatchedPayment.company_id == company_id,
            MatchedPayment.transaction_id == transaction_id,
        )
    )
    return result.scalars().first()


def build_matched_payment(transaction: BankTransaction, matched_by: str, matched_by_name: str | None) -> MatchedPayment:
    """Audit record for a transaction that is being confirmed; caller adds it to the session."""
    return MatchedPayment(
        company_id=transaction.company_id,
        invoice_id=transaction.matched_invoice_id,
        invoice_kind=transaction.matched_invoice_kind,
        invoice_number=transaction.matched_invoice_number or transaction.matched_invoice_id,
        transaction_id=transaction.id,
        import_id=transaction.import_id,
        matched_by=matched_by,
        matched_by_name=matched_by_name,
    )


async def delete_for_transaction(db: AsyncSession, company_id: str, transaction_id: UUID) -> int:
    """Remove the audit record of a transaction; returns the number of rows deleted."""
    result = await db.execute(
        delete(MatchedPayment).where(
            MatchedPayment.company_id == company_id,
            MatchedPayment.transaction_id == transaction_id,
        )
    )
    return result.rowcount or 0
