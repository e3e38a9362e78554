"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from bankrecon.deps import CurrentActor, DbSession, InvoiceDirectoryDep

    async def my_endpoint(db: DbSession, actor: CurrentActor, directory: InvoiceDirectoryDep):
        ...

Tests replace the invoice collaborator with
``app.dependency_overrides[get_invoice_directory]``.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon.auth import get_current_actor
from bankrecon.database import get_db
from bankrecon.services.invoices import HttpInvoiceDirectory, InvoiceDirectory
from bankrecon.services.reconciliation_store import Actor


def get_invoice_directory() -> InvoiceDirectory:
    return HttpInvoiceDirectory()


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
InvoiceDirectoryDep = Annotated[InvoiceDirectory, Depends(get_invoice_directory)]

__all__ = ["CurrentActor", "DbSession", "InvoiceDirectoryDep", "get_invoice_directory"]
