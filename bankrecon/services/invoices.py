"""Invoice collaborator: outstanding invoice lookup and paid-flag updates."""

from __future__ import annotations

from typing import Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from bankrecon.config import settings
from bankrecon.logger import get_logger
from bankrecon.models import InvoiceKind
from bankrecon.schemas.invoice import Invoice

logger = get_logger(__name__)

_INVOICE_LIST = TypeAdapter(list[Invoice])


class InvoiceLookupError(Exception):
    """Raised when the invoice service cannot be reached or answers badly."""


class InvoiceDirectory(Protocol):
    """Read access to outstanding invoices plus the paid flag."""

    async def get_outstanding_invoices(
        self, owner_id: str, company_id: str, kind: InvoiceKind
    ) -> list[Invoice]: ...

    async def mark_invoice_paid(self, invoice_id: str, kind: InvoiceKind) -> None: ...

    async def mark_invoice_unpaid(self, invoice_id: str, kind: InvoiceKind) -> None: ...


class HttpInvoiceDirectory:
    """Invoice directory backed by the invoice service REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.invoice_service_url).rstrip("/")
        seconds = timeout_seconds or settings.invoice_service_timeout_seconds
        self.timeout = httpx.Timeout(seconds, connect=min(seconds, 5.0))
        self.token = token if token is not None else settings.invoice_service_token
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    async def get_outstanding_invoices(
        self, owner_id: str, company_id: str, kind: InvoiceKind
    ) -> list[Invoice]:
        params = {"owner_id": owner_id, "kind": kind.value, "outstanding": "true"}
        try:
            async with self._client() as client:
                response = await client.get(f"/companies/{company_id}/invoices", params=params)
                response.raise_for_status()
                invoices = _INVOICE_LIST.validate_python(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as exc:
            logger.error(
                "Outstanding invoice fetch failed",
                company_id=company_id,
                kind=kind.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise InvoiceLookupError(f"Could not fetch {kind.value} invoices: {exc}") from exc

        return [invoice.model_copy(update={"kind": kind}) for invoice in invoices]

    async def _set_paid(self, invoice_id: str, kind: InvoiceKind, paid: bool) -> None:
        path = f"/invoices/{kind.value}/{invoice_id}/paid"
        try:
            async with self._client() as client:
                response = await (client.put(path) if paid else client.delete(path))
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise InvoiceLookupError(
                f"Could not mark {kind.value} invoice {invoice_id} as {'paid' if paid else 'unpaid'}: {exc}"
            ) from exc

    async def mark_invoice_paid(self, invoice_id: str, kind: InvoiceKind) -> None:
        await self._set_paid(invoice_id, kind, paid=True)

    async def mark_invoice_unpaid(self, invoice_id: str, kind: InvoiceKind) -> None:
        await self._set_paid(invoice_id, kind, paid=False)


async def fetch_invoices_for_matching(
    directory: InvoiceDirectory, owner_id: str, company_id: str
) -> tuple[list[Invoice], list[Invoice]]:
    """Fetch outgoing and incoming invoices once for a whole matching pass.

    Any failure propagates; matching never runs against a partial set.
    """
    outgoing = await directory.get_outstanding_invoices(owner_id, company_id, InvoiceKind.OUTGOING)
    incoming = await directory.get_outstanding_invoices(owner_id, company_id, InvoiceKind.INCOMING)
    return outgoing, incoming
