"""Invoice shape returned by the invoice service."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from bankrecon.models import InvoiceKind


class Invoice(BaseModel):
    """Outstanding sales or purchase invoice."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    invoice_number: str
    total_amount: Decimal
    counterparty_name: str = ""
    invoice_date: date | None = None
    status: str | None = None
    kind: InvoiceKind | None = None
