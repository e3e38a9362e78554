"""Test fixtures and configuration."""

import logging
import os
import sys
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set ENVIRONMENT for pydantic settings before the app package is imported
os.environ["ENVIRONMENT"] = "testing"

from bankrecon.logger import get_logger  # noqa: E402
from bankrecon.models import InvoiceKind  # noqa: E402
from bankrecon.schemas import Invoice  # noqa: E402
from bankrecon.services.invoices import InvoiceLookupError  # noqa: E402
from bankrecon.services.matching import clear_scoring_config_cache  # noqa: E402

logger = get_logger(__name__)

TEST_DATABASE_URL = "sqlite+aiosqlite://"
OWNER_ID = "owner-1"
OWNER_NAME = "Ops User"
COMPANY_ID = "company-1"


# --- Scoring Config Cache Cleanup ---
@pytest.fixture(autouse=True)
def cleanup_scoring_config_cache():
    """Clear the cached scoring config so env overrides never leak between tests."""
    clear_scoring_config_cache()
    yield
    clear_scoring_config_cache()


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


# --- Invoice collaborator ---
class FakeInvoiceDirectory:
    """In-memory invoice directory recording paid-flag calls."""

    def __init__(self) -> None:
        self.invoices: dict[InvoiceKind, list[Invoice]] = {InvoiceKind.OUTGOING: [], InvoiceKind.INCOMING: []}
        self.paid: set[tuple[InvoiceKind, str]] = set()
        self.calls: list[tuple[str, InvoiceKind, str]] = []
        self.lookup_calls = 0
        self.fail_lookup = False
        self.fail_mark = False

    def add(self, kind: InvoiceKind, **fields) -> Invoice:
        invoice = Invoice(kind=kind, **fields)
        self.invoices[kind].append(invoice)
        return invoice

    async def get_outstanding_invoices(self, owner_id: str, company_id: str, kind: InvoiceKind) -> list[Invoice]:
        self.lookup_calls += 1
        if self.fail_lookup:
            raise InvoiceLookupError("invoice service timed out")
        return [invoice for invoice in self.invoices[kind] if (kind, invoice.id) not in self.paid]

    async def mark_invoice_paid(self, invoice_id: str, kind: InvoiceKind) -> None:
        self.calls.append(("paid", kind, invoice_id))
        if self.fail_mark:
            raise InvoiceLookupError("invoice service returned 502")
        self.paid.add((kind, invoice_id))

    async def mark_invoice_unpaid(self, invoice_id: str, kind: InvoiceKind) -> None:
        self.calls.append(("unpaid", kind, invoice_id))
        if self.fail_mark:
            raise InvoiceLookupError("invoice service returned 502")
        self.paid.discard((kind, invoice_id))


@pytest.fixture
def invoice_directory() -> FakeInvoiceDirectory:
    directory = FakeInvoiceDirectory()
    directory.add(
        InvoiceKind.OUTGOING,
        id="inv-out-1",
        invoice_number="2024-001",
        total_amount=Decimal("1250.00"),
        counterparty_name="Klant BV",
        invoice_date=date(2024, 1, 15),
        status="sent",
    )
    directory.add(
        InvoiceKind.OUTGOING,
        id="inv-out-2",
        invoice_number="2024-002",
        total_amount=Decimal("980.00"),
        counterparty_name="Bakkerij Jansen",
        invoice_date=date(2024, 1, 20),
        status="sent",
    )
    directory.add(
        InvoiceKind.INCOMING,
        id="inv-in-1",
        invoice_number="INV-5501",
        total_amount=Decimal("312.50"),
        counterparty_name="Drukkerij Noord",
        invoice_date=date(2024, 1, 10),
        status="received",
    )
    return directory


# --- Database ---
@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory SQLite engine with the full schema, one per test."""
    from bankrecon import models  # noqa: F401
    from bankrecon.database import Base

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_database_connection(db_engine):
    """Point the get_db dependency at the test engine."""
    from bankrecon import database

    test_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    previous = database.set_test_session_maker(test_maker)
    yield test_maker
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture(scope="function")
async def db(patch_database_connection):
    """Session on the per-test engine; commits are real but the database dies with the test."""
    async with patch_database_connection() as session:
        yield session


# --- HTTP ---
@pytest.fixture
def auth_token() -> str:
    from bankrecon.security import create_access_token

    return create_access_token(data={"sub": OWNER_ID, "name": OWNER_NAME})


@pytest_asyncio.fixture(scope="function")
async def client(auth_token, invoice_directory):
    """Authenticated async client with the fake invoice directory injected."""
    from bankrecon.deps import get_invoice_directory
    from bankrecon.main import app

    app.dependency_overrides[get_invoice_directory] = lambda: invoice_directory
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(
            transport=transport,
            base_url="http://test",
            headers={"Authorization": f"Bearer {auth_token}"},
        ) as client_instance:
            yield client_instance
    finally:
        app.dependency_overrides.pop(get_invoice_directory, None)


@pytest_asyncio.fixture(scope="function")
async def public_client():
    """Async client without auth headers."""
    from bankrecon.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
        yield client_instance
