"""Tests for invoice matching: signal scoring, ranking, routing and config."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from bankrecon.config import settings
from bankrecon.models import InvoiceKind, MatchStatus
from bankrecon.schemas import Invoice
from bankrecon.services.matching import (
    DEFAULT_CONFIG,
    classify,
    find_possible_matches,
    load_scoring_config,
    match_transaction,
    match_transactions,
    score_amount,
    score_beneficiary,
    score_counterparty_tokens,
    score_date,
    score_invoice_number,
)
from bankrecon.services.statement_parsing import TransactionDraft


def _txn(
    amount: str,
    description: str = "",
    txn_date: date = date(2024, 1, 16),
    beneficiary: str | None = None,
) -> TransactionDraft:
    return TransactionDraft(
        temp_id="csv-0",
        txn_date=txn_date,
        amount=Decimal(amount),
        description=description,
        beneficiary=beneficiary,
    )


def _invoice(
    invoice_id: str,
    number: str,
    total: str,
    counterparty: str = "Klant BV",
    invoice_date: date | None = date(2024, 1, 15),
) -> Invoice:
    return Invoice(
        id=invoice_id,
        invoice_number=number,
        total_amount=Decimal(total),
        counterparty_name=counterparty,
        invoice_date=invoice_date,
        status="sent",
    )


# --- Scenarios ---


def test_end_to_end_exact_match_is_confirm_eligible() -> None:
    txn = _txn("1250.00", "Betaling factuur 2024-001 dank")
    invoice = _invoice("inv-1", "2024-001", "1250.00")

    result = match_transaction(txn, [invoice], [], config=DEFAULT_CONFIG)

    assert result.status == MatchStatus.MATCHED
    assert result.confidence == 100
    best = result.matched_invoice
    assert best is not None
    assert best.invoice_id == "inv-1"
    assert best.kind == InvoiceKind.OUTGOING
    assert best.breakdown["number_exact"] == 70
    assert best.breakdown["invoice_number"] == 70
    assert best.breakdown["amount"] == 40
    assert best.breakdown["date"] == 15
    assert result.possible_matches == [best]


def test_unmatched_scenario_returns_no_candidates() -> None:
    txn = _txn("42.17", "Onbekende overschrijving")
    invoices = [
        _invoice("inv-1", "2024-001", "1250.00", invoice_date=date(2023, 6, 1)),
        _invoice("inv-2", "2024-002", "980.00", counterparty="Bakkerij Jansen", invoice_date=date(2023, 5, 1)),
    ]

    result = match_transaction(txn, invoices, [], config=DEFAULT_CONFIG)

    assert result.status == MatchStatus.UNMATCHED
    assert result.confidence == 0
    assert result.matched_invoice is None
    assert result.possible_matches == []


def test_amount_only_match_is_partial() -> None:
    txn = _txn("980.00", "Overschrijving", txn_date=date(2024, 6, 1))
    invoice = _invoice("inv-2", "2024-002", "980.00", counterparty="Bakkerij Jansen")

    result = match_transaction(txn, [invoice], [], config=DEFAULT_CONFIG)

    assert result.status == MatchStatus.PARTIAL
    assert result.confidence == 40


def test_candidate_at_floor_is_discarded() -> None:
    # Date within 7 days is the only signal: exactly 15 points
    txn = _txn("5.00", "Overschrijving")
    invoice = _invoice("inv-1", "2024-001", "1250.00", counterparty="Xy")

    assert find_possible_matches(txn, [invoice], InvoiceKind.OUTGOING, DEFAULT_CONFIG) == []
    assert match_transaction(txn, [invoice], [], config=DEFAULT_CONFIG).status == MatchStatus.UNMATCHED


# --- Routing ---


def test_negative_amount_only_considers_purchase_invoices() -> None:
    txn = _txn("-1250.00", "Betaling factuur 2024-001 dank")
    sales = _invoice("inv-out", "2024-001", "1250.00")
    purchase = _invoice("inv-in", "2024-001", "1250.00")

    result = match_transaction(txn, [sales], [purchase], config=DEFAULT_CONFIG)

    assert result.matched_invoice is not None
    assert result.matched_invoice.invoice_id == "inv-in"
    assert result.matched_invoice.kind == InvoiceKind.INCOMING
    assert all(candidate.kind == InvoiceKind.INCOMING for candidate in result.possible_matches)


def test_directional_invariant_over_mixed_batch() -> None:
    sales = [_invoice(f"out-{i}", f"2024-00{i}", f"{i}00.00") for i in range(1, 6)]
    purchases = [_invoice(f"in-{i}", f"2024-00{i}", f"{i}00.00") for i in range(1, 6)]
    transactions = [_txn(f"{sign}{i}00.00", f"factuur 2024-00{i}") for i in range(1, 6) for sign in ("", "-")]

    results = match_transactions(transactions, sales, purchases, config=DEFAULT_CONFIG)

    for result in results:
        expected = InvoiceKind.OUTGOING if result.transaction.amount >= 0 else InvoiceKind.INCOMING
        assert result.possible_matches
        assert all(candidate.kind == expected for candidate in result.possible_matches)


def test_zero_amount_routes_to_sales_invoices() -> None:
    result = match_transaction(_txn("0.00", "2024-001"), [_invoice("inv-1", "2024-001", "0.00")], [])

    assert result.matched_invoice is not None
    assert result.matched_invoice.kind == InvoiceKind.OUTGOING


# --- Properties ---


def test_confidence_bounds_and_floor() -> None:
    invoices = [
        _invoice("a", "2024-001", "1250.00", counterparty="Klant Groot Holding BV"),
        _invoice("b", "2024-0012", "1249.50", invoice_date=date(2024, 2, 10)),
        _invoice("c", "INV-777", "1300.00", invoice_date=date(2024, 3, 30)),
        _invoice("d", "X-1", "10.00", counterparty="Ab", invoice_date=None),
    ]
    txn = _txn("1250.00", "factuur 2024-001 klant groot holding INV-777", beneficiary="Klant Groot")

    candidates = find_possible_matches(txn, invoices, InvoiceKind.OUTGOING, DEFAULT_CONFIG)

    assert candidates
    for candidate in candidates:
        assert DEFAULT_CONFIG.candidate_floor < candidate.confidence <= 100
    assert [c.confidence for c in candidates] == sorted((c.confidence for c in candidates), reverse=True)
    assert "d" not in [c.invoice_id for c in candidates]


def test_rematch_is_idempotent() -> None:
    invoices = [
        _invoice("a", "2024-001", "1250.00"),
        _invoice("b", "2024-002", "1250.00"),
        _invoice("c", "2024-003", "1240.00"),
    ]
    txn = _txn("1250.00", "Klant BV betaling")

    first = match_transaction(txn, invoices, [], config=DEFAULT_CONFIG)
    second = match_transaction(txn, invoices, [], config=DEFAULT_CONFIG)

    assert first.confidence == second.confidence
    assert [c.invoice_id for c in first.possible_matches] == [c.invoice_id for c in second.possible_matches]


def test_equal_scores_keep_supplied_order() -> None:
    invoices = [_invoice(invoice_id, "9999-999", "1250.00") for invoice_id in ("z", "a", "m")]

    result = match_transaction(_txn("1250.00", "betaling"), invoices, [], config=DEFAULT_CONFIG)

    assert [c.invoice_id for c in result.possible_matches] == ["z", "a", "m"]


def test_runner_ups_are_capped() -> None:
    invoices = [_invoice(f"inv-{i}", f"N{i}", "1250.00") for i in range(8)]

    result = match_transaction(_txn("1250.00"), invoices, [], config=DEFAULT_CONFIG)

    assert len(result.possible_matches) == settings.max_runner_up_candidates
    assert len(match_transaction(_txn("1250.00"), invoices, [], max_runner_ups=2).possible_matches) == 2


def test_match_transactions_excludes_settled_invoices() -> None:
    settled = _invoice("inv-1", "2024-001", "1250.00")
    other = _invoice("inv-2", "2024-002", "1250.00")
    txn = _txn("1250.00", "factuur 2024-001")

    results = match_transactions(
        [txn], [settled, other], [], exclude={(InvoiceKind.OUTGOING, "inv-1")}, config=DEFAULT_CONFIG
    )

    assert [c.invoice_id for c in results[0].possible_matches] == ["inv-2"]


def test_exclusion_is_per_invoice_kind() -> None:
    purchase = _invoice("shared-id", "INV-5501", "312.50")

    results = match_transactions(
        [_txn("-312.50", "INV-5501")],
        [],
        [purchase],
        exclude={(InvoiceKind.OUTGOING, "shared-id")},
        config=DEFAULT_CONFIG,
    )

    assert results[0].matched_invoice is not None
    assert results[0].matched_invoice.invoice_id == "shared-id"


# --- Signals ---


def test_invoice_number_rules_cascade() -> None:
    config = DEFAULT_CONFIG

    assert score_invoice_number(["2024-001"], "", "2024-001", config) == ("number_exact", 70)
    assert score_invoice_number(["inv_2024 001"], "", "INV-2024-001", config) == ("number_exact", 70)
    assert score_invoice_number(["2024-0012"], "", "2024-001", config) == ("number_partial", 40)
    assert score_invoice_number([], "betaling a/77 dank", "A/77", config) == ("number_in_text", 30)
    assert score_invoice_number(["2024-002"], "betaling", "2024-001", config) == (None, 0)
    assert score_invoice_number(["2024-001"], "2024-001", "", config) == (None, 0)


@pytest.mark.parametrize(
    ("txn_amount", "invoice_amount", "expected"),
    [
        ("1250.00", "1250.00", 40),
        ("-1250.00", "1250.00", 40),
        ("1250.50", "1250.00", 30),
        ("1255.00", "1250.00", 20),
        ("960.00", "1000.00", 10),
        ("900.00", "1000.00", 0),
    ],
)
def test_score_amount_tiers(txn_amount: str, invoice_amount: str, expected: int) -> None:
    assert score_amount(Decimal(txn_amount), Decimal(invoice_amount), DEFAULT_CONFIG) == expected


@pytest.mark.parametrize(("days", "expected"), [(0, 15), (7, 15), (8, 10), (30, 10), (31, 5), (90, 5), (91, 0)])
def test_score_date_tiers(days: int, expected: int) -> None:
    invoice_date = date(2024, 1, 15)

    assert score_date(invoice_date + timedelta(days=days), invoice_date, DEFAULT_CONFIG) == expected
    assert score_date(invoice_date - timedelta(days=days), invoice_date, DEFAULT_CONFIG) == expected


def test_score_date_without_invoice_date() -> None:
    assert score_date(date(2024, 1, 15), None, DEFAULT_CONFIG) == 0


def test_score_counterparty_tokens_capped_and_short_tokens_ignored() -> None:
    config = DEFAULT_CONFIG

    assert score_counterparty_tokens("Klant BV", "betaling klant bv", config) == 5
    assert score_counterparty_tokens("Bakkerij Jansen", "BAKKERIJ JANSEN januari", config) == 10
    assert score_counterparty_tokens("Groot Holding Noord West", "groot holding noord west", config) == 15
    assert score_counterparty_tokens("", "anything", config) == 0


@pytest.mark.parametrize(
    ("beneficiary", "counterparty", "expected"),
    [
        ("Klant", "Klant BV", 20),
        ("KLANT BV AMSTERDAM", "Klant BV", 20),
        ("Drukkerij Noord", "Klant BV", 0),
        (None, "Klant BV", 0),
        ("  ", "Klant BV", 0),
        ("Klant", "", 0),
    ],
)
def test_score_beneficiary(beneficiary: str | None, counterparty: str, expected: int) -> None:
    assert score_beneficiary(beneficiary, counterparty, DEFAULT_CONFIG) == expected


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [(100, MatchStatus.MATCHED), (80, MatchStatus.MATCHED), (79, MatchStatus.PARTIAL), (16, MatchStatus.PARTIAL), (15, MatchStatus.UNMATCHED)],
)
def test_classify_thresholds(confidence: int, expected: MatchStatus) -> None:
    assert classify(confidence, DEFAULT_CONFIG) == expected


# --- Config ---


def test_load_scoring_config_reads_repo_yaml() -> None:
    config = load_scoring_config()

    assert config == DEFAULT_CONFIG
    assert load_scoring_config() is config


def test_load_scoring_config_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECONCILIATION_CONFIRM_THRESHOLD", "90")
    monkeypatch.setenv("RECONCILIATION_CANDIDATE_FLOOR", "20")

    config = load_scoring_config(force_reload=True)

    assert config.confirm_threshold == 90
    assert config.candidate_floor == 20
    assert config.number_exact == DEFAULT_CONFIG.number_exact


def test_load_scoring_config_custom_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "reconciliation.yaml"
    path.write_text(
        "scoring:\n"
        "  invoice_number:\n"
        "    exact: 60\n"
        "  amount:\n"
        "    tiers:\n"
        "      - [0.01, 50]\n"
        "thresholds:\n"
        "  confirm: 85\n"
    )
    monkeypatch.setattr(settings, "reconciliation_config_path", str(path))

    config = load_scoring_config(force_reload=True)

    assert config.number_exact == 60
    assert config.amount_tiers == ((Decimal("0.01"), 50),)
    assert config.confirm_threshold == 85
    assert config.number_partial == DEFAULT_CONFIG.number_partial
    assert config.date_tiers == DEFAULT_CONFIG.date_tiers


@pytest.mark.parametrize("content", ["scoring: [unclosed", "scoring:\n  amount:\n    tiers: 5\n"])
def test_load_scoring_config_malformed_falls_back(tmp_path, monkeypatch: pytest.MonkeyPatch, content: str) -> None:
    path = tmp_path / "reconciliation.yaml"
    path.write_text(content)
    monkeypatch.setattr(settings, "reconciliation_config_path", str(path))

    assert load_scoring_config(force_reload=True) == DEFAULT_CONFIG


def test_threshold_change_reclassifies(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECONCILIATION_CONFIRM_THRESHOLD", "101")
    load_scoring_config(force_reload=True)

    result = match_transaction(_txn("1250.00", "factuur 2024-001"), [_invoice("inv-1", "2024-001", "1250.00")], [])

    assert result.confidence == 100
    assert result.status == MatchStatus.PARTIAL
