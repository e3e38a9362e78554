"""Invoice matching engine.

Scores every outstanding invoice on the transaction's side (sales invoices
for money in, purchase invoices for money out) with additive, independently
capped signals and returns the candidates ranked by confidence. Pure
in-memory computation: callers fetch the invoices once per batch.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

import yaml

from bankrecon.config import settings
from bankrecon.logger import get_logger
from bankrecon.models import InvoiceKind, MatchStatus
from bankrecon.schemas.invoice import Invoice
from bankrecon.services.invoice_numbers import extract_invoice_numbers, normalize_invoice_number

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScoringConfig:
    """Heuristic scoring constants. Tiers are (upper bound, points), checked in order."""

    number_exact: int
    number_partial: int
    number_in_text: int
    amount_tiers: tuple[tuple[Decimal, int], ...]
    amount_percent: Decimal
    amount_percent_score: int
    date_tiers: tuple[tuple[int, int], ...]
    name_token_score: int
    name_token_cap: int
    name_token_min_length: int
    beneficiary_score: int
    max_confidence: int
    candidate_floor: int
    confirm_threshold: int


DEFAULT_CONFIG = ScoringConfig(
    number_exact=70,
    number_partial=40,
    number_in_text=30,
    amount_tiers=((Decimal("0.01"), 40), (Decimal("1.00"), 30), (Decimal("10.00"), 20)),
    amount_percent=Decimal("0.05"),
    amount_percent_score=10,
    date_tiers=((7, 15), (30, 10), (90, 5)),
    name_token_score=5,
    name_token_cap=15,
    name_token_min_length=3,
    beneficiary_score=20,
    max_confidence=100,
    candidate_floor=15,
    confirm_threshold=80,
)

_config_cache: ScoringConfig | None = None


def _config_path() -> Path:
    if settings.reconciliation_config_path:
        return Path(settings.reconciliation_config_path)
    return Path(__file__).resolve().parents[2] / "config" / "reconciliation.yaml"


def _config_from_mapping(raw: dict[str, Any], base: ScoringConfig) -> ScoringConfig:
    scoring = raw.get("scoring", {}) or {}
    number = scoring.get("invoice_number", {}) or {}
    amount = scoring.get("amount", {}) or {}
    dates = scoring.get("date", {}) or {}
    counterparty = scoring.get("counterparty", {}) or {}
    thresholds = raw.get("thresholds", {}) or {}

    amount_tiers = base.amount_tiers
    if "tiers" in amount:
        amount_tiers = tuple((Decimal(str(bound)), int(points)) for bound, points in amount["tiers"])
    date_tiers = base.date_tiers
    if "tiers" in dates:
        date_tiers = tuple((int(days), int(points)) for days, points in dates["tiers"])

    return ScoringConfig(
        number_exact=int(number.get("exact", base.number_exact)),
        number_partial=int(number.get("partial", base.number_partial)),
        number_in_text=int(number.get("in_text", base.number_in_text)),
        amount_tiers=amount_tiers,
        amount_percent=Decimal(str(amount.get("percent", base.amount_percent))),
        amount_percent_score=int(amount.get("percent_score", base.amount_percent_score)),
        date_tiers=date_tiers,
        name_token_score=int(counterparty.get("per_token", base.name_token_score)),
        name_token_cap=int(counterparty.get("cap", base.name_token_cap)),
        name_token_min_length=int(counterparty.get("min_token_length", base.name_token_min_length)),
        beneficiary_score=int(scoring.get("beneficiary", base.beneficiary_score)),
        max_confidence=int(scoring.get("max_confidence", base.max_confidence)),
        candidate_floor=int(thresholds.get("candidate_floor", base.candidate_floor)),
        confirm_threshold=int(thresholds.get("confirm", base.confirm_threshold)),
    )


def load_scoring_config(force_reload: bool = False) -> ScoringConfig:
    """Load scoring constants from YAML if available.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_CONFIG
    config_path = _config_path()

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            config = _config_from_mapping(raw, DEFAULT_CONFIG)
        except (yaml.YAMLError, AttributeError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning(
                "Failed to load scoring config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            config = DEFAULT_CONFIG

    confirm_env = os.getenv("RECONCILIATION_CONFIRM_THRESHOLD")
    floor_env = os.getenv("RECONCILIATION_CANDIDATE_FLOOR")
    if confirm_env:
        config = replace(config, confirm_threshold=int(confirm_env))
    if floor_env:
        config = replace(config, candidate_floor=int(floor_env))

    _config_cache = config
    return config


def clear_scoring_config_cache() -> None:
    global _config_cache
    _config_cache = None


class MatchableTransaction(Protocol):
    txn_date: date
    amount: Decimal
    description: str
    beneficiary: str | None


@dataclass
class MatchedInvoice:
    """Scored invoice candidate for one transaction."""

    invoice_id: str
    invoice_number: str
    amount: Decimal
    counterparty_name: str
    invoice_date: date | None
    confidence: int
    kind: InvoiceKind
    status: str | None = None
    # Points per signal, for the review screen
    breakdown: dict[str, int] = field(default_factory=dict)


@dataclass
class MatchResult:
    transaction: Any
    status: MatchStatus
    confidence: int
    matched_invoice: MatchedInvoice | None = None
    possible_matches: list[MatchedInvoice] = field(default_factory=list)


# =============================================================================
# Signals
# =============================================================================


@dataclass(frozen=True)
class NumberEvidence:
    """Inputs shared by the invoice-number rules."""

    extracted: tuple[str, ...]
    description: str
    invoice_number: str

    @property
    def normalized_invoice(self) -> str:
        return normalize_invoice_number(self.invoice_number)


def _exact_number(evidence: NumberEvidence) -> bool:
    target = evidence.normalized_invoice
    return bool(target) and any(normalize_invoice_number(token) == target for token in evidence.extracted)


def _partial_number(evidence: NumberEvidence) -> bool:
    target = evidence.normalized_invoice
    if not target:
        return False
    for token in evidence.extracted:
        normalized = normalize_invoice_number(token)
        if normalized and (normalized in target or target in normalized):
            return True
    return False


def _number_in_text(evidence: NumberEvidence) -> bool:
    return bool(evidence.invoice_number) and evidence.invoice_number.upper() in evidence.description.upper()


# Ordered; the first rule that applies is the only one scored.
NUMBER_RULES: list[tuple[str, Callable[[NumberEvidence], bool], Callable[[ScoringConfig], int]]] = [
    ("number_exact", _exact_number, lambda config: config.number_exact),
    ("number_partial", _partial_number, lambda config: config.number_partial),
    ("number_in_text", _number_in_text, lambda config: config.number_in_text),
]


def score_invoice_number(
    extracted: Iterable[str], description: str, invoice_number: str, config: ScoringConfig
) -> tuple[str | None, int]:
    """Return the name and points of the first applicable number rule."""
    evidence = NumberEvidence(tuple(extracted), description, invoice_number)
    for name, applies, points in NUMBER_RULES:
        if applies(evidence):
            return name, points(config)
    return None, 0


def score_amount(txn_amount: Decimal, invoice_amount: Decimal, config: ScoringConfig) -> int:
    """Score absolute transaction amount against the invoice total."""
    diff = abs(abs(txn_amount) - invoice_amount)
    for bound, points in config.amount_tiers:
        if diff < bound:
            return points
    if diff < invoice_amount * config.amount_percent:
        return config.amount_percent_score
    return 0


def score_date(txn_date: date, invoice_date: date | None, config: ScoringConfig) -> int:
    """Score date proximity in whole days."""
    if invoice_date is None:
        return 0
    diff_days = abs((txn_date - invoice_date).days)
    for max_days, points in config.date_tiers:
        if diff_days <= max_days:
            return points
    return 0


def score_counterparty_tokens(counterparty_name: str, description: str, config: ScoringConfig) -> int:
    """Points per counterparty name token found in the description, capped."""
    lowered = description.lower()
    tokens = [part for part in counterparty_name.lower().split() if len(part) >= config.name_token_min_length]
    hits = sum(1 for token in tokens if token in lowered)
    return min(hits * config.name_token_score, config.name_token_cap)


def score_beneficiary(beneficiary: str | None, counterparty_name: str, config: ScoringConfig) -> int:
    """Bonus when the beneficiary and counterparty names contain one another."""
    if not beneficiary or not beneficiary.strip() or not counterparty_name.strip():
        return 0
    beneficiary_lower = beneficiary.strip().lower()
    name_lower = counterparty_name.strip().lower()
    if beneficiary_lower in name_lower or name_lower in beneficiary_lower:
        return config.beneficiary_score
    return 0


# =============================================================================
# Candidates
# =============================================================================


def score_invoice(
    transaction: MatchableTransaction,
    invoice: Invoice,
    kind: InvoiceKind,
    config: ScoringConfig,
    extracted: Iterable[str] | None = None,
) -> MatchedInvoice | None:
    """Score one invoice; returns None when the candidate does not clear the floor."""
    description = transaction.description or ""
    if extracted is None:
        extracted = extract_invoice_numbers(description)

    rule, number_points = score_invoice_number(extracted, description, invoice.invoice_number, config)
    breakdown = {
        "invoice_number": number_points,
        "amount": score_amount(transaction.amount, invoice.total_amount, config),
        "date": score_date(transaction.txn_date, invoice.invoice_date, config),
        "counterparty": score_counterparty_tokens(invoice.counterparty_name, description, config),
        "beneficiary": score_beneficiary(transaction.beneficiary, invoice.counterparty_name, config),
    }
    if rule:
        breakdown[rule] = number_points

    confidence = min(
        sum(breakdown[key] for key in ("invoice_number", "amount", "date", "counterparty", "beneficiary")),
        config.max_confidence,
    )
    if confidence <= config.candidate_floor:
        return None

    return MatchedInvoice(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount=invoice.total_amount,
        counterparty_name=invoice.counterparty_name,
        invoice_date=invoice.invoice_date,
        confidence=confidence,
        kind=kind,
        status=invoice.status,
        breakdown=breakdown,
    )


def find_possible_matches(
    transaction: MatchableTransaction,
    invoices: Iterable[Invoice],
    kind: InvoiceKind,
    config: ScoringConfig,
) -> list[MatchedInvoice]:
    """Score all invoices and return survivors, highest confidence first.

    The sort is stable, so equal scores keep the invoice order supplied.
    """
    extracted = extract_invoice_numbers(transaction.description or "")
    candidates = []
    for invoice in invoices:
        candidate = score_invoice(transaction, invoice, kind, config, extracted=extracted)
        if candidate is not None:
            candidates.append(candidate)
    candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)
    return candidates


def classify(confidence: int, config: ScoringConfig) -> MatchStatus:
    if confidence >= config.confirm_threshold:
        return MatchStatus.MATCHED
    if confidence > config.candidate_floor:
        return MatchStatus.PARTIAL
    return MatchStatus.UNMATCHED


def invoice_kind_for(amount: Decimal) -> InvoiceKind:
    """Money in settles sales invoices; money out settles purchase invoices."""
    return InvoiceKind.OUTGOING if amount >= 0 else InvoiceKind.INCOMING


def match_transaction(
    transaction: MatchableTransaction,
    outgoing_invoices: Iterable[Invoice],
    incoming_invoices: Iterable[Invoice],
    *,
    config: ScoringConfig | None = None,
    max_runner_ups: int | None = None,
) -> MatchResult:
    config = config or load_scoring_config()
    limit = max_runner_ups if max_runner_ups is not None else settings.max_runner_up_candidates
    kind = invoice_kind_for(transaction.amount)
    invoices = outgoing_invoices if kind == InvoiceKind.OUTGOING else incoming_invoices

    candidates = find_possible_matches(transaction, invoices, kind, config)
    if not candidates:
        return MatchResult(transaction=transaction, status=MatchStatus.UNMATCHED, confidence=0)

    best = candidates[0]
    return MatchResult(
        transaction=transaction,
        status=classify(best.confidence, config),
        confidence=best.confidence,
        matched_invoice=best,
        possible_matches=candidates[:limit],
    )


def match_transactions(
    transactions: Iterable[MatchableTransaction],
    outgoing_invoices: Iterable[Invoice],
    incoming_invoices: Iterable[Invoice],
    *,
    exclude: Collection[tuple[InvoiceKind, str]] = (),
    config: ScoringConfig | None = None,
) -> list[MatchResult]:
    """Match a batch of transactions against one snapshot of outstanding invoices.

    Invoices listed in ``exclude`` as (kind, invoice id) pairs, i.e. already
    settled through a confirmed match, are never proposed.
    """
    config = config or load_scoring_config()
    outgoing = [invoice for invoice in outgoing_invoices if (InvoiceKind.OUTGOING, invoice.id) not in exclude]
    incoming = [invoice for invoice in incoming_invoices if (InvoiceKind.INCOMING, invoice.id) not in exclude]
    return [match_transaction(txn, outgoing, incoming, config=config) for txn in transactions]
