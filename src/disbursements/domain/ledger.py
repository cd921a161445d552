"""Ledger derivation and settlement rules for Final Disbursement Accounts.

Everything here is pure: functions take domain values and return new ones.
Persistence and logging happen in the services.
"""
from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from disbursements.domain.categories import CATEGORY_ORDER, CATEGORY_TABLE
from disbursements.domain.errors import InvalidStateError, ValidationError
from disbursements.domain.models import (
    ZERO,
    CostRecord,
    ExchangeRate,
    LedgerLine,
    LedgerTotals,
    LineOrigin,
    LineStatus,
    Payment,
    Side,
    StatusTally,
)
from disbursements.domain.money import round2, to_decimal, to_local, validate_rate

VENDOR_PLACEHOLDER = "Vendor — to assign"
DEFAULT_CLIENT = "Client"

_STATUS_TRANSITIONS: dict[LineStatus, frozenset[LineStatus]] = {
    LineStatus.OPEN: frozenset({LineStatus.PARTIALLY_SETTLED, LineStatus.SETTLED}),
    LineStatus.PARTIALLY_SETTLED: frozenset({LineStatus.SETTLED, LineStatus.OPEN}),
    LineStatus.SETTLED: frozenset({LineStatus.OPEN}),
}


def counterparty_for(side: Side, client_name: Optional[str]) -> str:
    if side is Side.AR:
        return (client_name or "").strip() or DEFAULT_CLIENT
    return VENDOR_PLACEHOLDER


def derive_ledger(
    cost: CostRecord,
    rate: ExchangeRate,
    client_name: Optional[str],
    comments: Optional[Mapping[str, str]] = None,
) -> list[LedgerLine]:
    """Turn a PDA cost record into FDA ledger lines.

    Categories are visited in CATEGORY_ORDER. Zero amounts are skipped and do
    not consume a line number, so line_no is dense over the emitted lines.
    Custom lines with a positive amount follow as AP lines. `comments` maps a
    category value to the PDA comment carried onto that line.
    """
    fx = validate_rate(rate.rate)
    comments = comments or {}
    lines: list[LedgerLine] = []

    for category in CATEGORY_ORDER:
        amount = cost.amount(category)
        if amount <= 0:
            continue
        info = CATEGORY_TABLE[category]
        lines.append(
            LedgerLine(
                line_no=len(lines) + 1,
                side=info.side,
                category=info.label,
                description=info.label,
                counterparty=counterparty_for(info.side, client_name),
                amount_usd=amount,
                amount_local=to_local(amount, fx),
                pda_field=category,
                comment=(comments.get(category.value) or "").strip() or None,
            )
        )

    for custom in cost.custom_lines:
        if custom.amount_usd <= 0:
            continue
        lines.append(
            LedgerLine(
                line_no=len(lines) + 1,
                side=Side.AP,
                category=custom.label,
                description=custom.label,
                counterparty=VENDOR_PLACEHOLDER,
                amount_usd=custom.amount_usd,
                amount_local=to_local(custom.amount_usd, fx),
                comment=custom.comment or None,
            )
        )
    return lines


def effective_rate(line: LedgerLine, header_rate: Decimal) -> Decimal:
    if line.custom_fx_rate is not None:
        return validate_rate(line.custom_fx_rate)
    return validate_rate(header_rate)


def reprice(line: LedgerLine, header_rate: Decimal) -> Decimal:
    return to_local(line.amount_usd, effective_rate(line, header_rate))


def next_line_no(lines: Iterable[LedgerLine]) -> int:
    return max((ln.line_no for ln in lines), default=0) + 1


def manual_line(line_no: int, side: Side, client_name: Optional[str]) -> LedgerLine:
    return LedgerLine(
        line_no=line_no,
        side=side,
        category="New Item",
        description="New line item",
        counterparty=counterparty_for(side, client_name),
        amount_usd=ZERO,
        amount_local=ZERO,
        origin=LineOrigin.MANUAL,
    )


# ---------- Totals ----------
def aggregate(lines: Iterable[LedgerLine]) -> LedgerTotals:
    ap_usd = ap_local = ar_usd = ar_local = ZERO
    for line in lines:
        if line.side is Side.AP:
            ap_usd += line.amount_usd
            ap_local += line.amount_local
        else:
            ar_usd += line.amount_usd
            ar_local += line.amount_local
    return LedgerTotals(
        ap_usd=ap_usd,
        ap_local=ap_local,
        ar_usd=ar_usd,
        ar_local=ar_local,
        net_usd=ar_usd - ap_usd,
        net_local=ar_local - ap_local,
    )


def clamp_share_pct(client_share_pct: object) -> Decimal:
    pct = to_decimal(client_share_pct)
    return min(max(pct, ZERO), Decimal("100"))


def due_from_client(ap_usd: Decimal, client_share_pct: object) -> Decimal:
    return round2(ap_usd * clamp_share_pct(client_share_pct) / Decimal("100"))


def outstanding_from_client(totals: LedgerTotals, received_usd: object) -> Decimal:
    return max(ZERO, totals.net_usd - to_decimal(received_usd))


def tally(lines: Iterable[LedgerLine]) -> StatusTally:
    counts = Counter(line.status for line in lines)
    return StatusTally(
        open=counts[LineStatus.OPEN],
        partially_settled=counts[LineStatus.PARTIALLY_SETTLED],
        settled=counts[LineStatus.SETTLED],
    )


# ---------- Settlement ----------
def paid_usd(payments: Iterable[Payment]) -> Decimal:
    return sum((p.amount_usd for p in payments), ZERO)


def settlement_status(amount_usd: Decimal, payments: Iterable[Payment]) -> LineStatus:
    paid = paid_usd(payments)
    if paid <= 0:
        return LineStatus.OPEN
    if paid >= amount_usd:
        return LineStatus.SETTLED
    return LineStatus.PARTIALLY_SETTLED


def check_transition(current: LineStatus, target: LineStatus) -> None:
    if current == target:
        return
    if target not in _STATUS_TRANSITIONS[current]:
        raise InvalidStateError(f"Line status cannot change from '{current.value}' to '{target.value}'.")


def check_payment(line: LedgerLine, existing: Iterable[Payment], amount_usd: Decimal) -> None:
    """Reject payments on settled lines and payments beyond the open balance."""
    if amount_usd <= 0:
        raise ValidationError("Payment amount must be > 0.")
    if line.status is LineStatus.SETTLED:
        raise InvalidStateError(f"Line {line.line_no} is already settled.")
    outstanding = line.amount_usd - paid_usd(existing)
    if amount_usd > outstanding:
        raise ValidationError(
            f"Payment of {amount_usd} exceeds outstanding balance {outstanding} on line {line.line_no}."
        )
