from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Optional

from disbursements.domain.errors import InvalidStateError, NotFoundError, ValidationError
from disbursements.domain.ledger import (
    check_payment,
    check_transition,
    effective_rate,
    manual_line,
    next_line_no,
    paid_usd,
    reprice,
    settlement_status,
)
from disbursements.domain.models import (
    FdaHeader,
    FdaMilestone,
    FdaStatus,
    LedgerLine,
    LineStatus,
    MilestoneKind,
    Payment,
    Schedule,
    Side,
)
from disbursements.domain.money import to_decimal, to_local, validate_rate
from disbursements.repositories.contracts import FdaRepository
from disbursements.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("disbursements.fda")

# Fields that change what a line is worth; locked once the FDA leaves Draft.
STRUCTURAL_FIELDS = frozenset({"side", "category", "amount_usd", "custom_fx_rate"})
DESCRIPTIVE_FIELDS = frozenset({"description", "counterparty", "invoice_no", "due_date", "comment"})


def _iso_date(value: object, field: str) -> str:
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as e:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date. Received: {value!r}") from e


class LedgerService:
    def __init__(self, repo: FdaRepository, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def _header(self, tenant_id: str, fda_id: int) -> FdaHeader:
        header = self.repo.get_fda(tenant_id, int(fda_id))
        if header is None:
            raise NotFoundError("FDA not found.")
        return header

    def _line(self, tenant_id: str, line_id: int) -> LedgerLine:
        line = self.repo.get_ledger_line(tenant_id, int(line_id))
        if line is None:
            raise NotFoundError("Ledger line not found.")
        return line

    def _require_draft(self, header: FdaHeader, action: str) -> None:
        if header.status is not FdaStatus.DRAFT:
            raise InvalidStateError(f"Cannot {action}: FDA is {header.status.value}.")

    def _require_open(self, header: FdaHeader, action: str) -> None:
        if header.status is FdaStatus.CLOSED:
            raise InvalidStateError(f"Cannot {action}: FDA is Closed.")

    # ---------- Lines ----------
    def add_line(self, tenant_id: str, fda_id: int, side: Side = Side.AP) -> LedgerLine:
        header = self._header(tenant_id, fda_id)
        self._require_draft(header, "add lines")
        lines = self.repo.list_ledger_lines(tenant_id, header.id)
        line = manual_line(next_line_no(lines), Side(side), header.client_name)
        line_id = self.repo.add_ledger_line(tenant_id, header.id, line)
        log.info("ledger_line_added tenant=%s fda_id=%s line_id=%s line_no=%s", tenant_id, header.id, line_id, line.line_no)
        return self._line(tenant_id, line_id)

    def update_line(self, tenant_id: str, line_id: int, **changes) -> LedgerLine:
        unknown = set(changes) - STRUCTURAL_FIELDS - DESCRIPTIVE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown ledger fields: {', '.join(sorted(unknown))}")

        line = self._line(tenant_id, line_id)
        header = self._header(tenant_id, line.fda_id or 0)
        self._require_open(header, "edit lines")
        if STRUCTURAL_FIELDS & set(changes):
            self._require_draft(header, "change amounts, rates, side or category")

        clean: dict[str, object] = {}
        for key, value in changes.items():
            if key == "side":
                clean[key] = Side(value)
            elif key == "category":
                text = str(value or "").strip()
                if not text:
                    raise ValidationError("Category is required.")
                clean[key] = text
            elif key == "amount_usd":
                amount = to_decimal(value)
                if amount < 0:
                    raise ValidationError("Amount must be >= 0.")
                if amount != line.amount_usd and self.repo.list_payments(tenant_id, line.id or 0):
                    raise InvalidStateError(f"Line {line.line_no} has payments; remove them before changing the amount.")
                clean[key] = amount
            elif key == "custom_fx_rate":
                clean[key] = validate_rate(value) if value not in (None, "") else None
            elif key == "due_date":
                clean[key] = _iso_date(value, "Due date") if value not in (None, "") else None
            elif key in ("description", "counterparty"):
                text = str(value or "").strip()
                if not text:
                    raise ValidationError(f"{key.capitalize()} is required.")
                clean[key] = text
            else:
                clean[key] = (str(value).strip() or None) if value is not None else None

        updated = replace(line, **clean)
        updated = replace(updated, amount_local=reprice(updated, header.exchange_rate.rate))
        self.repo.update_ledger_line(tenant_id, updated)
        log.info("ledger_line_updated tenant=%s line_id=%s fields=%s", tenant_id, line.id, ",".join(sorted(clean)))
        return self._line(tenant_id, line_id)

    def delete_line(self, tenant_id: str, line_id: int) -> None:
        line = self._line(tenant_id, line_id)
        header = self._header(tenant_id, line.fda_id or 0)
        self._require_draft(header, "delete lines")
        self.repo.delete_ledger_line(tenant_id, line.id or 0)
        log.info("ledger_line_deleted tenant=%s fda_id=%s line_id=%s line_no=%s", tenant_id, header.id, line.id, line.line_no)

    # ---------- Payments ----------
    def list_payments(self, tenant_id: str, line_id: int) -> list[Payment]:
        line = self._line(tenant_id, line_id)
        return self.repo.list_payments(tenant_id, line.id or 0)

    def add_payment(
        self,
        tenant_id: str,
        line_id: int,
        amount_usd: object,
        paid_at: Optional[str] = None,
        method: str = "Bank transfer",
        reference: Optional[str] = None,
        fx_at_payment: object = None,
    ) -> Payment:
        line = self._line(tenant_id, line_id)
        header = self._header(tenant_id, line.fda_id or 0)
        self._require_open(header, "record payments")

        amount = to_decimal(amount_usd)
        existing = self.repo.list_payments(tenant_id, line.id or 0)
        check_payment(line, existing, amount)

        fx = validate_rate(fx_at_payment) if fx_at_payment is not None else effective_rate(line, header.exchange_rate.rate)
        payment = Payment(
            ledger_id=line.id or 0,
            paid_at=_iso_date(paid_at or date.today(), "Payment date"),
            amount_usd=amount,
            fx_at_payment=fx,
            amount_local=to_local(amount, fx),
            method=(method or "").strip() or "Bank transfer",
            reference=(reference or "").strip() or None,
        )
        status = settlement_status(line.amount_usd, existing + [payment])
        check_transition(line.status, status)

        with self.uow_factory() as uow:
            payment_id = uow.record_payment(tenant_id, payment, status)
        log.info(
            "payment_added tenant=%s line_id=%s payment_id=%s amount_usd=%s status=%s",
            tenant_id, line.id, payment_id, amount, status.value,
        )
        return replace(payment, id=payment_id)

    def remove_payment(self, tenant_id: str, payment_id: int) -> LedgerLine:
        payment = self.repo.get_payment(tenant_id, int(payment_id))
        if payment is None:
            raise NotFoundError("Payment not found.")
        line = self._line(tenant_id, payment.ledger_id)
        header = self._header(tenant_id, line.fda_id or 0)
        self._require_open(header, "remove payments")
        if line.status is LineStatus.SETTLED:
            raise InvalidStateError(f"Line {line.line_no} is settled; undo the settlement instead.")

        remaining = [p for p in self.repo.list_payments(tenant_id, line.id or 0) if p.id != payment.id]
        status = settlement_status(line.amount_usd, remaining)
        check_transition(line.status, status)

        with self.uow_factory() as uow:
            uow.remove_payments(tenant_id, line.id or 0, [payment.id or 0], status)
        log.info("payment_removed tenant=%s line_id=%s payment_id=%s status=%s", tenant_id, line.id, payment.id, status.value)
        return self._line(tenant_id, line.id or 0)

    def mark_settled(
        self,
        tenant_id: str,
        line_id: int,
        paid_at: Optional[str] = None,
        method: str = "Settlement",
        reference: Optional[str] = None,
    ) -> LedgerLine:
        """Record one payment for whatever is still open on the line."""
        line = self._line(tenant_id, line_id)
        if line.status is LineStatus.SETTLED:
            raise InvalidStateError(f"Line {line.line_no} is already settled.")
        outstanding = line.amount_usd - paid_usd(self.repo.list_payments(tenant_id, line.id or 0))
        if outstanding <= 0:
            raise ValidationError(f"Line {line.line_no} has no outstanding amount to settle.")
        self.add_payment(tenant_id, line_id, outstanding, paid_at=paid_at, method=method, reference=reference)
        return self._line(tenant_id, line_id)

    def undo_settlement(self, tenant_id: str, line_id: int) -> LedgerLine:
        line = self._line(tenant_id, line_id)
        header = self._header(tenant_id, line.fda_id or 0)
        self._require_open(header, "undo settlements")
        if line.status is not LineStatus.SETTLED:
            raise InvalidStateError(f"Line {line.line_no} is not settled.")
        check_transition(line.status, LineStatus.OPEN)

        with self.uow_factory() as uow:
            removed = uow.remove_payments(tenant_id, line.id or 0, None, LineStatus.OPEN)
        log.warning("settlement_undone tenant=%s line_id=%s payments_removed=%s", tenant_id, line.id, removed)
        return self._line(tenant_id, line_id)

    # ---------- Schedule ----------
    def schedule_between(self, tenant_id: str, start: object, end: object) -> Schedule:
        """Ledger dues and ETA/ETB/ETS milestones dated within [start, end], both ordered by date."""
        start_iso = _iso_date(start, "Start date")
        end_iso = _iso_date(end, "End date")
        if start_iso > end_iso:
            raise ValidationError("Start date must be on or before end date.")

        dues = self.repo.lines_due_between(tenant_id, start_iso, end_iso)
        milestones = []
        for fda_id, vessel_name, port, eta, etb, ets in self.repo.fda_dates_between(tenant_id, start_iso, end_iso):
            for kind, value in ((MilestoneKind.ETA, eta), (MilestoneKind.ETB, etb), (MilestoneKind.ETS, ets)):
                day = str(value or "")[:10]
                if day and start_iso <= day <= end_iso:
                    milestones.append(FdaMilestone(int(fda_id), kind, day, vessel_name, port))
        milestones.sort(key=lambda m: (m.date, m.fda_id))
        return Schedule(start=start_iso, end=end_iso, dues=tuple(dues), milestones=tuple(milestones))
