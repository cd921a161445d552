from __future__ import annotations

import logging
import sqlite3
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from disbursements.domain.categories import label_for
from disbursements.domain.errors import ConcurrencyConflict, InvalidStateError, NotFoundError, ValidationError
from disbursements.domain.ledger import aggregate, clamp_share_pct, derive_ledger, due_from_client, outstanding_from_client, tally
from disbursements.domain.models import (
    CostCategory,
    DashboardKpis,
    ExchangeRate,
    FdaHeader,
    FdaStatus,
    FdaSummary,
    LedgerLine,
    LedgerTotals,
    PdaStatus,
    RateSource,
    Side,
)
from disbursements.domain.money import to_decimal, validate_rate
from disbursements.repositories.contracts import FdaRepository
from disbursements.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork, now_iso

log = logging.getLogger("disbursements.fda")

_FDA_TRANSITIONS: dict[FdaStatus, frozenset[FdaStatus]] = {
    FdaStatus.DRAFT: frozenset({FdaStatus.POSTED}),
    FdaStatus.POSTED: frozenset({FdaStatus.CLOSED, FdaStatus.DRAFT}),
    FdaStatus.CLOSED: frozenset(),
}

_TEXT_FIELDS = frozenset({"client_name", "client_id", "vessel_name", "imo", "port", "terminal", "eta", "etb", "ets", "remarks"})
_HEADER_FIELDS = _TEXT_FIELDS | {"exchange_rate", "client_share_pct", "received_from_client_usd", "meta"}

# AR categories counted as agency revenue on the dashboard.
REVENUE_CATEGORIES = (label_for(CostCategory.AGENCY_FEE), "Service fee", "Supervision fee")


def _quarter_start(d: date) -> date:
    return date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)


def _shift_quarter(start: date, quarters: int) -> date:
    months = start.year * 12 + (start.month - 1) + 3 * quarters
    return date(months // 12, months % 12 + 1, 1)


class FdaService:
    def __init__(self, repo: FdaRepository, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    # ---------- Conversion ----------
    def convert_pda_to_fda(self, tenant_id: str, pda_id: int) -> int:
        """Create a Draft FDA and its ledger from an approved PDA.

        A PDA converts once: if an FDA already points at it, that FDA's id is
        returned unchanged.
        """
        pda = self.repo.get_pda(tenant_id, int(pda_id))
        if pda is None:
            raise NotFoundError("PDA not found.")
        if pda.status is not PdaStatus.APPROVED:
            raise InvalidStateError(f"{pda.pda_number} must be approved before conversion (status {pda.status.value}).")

        existing = self.repo.get_fda_by_pda(tenant_id, pda.id)
        if existing is not None:
            log.info("fda_exists tenant=%s pda_id=%s fda_id=%s", tenant_id, pda.id, existing.id)
            return existing.id

        lines = derive_ledger(pda.cost, pda.exchange_rate, pda.client_name, pda.comments)
        header = {
            "client_name": pda.client_name,
            "client_id": pda.client_id,
            "vessel_name": pda.ship.vessel_name,
            "imo": pda.ship.imo,
            "port": pda.ship.port,
            "terminal": pda.ship.terminal,
            "currency_base": "USD",
            "currency_local": "BRL",
            "exchange_rate": pda.exchange_rate,
            "client_share_pct": Decimal("100"),
            "received_from_client_usd": Decimal("0"),
            "eta": pda.ship.arrival_date,
            "remarks": pda.remarks,
            "meta": {"pda_number": pda.pda_number},
        }
        try:
            with self.uow_factory() as uow:
                fda_id = uow.create_fda(tenant_id, pda.id, header, lines)
        except sqlite3.IntegrityError:
            # A concurrent conversion won the UNIQUE(tenant_id, pda_id) race.
            existing = self.repo.get_fda_by_pda(tenant_id, pda.id)
            if existing is None:
                raise
            log.info("fda_exists tenant=%s pda_id=%s fda_id=%s", tenant_id, pda.id, existing.id)
            return existing.id
        log.info(
            "fda_created tenant=%s pda_id=%s fda_id=%s lines=%s rate=%s",
            tenant_id, pda.id, fda_id, len(lines), pda.exchange_rate.rate,
        )
        return int(fda_id)

    def rebuild_from_pda(self, tenant_id: str, fda_id: int, confirmed: bool = False) -> list[LedgerLine]:
        """Throw away the whole ledger, manual lines and payments included, and derive it again."""
        header = self.get_fda(tenant_id, fda_id)
        if header.status is not FdaStatus.DRAFT:
            raise InvalidStateError("Ledger can only be rebuilt while the FDA is a Draft.")
        if not confirmed:
            raise ValidationError("Rebuilding deletes every ledger line and payment; confirmation is required.")
        if header.pda_id is None:
            raise InvalidStateError("FDA is not linked to a PDA.")
        pda = self.repo.get_pda(tenant_id, header.pda_id)
        if pda is None:
            raise NotFoundError("Linked PDA not found.")

        lines = derive_ledger(pda.cost, header.exchange_rate, header.client_name, pda.comments)
        with self.uow_factory() as uow:
            count = uow.replace_ledger(tenant_id, header.id, lines)
        log.warning("fda_ledger_rebuilt tenant=%s fda_id=%s lines=%s", tenant_id, header.id, count)
        return self.get_ledger(tenant_id, header.id)

    # ---------- Queries ----------
    def get_fda(self, tenant_id: str, fda_id: int) -> FdaHeader:
        header = self.repo.get_fda(tenant_id, int(fda_id))
        if header is None:
            raise NotFoundError("FDA not found.")
        return header

    def list_fdas(self, tenant_id: str) -> list[FdaHeader]:
        return self.repo.list_fdas(tenant_id)

    def get_ledger(self, tenant_id: str, fda_id: int) -> list[LedgerLine]:
        self.get_fda(tenant_id, fda_id)
        return self.repo.list_ledger_lines(tenant_id, int(fda_id))

    def totals(self, tenant_id: str, fda_id: int) -> LedgerTotals:
        return aggregate(self.get_ledger(tenant_id, fda_id))

    def summary(self, tenant_id: str, fda_id: int) -> FdaSummary:
        header = self.get_fda(tenant_id, fda_id)
        lines = self.repo.list_ledger_lines(tenant_id, header.id)
        totals = aggregate(lines)
        return FdaSummary(
            header=header,
            totals=totals,
            tally=tally(lines),
            due_from_client_usd=due_from_client(totals.ap_usd, header.client_share_pct),
            outstanding_from_client_usd=outstanding_from_client(totals, header.received_from_client_usd),
        )

    def kpis(self, tenant_id: str, today: Optional[date] = None) -> DashboardKpis:
        """Dashboard figures for the quarter containing `today` and the one before it."""
        this_q = _quarter_start(today or date.today())
        next_q = _shift_quarter(this_q, 1)
        prev_q = _shift_quarter(this_q, -1)
        balances = self.repo.open_balances_by_side(tenant_id)
        return DashboardKpis(
            quarter_start=this_q.isoformat(),
            pda_count=self.repo.count_pdas_created_between(tenant_id, this_q.isoformat(), next_q.isoformat()),
            pda_prev_count=self.repo.count_pdas_created_between(tenant_id, prev_q.isoformat(), this_q.isoformat()),
            fda_open_count=self.repo.count_fdas_in_status(tenant_id, (FdaStatus.DRAFT, FdaStatus.POSTED)),
            revenue_usd=self.repo.fee_revenue_between(tenant_id, REVENUE_CATEGORIES, this_q.isoformat(), next_q.isoformat()),
            revenue_prev_usd=self.repo.fee_revenue_between(
                tenant_id, REVENUE_CATEGORIES, prev_q.isoformat(), this_q.isoformat()
            ),
            ar_open_usd=balances[Side.AR],
            ap_open_usd=balances[Side.AP],
        )

    # ---------- Header edits ----------
    def update_header(self, tenant_id: str, fda_id: int, expected_updated_at: str, **changes) -> FdaHeader:
        unknown = set(changes) - _HEADER_FIELDS
        if unknown:
            raise ValidationError(f"Unknown FDA header fields: {', '.join(sorted(unknown))}")
        if not changes:
            return self.get_fda(tenant_id, fda_id)

        header = self.get_fda(tenant_id, fda_id)
        if header.status is FdaStatus.CLOSED:
            raise InvalidStateError("Closed FDAs cannot be edited.")

        clean: dict[str, object] = {}
        for key, value in changes.items():
            if key == "exchange_rate":
                if header.status is not FdaStatus.DRAFT:
                    raise InvalidStateError("Exchange rate can only change while the FDA is a Draft.")
                if isinstance(value, ExchangeRate):
                    clean[key] = ExchangeRate(validate_rate(value.rate), value.source, value.timestamp)
                else:
                    clean[key] = ExchangeRate(validate_rate(value), RateSource.MANUAL, now_iso())
            elif key == "client_share_pct":
                clean[key] = clamp_share_pct(value)
            elif key == "received_from_client_usd":
                received = to_decimal(value)
                if received < 0:
                    raise ValidationError("Received from client must be >= 0.")
                clean[key] = received
            elif key == "meta":
                clean[key] = dict(value or {})
            else:
                clean[key] = (str(value).strip() or None) if value is not None else None

        with self.uow_factory() as uow:
            ok = uow.update_fda_header(tenant_id, header.id, expected_updated_at, clean)
        if not ok:
            log.warning("fda_header_conflict tenant=%s fda_id=%s expected=%s", tenant_id, header.id, expected_updated_at)
            raise ConcurrencyConflict("FDA was changed by someone else. Reload and try again.")

        new_rate = clean.get("exchange_rate")
        if isinstance(new_rate, ExchangeRate):
            log.info(
                "fda_rate_changed tenant=%s fda_id=%s from=%s to=%s",
                tenant_id, header.id, header.exchange_rate.rate, new_rate.rate,
            )
        log.info("fda_header_updated tenant=%s fda_id=%s fields=%s", tenant_id, header.id, ",".join(sorted(clean)))
        return self.get_fda(tenant_id, fda_id)

    def set_status(self, tenant_id: str, fda_id: int, status: FdaStatus) -> FdaHeader:
        header = self.get_fda(tenant_id, fda_id)
        status = FdaStatus(status)
        if header.status is status:
            return header
        if status not in _FDA_TRANSITIONS[header.status]:
            raise InvalidStateError(f"FDA status cannot change from '{header.status.value}' to '{status.value}'.")
        self.repo.set_fda_status(tenant_id, header.id, status, now_iso())
        log.info("fda_status tenant=%s fda_id=%s from=%s to=%s", tenant_id, header.id, header.status.value, status.value)
        return self.get_fda(tenant_id, fda_id)
